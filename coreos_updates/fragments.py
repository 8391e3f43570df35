"""TOML configuration fragments."""

from __future__ import annotations

import math
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_U64_MAX = 2**64 - 1
_U32_MAX = 2**32 - 1


def _table(value: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"invalid type for `{where}`: expected a table")
    return value


def _opt_table(data: Mapping[str, Any], key: str) -> Mapping[str, Any] | None:
    value = data.get(key)
    return None if value is None else _table(value, key)


def _opt_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"invalid type for `{key}`: expected a string")


def _opt_bool(data: Mapping[str, Any], key: str) -> bool | None:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise ValueError(f"invalid type for `{key}`: expected a boolean")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _opt_nonzero_u64(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if not _is_int(value) or not 0 < value <= _U64_MAX:
        raise ValueError(f"invalid value for `{key}`: expected a non-zero unsigned integer")
    return value


def _opt_not_nan(data: Mapping[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if not (_is_int(value) or isinstance(value, float)):
        raise ValueError(f"invalid type for `{key}`: expected a number")
    value = float(value)
    if math.isnan(value):
        raise ValueError(f"invalid value for `{key}`: NaN is not allowed")
    return value


def _required(data: Mapping[str, Any], key: str) -> Any:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    return data[key]


@dataclass(frozen=True)
class AgentTiming:
    """Agent timing settings."""

    steady_interval_secs: int | None = None


@dataclass(frozen=True)
class AgentFragment:
    """Agent settings."""

    timing: AgentTiming | None = None


@dataclass(frozen=True)
class IdentityFragment:
    """Agent identity settings."""

    group: str | None = None
    node_uuid: str | None = None
    rollout_wariness: float | None = None


@dataclass(frozen=True)
class CincinnatiFragment:
    """Cincinnati client settings."""

    base_url: str | None = None


@dataclass(frozen=True)
class UpdateFleetLock:
    """Settings of the `fleet_lock` update strategy."""

    base_url: str | None = None


@dataclass(frozen=True)
class UpdatePeriodicWindow:
    """One `periodic.window` entry: weekdays, `hh:mm` start time and length."""

    days: tuple[str, ...]
    start_time: str
    length_minutes: int


@dataclass(frozen=True)
class UpdatePeriodic:
    """Settings of the `periodic` update strategy."""

    window: tuple[UpdatePeriodicWindow, ...] | None = None
    time_zone: str | None = None


@dataclass(frozen=True)
class UpdateFragment:
    """Update logic settings."""

    allow_downgrade: bool | None = None
    enabled: bool | None = None
    strategy: str | None = None
    fleet_lock: UpdateFleetLock | None = None
    periodic: UpdatePeriodic | None = None


def _window(data: Any) -> UpdatePeriodicWindow:
    data = _table(data, "window")
    days = _required(data, "days")
    start_time = _required(data, "start_time")
    length = _required(data, "length_minutes")
    if not isinstance(days, list) or not all(isinstance(d, str) for d in days):
        raise ValueError("invalid type for `days`: expected a list of strings")
    if not isinstance(start_time, str):
        raise ValueError("invalid type for `start_time`: expected a string")
    if not _is_int(length) or not 0 <= length <= _U32_MAX:
        raise ValueError("invalid value for `length_minutes`: expected an unsigned integer")
    return UpdatePeriodicWindow(
        days=tuple(sorted(set(days))), start_time=start_time, length_minutes=length
    )


def _periodic(data: Mapping[str, Any]) -> UpdatePeriodic:
    windows = data.get("window")
    if windows is not None:
        if not isinstance(windows, list):
            raise ValueError("invalid type for `window`: expected an array of tables")
        windows = tuple(_window(entry) for entry in windows)
    return UpdatePeriodic(window=windows, time_zone=_opt_str(data, "time_zone"))


def _updates(data: Mapping[str, Any]) -> UpdateFragment:
    fleet_lock = _opt_table(data, "fleet_lock")
    periodic = _opt_table(data, "periodic")
    return UpdateFragment(
        allow_downgrade=_opt_bool(data, "allow_downgrade"),
        enabled=_opt_bool(data, "enabled"),
        strategy=_opt_str(data, "strategy"),
        fleet_lock=None
        if fleet_lock is None
        else UpdateFleetLock(base_url=_opt_str(fleet_lock, "base_url")),
        periodic=None if periodic is None else _periodic(periodic),
    )


def _agent(data: Mapping[str, Any]) -> AgentFragment:
    timing = _opt_table(data, "timing")
    if timing is None:
        return AgentFragment()
    return AgentFragment(
        timing=AgentTiming(steady_interval_secs=_opt_nonzero_u64(timing, "steady_interval_secs"))
    )


def _identity(data: Mapping[str, Any]) -> IdentityFragment:
    return IdentityFragment(
        group=_opt_str(data, "group"),
        node_uuid=_opt_str(data, "node_uuid"),
        rollout_wariness=_opt_not_nan(data, "rollout_wariness"),
    )


@dataclass(frozen=True)
class ConfigFragment:
    """Top-level configuration stanza of one fragment file."""

    agent: AgentFragment | None = None
    cincinnati: CincinnatiFragment | None = None
    identity: IdentityFragment | None = None
    updates: UpdateFragment | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ConfigFragment:
        """Build a fragment from decoded TOML data; unknown keys are ignored."""
        data = _table(data, "config")
        agent = _opt_table(data, "agent")
        cincinnati = _opt_table(data, "cincinnati")
        identity = _opt_table(data, "identity")
        updates = _opt_table(data, "updates")
        return cls(
            agent=None if agent is None else _agent(agent),
            cincinnati=None
            if cincinnati is None
            else CincinnatiFragment(base_url=_opt_str(cincinnati, "base_url")),
            identity=None if identity is None else _identity(identity),
            updates=None if updates is None else _updates(updates),
        )

    @classmethod
    def from_toml(cls, text: str) -> ConfigFragment:
        """Parse a fragment from TOML text."""
        return cls.from_dict(tomllib.loads(text))