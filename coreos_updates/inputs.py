"""Configuration inputs: fragments merged into one configuration, not yet validated."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .fragments import (
    AgentFragment,
    CincinnatiFragment,
    ConfigFragment,
    IdentityFragment,
    UpdateFragment,
)

log = logging.getLogger(__name__)

#: Pausing interval between update checks in steady mode, in seconds.
DEFAULT_STEADY_INTERVAL_SECS = 300

_CONTEXT = "failed to read and merge config fragments"


def scan_fragments(
    dirs: Iterable[str | os.PathLike[str]],
    common_path: str,
    extensions: Sequence[str],
) -> dict[str, Path]:
    """Find fragment files under `<dir>/<common_path>` for every directory.

    A file in a later directory masks a file with the same name in an earlier
    one. Dotfiles are ignored, and when `extensions` is not empty only files
    with one of those extensions are kept. The result is ordered by file name.
    """
    allowed = set(extensions)
    found: dict[str, Path] = {}
    for base in dirs:
        directory = Path(base) / common_path
        try:
            entries = list(directory.iterdir())
        except (FileNotFoundError, NotADirectoryError):
            continue
        for entry in entries:
            name = entry.name
            if name.startswith("."):
                continue
            if allowed and entry.suffix[1:] not in allowed:
                continue
            if not entry.is_file():
                continue
            found[name] = entry
    return dict(sorted(found.items()))


@dataclass(frozen=True)
class AgentInput:
    """Agent settings."""

    steady_interval_secs: int = DEFAULT_STEADY_INTERVAL_SECS

    @classmethod
    def from_fragments(cls, fragments: Iterable[AgentFragment]) -> AgentInput:
        interval = DEFAULT_STEADY_INTERVAL_SECS
        for snip in fragments:
            if snip.timing is not None and snip.timing.steady_interval_secs is not None:
                interval = snip.timing.steady_interval_secs
        return cls(steady_interval_secs=interval)


@dataclass(frozen=True)
class CincinnatiInput:
    """Cincinnati settings; `base_url` may be a template."""

    base_url: str = ""

    @classmethod
    def from_fragments(cls, fragments: Iterable[CincinnatiFragment]) -> CincinnatiInput:
        base_url = ""
        for snip in fragments:
            if snip.base_url is not None:
                base_url = snip.base_url
        return cls(base_url=base_url)


@dataclass(frozen=True)
class IdentityInput:
    """Identity settings; empty strings mean "use the default"."""

    group: str = ""
    node_uuid: str = ""
    rollout_wariness: float | None = None

    @classmethod
    def from_fragments(cls, fragments: Iterable[IdentityFragment]) -> IdentityInput:
        group = ""
        node_uuid = ""
        rollout_wariness: float | None = None
        for snip in fragments:
            if snip.group is not None:
                group = snip.group
            if snip.node_uuid is not None:
                node_uuid = snip.node_uuid
            if snip.rollout_wariness is not None:
                rollout_wariness = snip.rollout_wariness
        return cls(group=group, node_uuid=node_uuid, rollout_wariness=rollout_wariness)


@dataclass(frozen=True)
class FleetLockInput:
    """Settings of the `fleet_lock` strategy; `base_url` may be a template."""

    base_url: str = ""


@dataclass(frozen=True)
class PeriodicIntervalInput:
    """One weekly update window, starting on a single day."""

    start_day: str
    start_time: str
    length_minutes: int


@dataclass(frozen=True)
class PeriodicInput:
    """Settings of the `periodic` strategy."""

    intervals: tuple[PeriodicIntervalInput, ...] = ()
    time_zone: str = "UTC"


@dataclass(frozen=True)
class UpdateInput:
    """Update logic settings."""

    allow_downgrade: bool = False
    enabled: bool = True
    strategy: str = ""
    fleet_lock: FleetLockInput = field(default_factory=FleetLockInput)
    periodic: PeriodicInput = field(default_factory=PeriodicInput)

    @classmethod
    def from_fragments(cls, fragments: Iterable[UpdateFragment]) -> UpdateInput:
        allow_downgrade = False
        enabled = True
        strategy = ""
        fleet_lock_url = ""
        time_zone = "UTC"
        intervals: list[PeriodicIntervalInput] = []

        for snip in fragments:
            if snip.allow_downgrade is not None:
                allow_downgrade = snip.allow_downgrade
            if snip.enabled is not None:
                enabled = snip.enabled
            if snip.strategy is not None:
                strategy = snip.strategy
            if snip.fleet_lock is not None and snip.fleet_lock.base_url is not None:
                fleet_lock_url = snip.fleet_lock.base_url
            if snip.periodic is not None:
                if snip.periodic.time_zone is not None:
                    time_zone = snip.periodic.time_zone
                for entry in snip.periodic.window or ():
                    intervals.extend(
                        PeriodicIntervalInput(
                            start_day=day,
                            start_time=entry.start_time,
                            length_minutes=entry.length_minutes,
                        )
                        for day in entry.days
                    )

        return cls(
            allow_downgrade=allow_downgrade,
            enabled=enabled,
            strategy=strategy,
            fleet_lock=FleetLockInput(base_url=fleet_lock_url),
            periodic=PeriodicInput(intervals=tuple(intervals), time_zone=time_zone),
        )


@dataclass(frozen=True)
class ConfigInput:
    """All configuration fragments merged into one, not yet validated."""

    agent: AgentInput
    cincinnati: CincinnatiInput
    updates: UpdateInput
    identity: IdentityInput

    @classmethod
    def read_configs(
        cls,
        dirs: Iterable[str | os.PathLike[str]],
        common_path: str,
        extensions: Sequence[str],
    ) -> ConfigInput:
        """Read all config fragments and merge them into a single config."""
        fragments = []
        for path in scan_fragments(dirs, common_path, extensions).values():
            log.debug("reading config fragment '%s'", path)
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as err:
                raise OSError(f"{_CONTEXT}: failed to read file '{path}': {err}") from err
            try:
                fragments.append(ConfigFragment.from_toml(content))
            except ValueError as err:
                raise ValueError(
                    f"{_CONTEXT}: failed to parse TOML in '{path}': {err}"
                ) from err
        return cls.merge_fragments(fragments)

    @classmethod
    def merge_fragments(cls, fragments: Iterable[ConfigFragment]) -> ConfigInput:
        """Merge fragments in order; later values override earlier ones."""
        fragments = list(fragments)
        return cls(
            agent=AgentInput.from_fragments(f.agent for f in fragments if f.agent is not None),
            cincinnati=CincinnatiInput.from_fragments(
                f.cincinnati for f in fragments if f.cincinnati is not None
            ),
            updates=UpdateInput.from_fragments(
                f.updates for f in fragments if f.updates is not None
            ),
            identity=IdentityInput.from_fragments(
                f.identity for f in fragments if f.identity is not None
            ),
        )