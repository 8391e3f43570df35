"""Agent identity."""

from __future__ import annotations

import hashlib
import hmac
import logging
import platform as host_platform
import re
import uuid
from dataclasses import dataclass

from .inputs import IdentityInput
from .platform import read_id
from .release import PayloadKind, Release
from .rpm_ostree_status import invoke_cli_status, parse_booted, parse_booted_updates_stream

log = logging.getLogger(__name__)

#: Default group for reboot management.
DEFAULT_GROUP = "default"

#: Application ID used to derive the node UUID from the machine ID.
APP_ID = uuid.UUID("de35106b6ec24688b63afddaa156679b")

#: Kernel command line, holding the platform ID.
CMDLINE_PATH = "/proc/cmdline"

#: Local machine ID file.
MACHINE_ID_PATH = "/etc/machine-id"

#: Expression that group labels must match.
VALID_GROUP = "^[a-zA-Z0-9.-]+$"
_VALID_GROUP_RE = re.compile(VALID_GROUP)

_ID128_RE = re.compile(
    r"[0-9a-fA-F]{32}|[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)

_ARCH_ALIASES = {"amd64": "x86_64", "arm64": "aarch64", "ppc64": "ppc64le"}

_CONTEXT = "failed to validate agent identity configuration"


def _parse_id128(text: str) -> uuid.UUID:
    if not _ID128_RE.fullmatch(text):
        raise ValueError(f"invalid 128-bit ID: '{text}'")
    return uuid.UUID(text)


def _with_context(err: Exception, context: str) -> Exception:
    message = f"{context}: {err}"
    if isinstance(err, OSError):
        return OSError(message)
    if isinstance(err, RuntimeError):
        return RuntimeError(message)
    return ValueError(message)


def this_architecture() -> str:
    """Return the base architecture of this machine."""
    machine = host_platform.machine().lower()
    return _ARCH_ALIASES.get(machine, machine)


def machine_app_specific_id(machine_id: uuid.UUID, app_id: uuid.UUID) -> uuid.UUID:
    """Derive an application-specific v4 UUID from a machine ID."""
    digest = hmac.new(machine_id.bytes, app_id.bytes, hashlib.sha256).digest()
    raw = bytearray(digest[:16])
    raw[6] = (raw[6] & 0x0F) | 0x40
    raw[8] = (raw[8] & 0x3F) | 0x80
    return uuid.UUID(bytes=bytes(raw))


def compute_node_uuid(app_id: uuid.UUID, machine_id_path: str = MACHINE_ID_PATH) -> uuid.UUID:
    """Compute the node UUID from the local machine ID."""
    try:
        with open(machine_id_path, encoding="ascii") as handle:
            text = handle.read().strip()
        if not re.fullmatch(r"[0-9a-fA-F]{32}", text):
            raise ValueError(f"invalid machine ID '{text}'")
    except (OSError, ValueError) as err:
        raise _with_context(err, "failed to get node ID") from err
    return machine_app_specific_id(uuid.UUID(text), app_id)


@dataclass
class Identity:
    """Agent identity."""

    basearch: str
    current_os: Release
    group: str
    node_uuid: uuid.UUID
    platform: str
    stream: str
    rollout_wariness: float | None = None

    @classmethod
    def with_config(cls, cfg: IdentityInput) -> Identity:
        """Build the default identity and apply configuration to it."""
        try:
            return cls._from_config(cfg)
        except (OSError, RuntimeError, ValueError) as err:
            raise _with_context(err, _CONTEXT) from err

    @classmethod
    def _from_config(cls, cfg: IdentityInput) -> Identity:
        try:
            identity = cls.try_default()
        except (OSError, RuntimeError, ValueError) as err:
            raise _with_context(err, "failed to build default identity") from err

        if cfg.group:
            identity.group = cfg.group
        identity.validate_group_label()

        if cfg.node_uuid:
            try:
                identity.node_uuid = _parse_id128(cfg.node_uuid)
            except ValueError as err:
                raise ValueError(f"failed to parse node UUID: {err}") from err

        rw = cfg.rollout_wariness
        if rw is not None:
            if rw < 0.0:
                raise ValueError(f"unexpected negative rollout wariness: {rw}")
            if rw > 1.0:
                raise ValueError(f"unexpected overlarge rollout wariness: {rw}")
            identity.rollout_wariness = rw

        log.debug(
            "booted OS: version=%s basearch=%s stream=%s platform=%s",
            identity.current_os.version,
            identity.basearch,
            identity.stream,
            identity.platform,
        )
        return identity

    @classmethod
    def try_default(cls) -> Identity:
        """Build the default identity from the running system."""
        status = invoke_cli_status(True)
        try:
            current_os = parse_booted(status)
        except ValueError as err:
            raise ValueError(f"failed to introspect booted OS image: {err}") from err
        node_uuid = compute_node_uuid(APP_ID, MACHINE_ID_PATH)
        platform_id = read_id(CMDLINE_PATH)
        try:
            stream = parse_booted_updates_stream(status)
        except ValueError as err:
            raise ValueError(f"failed to introspect OS updates stream: {err}") from err
        return cls(
            basearch=this_architecture(),
            current_os=current_os,
            group=DEFAULT_GROUP,
            node_uuid=node_uuid,
            platform=platform_id,
            stream=stream,
        )

    def url_variables(self) -> dict[str, str]:
        """Return context variables for URL templates."""
        return {
            "basearch": self.basearch,
            "group": self.group,
            "platform": self.platform,
            "stream": self.stream,
        }

    def cincinnati_params(self) -> dict[str, str]:
        """Return Cincinnati client query parameters."""
        params = {
            "basearch": self.basearch,
            "os_version": self.current_os.version,
            "group": self.group,
            "node_uuid": self.node_uuid.hex,
            "platform": self.platform,
            "stream": self.stream,
            "os_checksum": self.current_os.payload.value,
        }
        if self.current_os.payload.kind is PayloadKind.PULLSPEC:
            params["oci"] = "true"
        if self.rollout_wariness is not None:
            params["rollout_wariness"] = f"{self.rollout_wariness:.6f}"
        return params

    def validate_group_label(self) -> None:
        """Raise ValueError unless the group label matches VALID_GROUP."""
        if not _VALID_GROUP_RE.fullmatch(self.group):
            raise ValueError(
                f"invalid group label '{self.group}': "
                f"not conforming to expression '{VALID_GROUP}'"
            )