"""FleetLock client: cluster-wide reboot coordination through a remote lock manager."""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit

import requests

from .identity import Identity

#: Timeout for HTTP request completion, in seconds (30 minutes).
DEFAULT_HTTP_COMPLETION_TIMEOUT = 30 * 60

#: FleetLock pre-reboot API path endpoint (v1).
V1_PRE_REBOOT = "v1/pre-reboot"

#: FleetLock steady-state API path endpoint (v1).
V1_STEADY_STATE = "v1/steady-state"

#: Header marking a request as a FleetLock protocol request.
PROTOCOL_HEADER = "fleet-lock-protocol"


@dataclass(frozen=True)
class RemoteJsonError:
    """Error object returned by the lock manager."""

    kind: str
    value: str


class FleetLockErrorKind(enum.Enum):
    """Categories of FleetLock failures."""

    REMOTE = "remote"
    HTTP = "http"
    FAILED_CLIENT_BUILDER = "client_failed_build"
    FAILED_REQUEST = "client_failed_request"


class FleetLockError(Exception):
    """Error related to the FleetLock service."""

    def __init__(
        self,
        kind: FleetLockErrorKind,
        message: str = "",
        *,
        status: int | None = None,
        remote_error: RemoteJsonError | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.status = status
        self.remote_error = remote_error
        super().__init__(str(self))

    @classmethod
    def remote(cls, status: int, error: RemoteJsonError) -> FleetLockError:
        return cls(FleetLockErrorKind.REMOTE, status=status, remote_error=error)

    @classmethod
    def http(cls, status: int) -> FleetLockError:
        return cls(FleetLockErrorKind.HTTP, status=status)

    @classmethod
    def client(cls, kind: FleetLockErrorKind, message: str) -> FleetLockError:
        """A client-side failure of the given kind."""
        return cls(kind, message)

    def error_kind(self) -> str:
        """Machine-friendly brief error kind."""
        if self.kind is FleetLockErrorKind.REMOTE:
            assert self.remote_error is not None
            return self.remote_error.kind
        if self.kind is FleetLockErrorKind.HTTP:
            return f"generic_http_{self.status}"
        return self.kind.value

    def error_value(self) -> str:
        """Human-friendly detailed error explanation."""
        if self.kind is FleetLockErrorKind.REMOTE:
            assert self.remote_error is not None
            return self.remote_error.value
        if self.kind is FleetLockErrorKind.HTTP:
            return "(unknown/generic server error)"
        return self.message

    def status_code(self) -> int | None:
        """Server-side status code, if any."""
        if self.kind in (FleetLockErrorKind.REMOTE, FleetLockErrorKind.HTTP):
            return self.status
        return None

    def __str__(self) -> str:
        status = self.status_code()
        context = "client-side error" if status is None else f"server-side error, code {status}"
        return f"{context}: {self.error_value()}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FleetLockError):
            return NotImplemented
        return (self.kind, self.message, self.status, self.remote_error) == (
            other.kind,
            other.message,
            other.status,
            other.remote_error,
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"FleetLockError({self.kind.name}, {str(self)!r})"


def map_response(status: int, body: bytes | str) -> bool:
    """Return True on success, or raise FleetLockError describing the failure."""
    if 200 <= status < 300:
        return True
    try:
        data = json.loads(body)
    except ValueError:
        raise FleetLockError.http(status) from None
    if (
        isinstance(data, Mapping)
        and isinstance(data.get("kind"), str)
        and isinstance(data.get("value"), str)
    ):
        raise FleetLockError.remote(status, RemoteJsonError(data["kind"], data["value"]))
    raise FleetLockError.http(status)


@dataclass
class Client:
    """Client for the FleetLock API."""

    api_base: str
    session: requests.Session
    body: str

    def pre_reboot(self) -> bool:
        """Try to lock a semaphore slot on the remote manager."""
        return self._post(V1_PRE_REBOOT)

    def steady_state(self) -> bool:
        """Try to unlock a semaphore slot on the remote manager."""
        return self._post(V1_STEADY_STATE)

    def _post(self, url_suffix: str) -> bool:
        try:
            url = urljoin(self.api_base, url_suffix)
        except ValueError as err:
            raise FleetLockError.client(
                FleetLockErrorKind.FAILED_CLIENT_BUILDER, str(err)
            ) from err
        try:
            response = self.session.post(
                url,
                data=self.body,
                headers={PROTOCOL_HEADER: "true"},
                timeout=DEFAULT_HTTP_COMPLETION_TIMEOUT,
            )
        except requests.RequestException as err:
            raise FleetLockError.client(FleetLockErrorKind.FAILED_REQUEST, str(err)) from err
        return map_response(response.status_code, response.content)


def _validate_base_url(api_base: str) -> None:
    parts = urlsplit(api_base)
    if not parts.scheme or (parts.scheme in ("http", "https") and not parts.hostname):
        raise ValueError(f"failed to parse '{api_base}'")
    try:
        parts.port
    except ValueError as err:
        raise ValueError(f"failed to parse '{api_base}': {err}") from err


class ClientBuilder:
    """Builder for a FleetLock client."""

    def __init__(self, api_base: str, identity: Identity) -> None:
        self._api_base = api_base
        self._session: requests.Session | None = None
        self._node_id = identity.node_uuid.hex
        self._group = identity.group

    def http_client(self, session: requests.Session | None) -> ClientBuilder:
        """Return a builder with the HTTP session set (or reset)."""
        builder = ClientBuilder.__new__(ClientBuilder)
        builder._api_base = self._api_base
        builder._node_id = self._node_id
        builder._group = self._group
        builder._session = session
        return builder

    def build(self) -> Client:
        """Build a client; raise ValueError on a bad base URL or a missing group."""
        session = self._session if self._session is not None else requests.Session()
        _validate_base_url(self._api_base)
        if not self._group:
            raise ValueError("missing group value")
        body = json.dumps(
            {"client_params": {"id": self._node_id, "group": self._group}}, indent=2
        )
        return Client(api_base=self._api_base, session=session, body=body)