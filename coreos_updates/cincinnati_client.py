"""Cincinnati graph client for update hints."""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlsplit

import requests

from .release import Node

#: Timeout for HTTP request completion, in seconds (30 minutes).
DEFAULT_HTTP_COMPLETION_TIMEOUT = 30 * 60

#: Cincinnati graph API path endpoint (v1).
V1_GRAPH_PATH = "v1/graph"

_U64_MAX = 2**64 - 1


def _is_u64(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= _U64_MAX


@dataclass
class Graph:
    """A Cincinnati update graph: nodes, and edges as index pairs."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[tuple[int, int]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> Graph:
        """Build a graph from its decoded JSON object."""
        if not isinstance(data, Mapping):
            raise ValueError("invalid type: expected a graph object")
        for name in ("nodes", "edges"):
            if name not in data:
                raise ValueError(f"missing field `{name}`")
        nodes, edges = data["nodes"], data["edges"]
        if not isinstance(nodes, list):
            raise ValueError("invalid type for field `nodes`: expected a list")
        if not isinstance(edges, list):
            raise ValueError("invalid type for field `edges`: expected a list")
        pairs = []
        for edge in edges:
            if not (isinstance(edge, list) and len(edge) == 2 and all(map(_is_u64, edge))):
                raise ValueError("invalid edge: expected a pair of node indices")
            pairs.append((edge[0], edge[1]))
        return cls(nodes=[Node.from_dict(n) for n in nodes], edges=pairs)


@dataclass(frozen=True)
class GraphJsonError:
    """Error object returned by the graph service."""

    kind: str
    value: str


class CincinnatiErrorKind(enum.Enum):
    """Categories of Cincinnati failures."""

    GRAPH = "graph"
    HTTP = "http"
    FAILED_CLIENT_BUILDER = "client_failed_build"
    FAILED_JSON_DECODING = "client_failed_json_decoding"
    FAILED_NODE_LOOKUP = "client_failed_node_lookup"
    FAILED_NODE_PARSING = "client_failed_node_parsing"
    FAILED_REQUEST = "client_failed_request"


class CincinnatiError(Exception):
    """Error related to the Cincinnati service."""

    def __init__(
        self,
        kind: CincinnatiErrorKind,
        message: str = "",
        *,
        status: int | None = None,
        graph_error: GraphJsonError | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.status = status
        self.graph_error = graph_error
        super().__init__(str(self))

    @classmethod
    def graph(cls, status: int, error: GraphJsonError) -> CincinnatiError:
        return cls(CincinnatiErrorKind.GRAPH, status=status, graph_error=error)

    @classmethod
    def http(cls, status: int) -> CincinnatiError:
        return cls(CincinnatiErrorKind.HTTP, status=status)

    @classmethod
    def client(cls, kind: CincinnatiErrorKind, message: str) -> CincinnatiError:
        """A client-side failure of the given kind."""
        return cls(kind, message)

    def error_kind(self) -> str:
        """Machine-friendly brief error kind."""
        if self.kind is CincinnatiErrorKind.GRAPH:
            assert self.graph_error is not None
            return self.graph_error.kind
        if self.kind is CincinnatiErrorKind.HTTP:
            return f"generic_http_{self.status}"
        return self.kind.value

    def error_value(self) -> str:
        """Human-friendly detailed error explanation."""
        if self.kind is CincinnatiErrorKind.GRAPH:
            assert self.graph_error is not None
            return self.graph_error.value
        if self.kind is CincinnatiErrorKind.HTTP:
            return "(unknown/generic server error)"
        return self.message

    def status_code(self) -> int | None:
        """Server-side status code, if any."""
        if self.kind in (CincinnatiErrorKind.GRAPH, CincinnatiErrorKind.HTTP):
            return self.status
        return None

    def __str__(self) -> str:
        status = self.status_code()
        context = "client-side error" if status is None else f"server-side error, code {status}"
        return f"{context}: {self.error_value()}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CincinnatiError):
            return NotImplemented
        return (self.kind, self.message, self.status, self.graph_error) == (
            other.kind,
            other.message,
            other.status,
            other.graph_error,
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"CincinnatiError({self.kind.name}, {str(self)!r})"


def map_response(status: int, body: bytes | str) -> Graph:
    """Turn an HTTP status and body into a graph, or raise CincinnatiError."""
    if 200 <= status < 300:
        try:
            return Graph.from_dict(json.loads(body))
        except ValueError as err:
            raise CincinnatiError.client(
                CincinnatiErrorKind.FAILED_JSON_DECODING,
                f"failed to decode graph: error decoding response body: {err}",
            ) from None

    try:
        data = json.loads(body)
    except ValueError:
        raise CincinnatiError.http(status) from None
    if (
        isinstance(data, Mapping)
        and isinstance(data.get("kind"), str)
        and isinstance(data.get("value"), str)
    ):
        raise CincinnatiError.graph(status, GraphJsonError(data["kind"], data["value"]))
    raise CincinnatiError.http(status)


@dataclass
class Client:
    """Client for the Cincinnati graph API."""

    api_base: str
    session: requests.Session
    params: dict[str, str] = field(default_factory=dict)

    def fetch_graph(self) -> Graph:
        """Fetch the update graph."""
        url = urljoin(self.api_base, V1_GRAPH_PATH)
        try:
            response = self.session.get(
                url,
                headers={"accept": "application/json"},
                params=self.params,
                timeout=DEFAULT_HTTP_COMPLETION_TIMEOUT,
            )
        except requests.RequestException as err:
            raise CincinnatiError.client(CincinnatiErrorKind.FAILED_REQUEST, str(err)) from err
        return map_response(response.status_code, response.content)


class ClientBuilder:
    """Builder for a Cincinnati client."""

    def __init__(self, api_base: str) -> None:
        self._api_base = api_base
        self._params: dict[str, str] | None = None

    def query_params(self, params: Mapping[str, str] | None) -> ClientBuilder:
        """Return a builder with the query parameters set (or reset)."""
        builder = ClientBuilder(self._api_base)
        builder._params = None if params is None else dict(params)
        return builder

    def build(self) -> Client:
        """Build a client; raise ValueError on an unparsable base URL."""
        parts = urlsplit(self._api_base)
        if not parts.scheme or (parts.scheme in ("http", "https") and not parts.hostname):
            raise ValueError(f"failed to parse '{self._api_base}'")
        try:
            parts.port
        except ValueError as err:
            raise ValueError(f"failed to parse '{self._api_base}': {err}") from err
        return Client(
            api_base=self._api_base,
            session=requests.Session(),
            params=dict(self._params or {}),
        )