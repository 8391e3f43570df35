"""Update hints from a Cincinnati graph service, and dead-end tracking."""

from __future__ import annotations

import enum
import logging
import subprocess
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .cincinnati_client import CincinnatiError, CincinnatiErrorKind, ClientBuilder, Graph
from .identity import Identity
from .inputs import CincinnatiInput
from .release import (
    CHECKSUM_SCHEME,
    OCI_SCHEME,
    SCHEME_KEY,
    Node,
    OstreeImageReference,
    Payload,
    PayloadKind,
    Release,
)

log = logging.getLogger(__name__)

#: Metadata key for the dead-end sentinel.
DEADEND_KEY = "org.fedoraproject.coreos.updates.deadend"

#: Metadata key for the dead-end reason.
DEADEND_REASON_KEY = "org.fedoraproject.coreos.updates.deadend_reason"

#: Agent binary, run through pkexec to manage the dead-end MOTD fragment.
AGENT_BINARY = "/usr/libexec/zincati"

_FORBIDDEN_TEMPLATE_CHARS = ("$", "{", "}")


def is_templated(template: str) -> bool:
    """Return whether a string holds a `${...}` placeholder."""
    start = template.find("${")
    if start < 0:
        return False
    return template.find("}", start + 2) >= 0


def _validate_vars(variables: Mapping[str, str]) -> None:
    for key, value in variables.items():
        for char in _FORBIDDEN_TEMPLATE_CHARS:
            if char in key:
                raise ValueError(f"variable name '{key}' contains forbidden character '{char}'")
            if char in value:
                raise ValueError(
                    f"value of variable '{key}' contains forbidden character '{char}'"
                )


def substitute_template(template: str, variables: Mapping[str, str]) -> str:
    """Replace every `${name}` in `template` with its value from `variables`."""
    _validate_vars(variables)
    result = template
    for key, value in variables.items():
        result = result.replace(f"${{{key}}}", value)
    return result


class _DeadEnd(enum.Enum):
    FALSE = 0
    TRUE = 1
    UNKNOWN = 2


class DeadEndState:
    """Known dead-end status of the booted release (initially unknown)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = _DeadEnd.UNKNOWN

    def is_deadend(self) -> bool:
        """Return whether this is in a known dead-end state."""
        with self._lock:
            return self._value is _DeadEnd.TRUE

    def is_no_deadend(self) -> bool:
        """Return whether this is in a known not-dead-end state."""
        with self._lock:
            return self._value is _DeadEnd.FALSE

    def set_deadend(self) -> None:
        with self._lock:
            self._value = _DeadEnd.TRUE

    def set_no_deadend(self) -> None:
        with self._lock:
            self._value = _DeadEnd.FALSE


#: Process-wide dead-end status.
DEADEND_STATE = DeadEndState()


@dataclass
class Cincinnati:
    """Cincinnati configuration."""

    base_url: str

    @classmethod
    def with_config(cls, cfg: CincinnatiInput, identity: Identity) -> Cincinnati:
        """Validate the configuration and expand a templated base URL."""
        context = "failed to validate cincinnati configuration"
        if not cfg.base_url:
            raise ValueError(f"{context}: empty Cincinnati base URL")
        base_url = cfg.base_url
        if is_templated(base_url):
            try:
                base_url = substitute_template(base_url, identity.url_variables())
            except ValueError as err:
                raise ValueError(f"{context}: {err}") from err
        log.info("Cincinnati service: %s", base_url)
        return cls(base_url=base_url)

    def fetch_update_hint(
        self,
        identity: Identity,
        denylisted_depls: Iterable[Release],
        allow_downgrade: bool,
    ) -> Release | None:
        """Return the next update target, or None (errors are logged)."""
        log.debug("checking upstream Cincinnati server for updates")
        try:
            return self.next_update(identity, denylisted_depls, allow_downgrade)
        except CincinnatiError as err:
            log.error(
                "failed to check Cincinnati for updates (%s): %s", err.error_kind(), err
            )
            return None

    def next_update(
        self,
        identity: Identity,
        denylisted_depls: Iterable[Release],
        allow_downgrade: bool,
    ) -> Release | None:
        """Fetch the graph and pick the next update; raise CincinnatiError on failure."""
        booted = identity.current_os
        try:
            client = (
                ClientBuilder(self.base_url)
                .query_params(identity.cincinnati_params())
                .build()
            )
        except ValueError as err:
            raise CincinnatiError.client(
                CincinnatiErrorKind.FAILED_CLIENT_BUILDER, str(err)
            ) from err
        graph = client.fetch_graph()
        return find_update(graph, booted, denylisted_depls, allow_downgrade)


def refresh_deadend_status(node: Node, state: DeadEndState | None = None) -> None:
    """Record whether `node` is a dead-end and refresh the MOTD fragment on change."""
    state = DEADEND_STATE if state is None else state
    reason = evaluate_deadend(node)
    if reason is not None:
        if state.is_deadend():
            return
        log.warning("current release detected as dead-end, reason: %s", reason)
        cmd = [AGENT_BINARY, "deadend-motd", "set", "--reason", reason]
        _run_pkexec(cmd, "failed to write dead-end release information")
        state.set_deadend()
        log.debug("MOTD updated with dead-end state")
    else:
        if state.is_no_deadend():
            return
        log.info("current release detected as not a dead-end")
        cmd = [AGENT_BINARY, "deadend-motd", "unset"]
        _run_pkexec(cmd, "failed to remove dead-end release MOTD file")
        state.set_no_deadend()
        log.debug("MOTD updated with no dead-end state")


def _run_pkexec(args: list[str], context: str) -> None:
    try:
        subprocess.run(["pkexec", *args], capture_output=True, check=False)
    except OSError as err:
        raise OSError(f"{context}: {err}") from err


def _parse_node(node: Node) -> Release:
    try:
        return Release.from_cincinnati(node)
    except ValueError as err:
        raise CincinnatiError.client(CincinnatiErrorKind.FAILED_NODE_PARSING, str(err)) from err


def find_update(
    graph: Graph,
    booted_depl: Release,
    denylisted_depls: Iterable[Release],
    allow_downgrade: bool,
) -> Release | None:
    """Walk the graph, looking for the best update reachable from the booted release."""
    log.debug(
        "got an update graph with %d nodes and %d edges", len(graph.nodes), len(graph.edges)
    )

    current = next(
        (
            (position, node)
            for position, node in enumerate(graph.nodes)
            if is_same_checksum(node, booted_depl)
        ),
        None,
    )
    if current is None:
        log.warning("booted deployment %s not found in the update graph", booted_depl.payload)
        return None
    cur_position, cur_node = current
    cur_release = _parse_node(cur_node)

    try:
        refresh_deadend_status(cur_node)
    except OSError as err:
        log.warning("failed to refresh dead-end status: %s", err)

    denylisted = find_denylisted_releases(graph, denylisted_depls)

    updates: set[Release] = set()
    for src, dst in graph.edges:
        if src != cur_position:
            continue
        if dst >= len(graph.nodes):
            raise CincinnatiError.client(
                CincinnatiErrorKind.FAILED_NODE_LOOKUP,
                f"target node '{dst}' not present in graph",
            )
        updates.add(_parse_node(graph.nodes[dst]))

    excluded = len(updates & denylisted)
    if excluded > 0:
        log.debug(
            "Found %d possible update target%s present in denylist; ignoring",
            excluded,
            "s" if excluded > 1 else "",
        )
    candidates = updates - denylisted
    if not candidates:
        return None
    target = max(candidates)

    if target <= cur_release:
        log.warning("downgrade hint towards target release '%s'", target.version)
        if not allow_downgrade:
            log.warning("update hint rejected, downgrades are not allowed by configuration")
            return None
    return target


def _graph_payload(payload: Payload) -> Payload:
    # Local OCI deployments carry a full OSTree image reference, while graph
    # nodes only hold the container pullspec.
    if payload.kind is PayloadKind.CHECKSUM:
        return payload
    try:
        return Payload.pullspec(OstreeImageReference.parse(payload.value).imgref.name)
    except ValueError:
        return payload


def find_denylisted_releases(graph: Graph, depls: Iterable[Release]) -> set[Release]:
    """Match (denylisted) local deployments to their graph releases."""
    payloads = {_graph_payload(release.payload) for release in depls}
    found: set[Release] = set()
    for node in graph.nodes:
        try:
            release = Release.from_cincinnati(node)
        except ValueError:
            continue
        if release.payload in payloads:
            found.add(release)
    return found


def is_same_checksum(node: Node, deploy: Release) -> bool:
    """Return whether a graph node corresponds to a local deployment."""
    scheme = node.metadata.get(SCHEME_KEY)
    if scheme == OCI_SCHEME:
        try:
            local_digest = deploy.get_image_reference()
        except ValueError:
            return False
        return local_digest is not None and local_digest == node.payload
    if scheme == CHECKSUM_SCHEME:
        return deploy.payload.kind is PayloadKind.CHECKSUM and deploy.payload.value == node.payload
    return False


def evaluate_deadend(node: Node) -> str | None:
    """Return the dead-end reason if the node is a dead-end, else None."""
    if node.metadata.get(DEADEND_KEY) != "true":
        return None
    return node.metadata.get(DEADEND_REASON_KEY) or "(unknown reason)"