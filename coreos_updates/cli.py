"""Command-line interface."""

from __future__ import annotations

import argparse
import enum
import logging
import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass

from .deadend import refresh_motd_fragment, remove_motd_fragment
from .rpm_ostree_status import SystemInoperable

log = logging.getLogger(__name__)

#: Logging level below DEBUG, for the most verbose output.
TRACE = 5

PROG = "zincati"


class CliUsageError(ValueError):
    """Invalid command-line arguments."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise CliUsageError(message)


class DeadendAction(enum.Enum):
    """Actions of the `deadend-motd` subcommand."""

    SET = "set"
    UNSET = "unset"


def _verbosity_parent(dest: str) -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "-v",
        action="count",
        default=0,
        dest=dest,
        help="verbosity level (higher is more verbose)",
    )
    return parent


def _build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog=PROG,
        description="Agent for Fedora CoreOS auto-updates.",
        parents=[_verbosity_parent("verbosity")],
    )
    commands = parser.add_subparsers(dest="command", required=True, parser_class=_Parser)
    deadend = commands.add_parser(
        "deadend-motd",
        parents=[_verbosity_parent("verbosity_1")],
        help="set or unset deadend MOTD state",
    )
    actions = deadend.add_subparsers(dest="action", required=True, parser_class=_Parser)
    set_cmd = actions.add_parser(
        "set",
        parents=[_verbosity_parent("verbosity_2")],
        help="set deadend state, with given reason",
    )
    set_cmd.add_argument("--reason", required=True)
    actions.add_parser(
        "unset",
        parents=[_verbosity_parent("verbosity_2")],
        help="unset deadend state",
    )
    return parser


@dataclass(frozen=True)
class CliOptions:
    """Parsed command-line options."""

    verbosity: int
    action: DeadendAction
    reason: str | None = None

    def loglevel(self) -> int:
        """Return the logging level selected by the `-v` flags."""
        if self.verbosity == 0:
            return logging.WARNING
        if self.verbosity == 1:
            return logging.INFO
        if self.verbosity == 2:
            return logging.DEBUG
        return TRACE

    def run(self) -> None:
        """Dispatch the subcommand."""
        try:
            ensure_user(
                "root",
                "deadend-motd subcommand must be run as `root` user, "
                "and should be called by the Zincati agent process",
            )
            if self.action is DeadendAction.SET:
                refresh_motd_fragment(self.reason or "")
            else:
                remove_motd_fragment()
        except (OSError, ValueError) as err:
            raise RuntimeError("failed to run `deadend-motd` subcommand") from err


def parse_args(argv: Sequence[str] | None = None) -> CliOptions:
    """Parse command-line arguments; raise CliUsageError on bad usage."""
    args = list(sys.argv[1:] if argv is None else argv)
    ns = _build_parser().parse_args(args)
    verbosity = ns.verbosity + getattr(ns, "verbosity_1", 0) + getattr(ns, "verbosity_2", 0)
    return CliOptions(
        verbosity=verbosity,
        action=DeadendAction(ns.action),
        reason=getattr(ns, "reason", None),
    )


def ensure_user(user: str, msg: str) -> None:
    """Raise PermissionError with `msg` unless running as `user`."""
    import pwd

    try:
        current = pwd.getpwuid(os.geteuid()).pw_name
    except KeyError:
        current = None
    if current != user:
        raise PermissionError(msg)


def _error_chain(err: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = err
    while current is not None and current not in chain:
        chain.append(current)
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
    return chain


def log_error_chain(err: BaseException) -> None:
    """Log an error and its causes as a series of error messages."""
    chain = _error_chain(err)
    top = str(chain[0]) or "(unspecified failure)"
    log.error("error: %s", top)
    for cause in chain[1:]:
        log.error(" -> %s", cause)


def _setup_logging(level: int) -> None:
    logging.addLevelName(TRACE, "TRACE")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    package_logger = logging.getLogger(__package__ or "coreos_updates")
    package_logger.handlers[:] = [handler]
    package_logger.setLevel(level)
    package_logger.propagate = False


def main(argv: Sequence[str] | None = None) -> int:
    """Run till completion or failure; return the process exit code."""
    try:
        options = parse_args(argv)
    except CliUsageError as err:
        print(f"{PROG}: error: {err}", file=sys.stderr)
        return 2

    _setup_logging(options.loglevel())
    try:
        options.run()
    except Exception as err:
        log_error_chain(err)
        if isinstance(_error_chain(err)[-1], SystemInoperable):
            return 0
        return 1
    return 0