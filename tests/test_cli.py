import logging

import pytest

from coreos_updates.cli import (
    TRACE,
    CliUsageError,
    DeadendAction,
    ensure_user,
    log_error_chain,
    main,
    parse_args,
)


def test_deadend_motd_set_missing_flag():
    with pytest.raises(CliUsageError):
        parse_args(["deadend-motd", "set"])


def test_deadend_motd_set_missing_reason():
    with pytest.raises(CliUsageError):
        parse_args(["deadend-motd", "set", "--reason"])


def test_deadend_motd_set_empty_reason():
    cli = parse_args(["deadend-motd", "set", "--reason", ""])
    assert cli.action is DeadendAction.SET
    assert cli.reason == ""


def test_deadend_motd_set_reason():
    cli = parse_args(["deadend-motd", "set", "--reason", "foo"])
    assert cli.action is DeadendAction.SET
    assert cli.reason == "foo"


def test_deadend_motd_unset_extra_flags():
    with pytest.raises(CliUsageError):
        parse_args(["deadend-motd", "unset", "--reason", "foo"])


def test_deadend_motd_unset():
    cli = parse_args(["deadend-motd", "unset"])
    assert cli.action is DeadendAction.UNSET
    assert cli.reason is None


@pytest.mark.parametrize(
    ("argv", "level"),
    [
        (["deadend-motd", "unset"], logging.WARNING),
        (["-v", "deadend-motd", "unset"], logging.INFO),
        (["-vv", "deadend-motd", "unset"], logging.DEBUG),
        (["-vvv", "deadend-motd", "unset"], TRACE),
        (["-v", "deadend-motd", "-v", "unset"], logging.DEBUG),
    ],
)
def test_loglevel(argv, level):
    assert parse_args(argv).loglevel() == level


def test_unknown_subcommand():
    with pytest.raises(CliUsageError):
        parse_args(["moo"])


def test_ensure_user_mismatch():
    with pytest.raises(PermissionError, match="must be run as a specific user"):
        ensure_user("no-such-user-here", "must be run as a specific user")


def test_log_error_chain(caplog):
    try:
        try:
            raise ValueError("inner failure")
        except ValueError as inner:
            raise RuntimeError("top failure") from inner
    except RuntimeError as err:
        with caplog.at_level(logging.ERROR, logger="coreos_updates.cli"):
            log_error_chain(err)
    assert [r.getMessage() for r in caplog.records] == [
        "error: top failure",
        " -> inner failure",
    ]


def test_main_usage_error(capsys):
    assert main(["deadend-motd", "set"]) == 2
    assert "error" in capsys.readouterr().err