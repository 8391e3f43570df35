"""Extraction of the platform ID from the kernel command line."""

from __future__ import annotations

import logging
import os

log = logging.getLogger(__name__)

CMDLINE_PLATFORM_FLAG = "ignition.platform.id"


def read_id(cmdline_path: str | os.PathLike[str]) -> str:
    """Read the platform ID from a kernel cmdline file."""
    try:
        with open(cmdline_path, encoding="utf-8") as handle:
            contents = handle.read()
    except OSError as err:
        raise OSError(f"failed to read cmdline file {cmdline_path}: {err}") from err

    platform = find_flag_value(CMDLINE_PLATFORM_FLAG, contents)
    if platform is None:
        raise ValueError(f"could not find flag '{CMDLINE_PLATFORM_FLAG}' in {cmdline_path}")
    log.debug("found platform id: %s", platform)
    return platform


def find_flag_value(flagname: str, cmdline: str) -> str | None:
    """Return the first non-empty value of `flagname` in a cmdline string."""
    for element in cmdline.split(" "):
        key, sep, value = element.partition("=")
        if not sep or key != flagname:
            continue
        bare = value.strip()
        if bare:
            return bare
    return None