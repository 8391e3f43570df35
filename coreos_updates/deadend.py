"""MOTD fragment announcing that the booted release is a dead-end."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

#: Directory of MOTD fragments.
MOTD_FRAGMENTS_DIR = "/run/motd.d/"

#: MOTD fragment holding the dead-end state.
DEADEND_MOTD_PATH = "/run/motd.d/85-zincati-deadend.motd"


def refresh_motd_fragment(
    reason: str, motd_path: str | os.PathLike[str] = DEADEND_MOTD_PATH
) -> None:
    """Write the dead-end MOTD fragment atomically, with the given reason."""
    target = Path(motd_path)
    directory = target.parent
    # The temporary file lives next to the target, so that it gets the same
    # labels and the final rename is atomic.
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=".deadend.", suffix=".motd.partial", dir=directory
        )
    except OSError as err:
        raise OSError(
            f"failed to create temporary MOTD file under '{directory}': {err}"
        ) from err

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            try:
                os.chmod(tmp_path, 0o644)
            except OSError as err:
                raise OSError(
                    f"failed to set permissions of temporary MOTD file at '{tmp_path}': {err}"
                ) from err
            try:
                handle.write(
                    f"This release is a dead-end and will not further auto-update: {reason}\n"
                )
                handle.flush()
            except OSError as err:
                raise OSError(
                    f"failed to write MOTD content to '{tmp_path}': {err}"
                ) from err
        try:
            os.replace(tmp_path, target)
        except OSError as err:
            raise OSError(f"failed to persist MOTD fragment to '{target}': {err}") from err
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def remove_motd_fragment(motd_path: str | os.PathLike[str] = DEADEND_MOTD_PATH) -> None:
    """Remove the dead-end MOTD fragment, if present."""
    try:
        os.remove(motd_path)
    except FileNotFoundError:
        return
    except OSError as err:
        raise OSError(f"failed to remove MOTD fragment at '{motd_path}': {err}") from err