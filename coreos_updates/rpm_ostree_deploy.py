"""Staging, finalizing and cleaning up deployments, and driver registration, via rpm-ostree."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass

from .release import PayloadKind, Release
from .rpm_ostree_status import CustomOrigin, get_staged_deployment, invoke_cli_status

log = logging.getLogger(__name__)

#: Name under which the agent registers as the rpm-ostree update driver.
DRIVER_NAME = "Zincati"

#: Client identifier reported to rpm-ostree.
CLIENT_ID = "zincati"

#: Upper bound of the driver registration retry delay, in seconds.
MAX_RETRY_SECS = 256


@dataclass
class Counter:
    """A monotonically increasing count."""

    value: int = 0

    def inc(self) -> None:
        self.value += 1


DEPLOY_ATTEMPTS = Counter()
DEPLOY_FAILURES = Counter()
REGISTER_DRIVER_FAILURES = Counter()
FINALIZE_ATTEMPTS = Counter()
FINALIZE_FAILURES = Counter()


def _run(cmd: list[str], *, client_env: bool = True) -> subprocess.CompletedProcess[bytes]:
    env = {**os.environ, "RPMOSTREE_CLIENT_ID": CLIENT_ID} if client_env else None
    try:
        return subprocess.run(cmd, capture_output=True, env=env, check=False)
    except OSError as err:
        raise OSError(f"failed to run 'rpm-ostree' binary: {err}") from err


def _check(result: subprocess.CompletedProcess[bytes], what: str) -> None:
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", "replace")
        raise RuntimeError(f"{what} failed:\n{stderr}")


def deploy_locked(
    release: Release, allow_downgrade: bool, custom_origin: CustomOrigin | None = None
) -> Release:
    """Deploy an update and leave the new deployment finalization-locked."""
    DEPLOY_ATTEMPTS.inc()
    try:
        return invoke_cli_deploy(release, allow_downgrade, custom_origin)
    except Exception:
        DEPLOY_FAILURES.inc()
        raise


def deploy_register_driver(sleep: Callable[[float], None] = time.sleep) -> None:
    """Register as update driver, retrying with exponential backoff capped at 256 seconds."""
    retry_secs = 1
    while True:
        try:
            invoke_cli_register()
            return
        except (OSError, RuntimeError) as err:
            REGISTER_DRIVER_FAILURES.inc()
            log.error("%s\nretrying in %ss", err, retry_secs)
            sleep(retry_secs)
            if retry_secs < MAX_RETRY_SECS:
                retry_secs *= 2


def invoke_cli_register() -> None:
    """Run `rpm-ostree deploy --register-driver`."""
    cmd = ["rpm-ostree", "deploy", "", f"--register-driver={DRIVER_NAME}"]
    _check(_run(cmd), "rpm-ostree deploy --register-driver")


def invoke_cli_deploy(
    release: Release, allow_downgrade: bool, custom_origin: CustomOrigin | None = None
) -> Release:
    """Run `rpm-ostree deploy` (checksum) or `rpm-ostree rebase` (OCI image), locked."""
    payload = release.payload
    if payload.kind is PayloadKind.PULLSPEC:
        cmd = ["rpm-ostree", "rebase", payload.value, "--lock-finalization"]
        if custom_origin is not None:
            cmd += [
                "--custom-origin-url",
                custom_origin.url,
                "--custom-origin-description",
                custom_origin.description,
            ]
        else:
            log.warning("No custom-origin information to attach to deployment.")
    else:
        cmd = [
            "rpm-ostree",
            "deploy",
            "--lock-finalization",
            "--skip-branch-check",
            f"revision={payload.value}",
        ]
    if not allow_downgrade:
        cmd.append("--disallow-downgrade")
    _check(_run(cmd), "rpm-ostree deploy")
    return release


def invoke_cli_cleanup() -> None:
    """Run `rpm-ostree cleanup -p` to drop the pending deployment."""
    _check(_run(["rpm-ostree", "cleanup", "-p"], client_env=False), "rpm-ostree cleanup")


def finalize_deployment(release: Release) -> Release:
    """Unlock and finalize the staged deployment of `release`."""
    FINALIZE_ATTEMPTS.inc()
    cmd = ["rpm-ostree", "finalize-deployment"]
    payload = release.payload
    if payload.kind is PayloadKind.PULLSPEC:
        # The commit of an OCI deployment is only known once staged.
        staged = get_staged_deployment(invoke_cli_status(False))
        if staged is None:
            raise RuntimeError("No staged deployment to finalize.")
        imgref = staged.container_image_reference()
        if imgref is None or str(imgref) != payload.value:
            raise RuntimeError(
                "The staged deployment does not match the update reference. Won't finalize."
            )
        cmd.append(staged.ostree_checksum())
    else:
        cmd.append(payload.value)

    result = _run(cmd)
    if result.returncode != 0:
        FINALIZE_FAILURES.inc()
        _check(result, "rpm-ostree finalize-deployment")
    return release