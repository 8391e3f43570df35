"""Client for rpm-ostree: a status cache plus the requests the update agent makes."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from .release import OstreeImageReference, Payload, PayloadKind, Release
from .rpm_ostree_deploy import (
    deploy_locked,
    deploy_register_driver,
    finalize_deployment,
    invoke_cli_cleanup,
)
from .rpm_ostree_status import (
    Status,
    booted_status,
    invoke_cli_status,
    parse_local_deployments,
    parse_pending_deployment,
)

log = logging.getLogger(__name__)

#: Directory of local OSTree deployments; its mtime changes with new deployments.
OSTREE_DEPLS_PATH = "/ostree/deploy"


@dataclass(frozen=True)
class StatusCache:
    """Cached status, valid while the deployments directory keeps this mtime."""

    status: Status
    mtime_ns: int


class RpmOstreeClient:
    """Blocking rpm-ostree client, caching `rpm-ostree status` output.

    Meant to be used from a single worker thread.
    """

    def __init__(
        self,
        deployments_path: str | os.PathLike[str] = OSTREE_DEPLS_PATH,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.deployments_path = Path(deployments_path)
        self.status_cache: StatusCache | None = None
        self.cache_requests = 0
        self.cache_misses = 0
        self._sleep = sleep

    def get_status(self) -> Status:
        """Return the deployments status, querying rpm-ostree only when stale."""
        self.cache_requests += 1
        try:
            mtime_ns = os.stat(self.deployments_path).st_mtime_ns
        except OSError as err:
            raise OSError(
                f"failed to query directory {self.deployments_path}: {err}"
            ) from err

        cache = self.status_cache
        if cache is not None and cache.mtime_ns == mtime_ns:
            log.debug("status cache is up to date")
            return cache.status

        self.cache_misses += 1
        log.debug("cache stale, invoking rpm-ostree to retrieve local deployments")
        status = invoke_cli_status(False)
        self.status_cache = StatusCache(status=status, mtime_ns=mtime_ns)
        return status

    def local_deployments(self, omit_staged: bool) -> set[Release]:
        """Return local deployments, using the cache where possible."""
        return parse_local_deployments(self.get_status(), omit_staged)

    def stage_deployment(self, release: Release, allow_downgrade: bool) -> Release:
        """Stage a deployment of `release`, leaving it finalization-locked."""
        local = booted_status(invoke_cli_status(True))

        if release.payload.kind is not PayloadKind.PULLSPEC:
            log.debug("request to stage release: %r", release)
            staged = deploy_locked(release, allow_downgrade, None)
            log.debug("rpm-ostree CLI returned: %r", staged)
            return staged

        local_imgref = local.container_image_reference()
        if local_imgref is None:
            raise RuntimeError(
                "Zincati does not support OCI updates if the current deployment "
                "is not already an OCI image reference."
            )

        pullspec = release.payload.value
        custom_origin = local.custom_origin
        if custom_origin is not None:
            custom_origin = replace(custom_origin, url=pullspec)
        else:
            log.warning("Missing custom origin information for local OCI deployment.")

        # The graph only carries the container pullspec; keep the local
        # signature source so that the wrapped OSTree commit gets verified.
        registry_imgref = OstreeImageReference.parse(
            f"ostree-unverified-image:docker://{pullspec}"
        ).imgref
        rebase_target = OstreeImageReference(
            sigverify=local_imgref.sigverify, imgref=registry_imgref
        )
        oci_release = Release(
            version=release.version,
            payload=Payload.pullspec(str(rebase_target)),
            age_index=release.age_index,
        )
        log.debug("request to stage release: %r", oci_release)
        staged = deploy_locked(oci_release, allow_downgrade, custom_origin)
        log.debug("rpm-ostree CLI returned: %r", staged)
        return staged

    def finalize_deployment(self, release: Release) -> Release:
        """Unlock and finalize a staged deployment."""
        log.debug("request to finalize release: %r", release)
        finalized = finalize_deployment(release)
        log.debug("rpm-ostree CLI returned: %r", finalized)
        return finalized

    def query_local_deployments(self, omit_staged: bool) -> set[Release]:
        """Return local deployments, optionally leaving out the staged one."""
        log.debug("request to list local deployments")
        releases = self.local_deployments(omit_staged)
        log.debug("rpm-ostree CLI returned: %r", releases)
        return releases

    def query_pending_deployment_stream(self) -> tuple[Release, str] | None:
        """Return the staged release and its stream, if any."""
        log.debug("fetching details for staged deployment")
        status = invoke_cli_status(False)
        try:
            return parse_pending_deployment(status)
        except ValueError as err:
            raise ValueError(f"failed to introspect pending deployment: {err}") from err

    def cleanup_pending_deployment(self) -> None:
        """Drop the pending deployment."""
        log.debug("request to cleanup pending deployment")
        invoke_cli_cleanup()

    def register_as_driver(self) -> None:
        """Register as the rpm-ostree update driver, retrying until it succeeds."""
        log.debug("request to register as rpm-ostree update driver")
        deploy_register_driver(self._sleep)