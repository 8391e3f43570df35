"""Parsing of `rpm-ostree status --json` output."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .release import OstreeImageReference, Payload, Release

log = logging.getLogger(__name__)

#: Client identifier reported to rpm-ostree.
CLIENT_ID = "zincati"

_STREAM_KEY = "fedora-coreos.stream"
_MANIFEST_KEY = "ostree.manifest"


class SystemInoperable(Exception):
    """An error which should not result in a retry or restart."""


def _opt_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"invalid type for field `{key}`: expected a string")


def _req(data: Mapping[str, Any], key: str, kind: type, what: str) -> Any:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, kind):
        raise ValueError(f"invalid type for field `{key}`: expected {what}")
    return value


@dataclass(frozen=True)
class CustomOrigin:
    """Custom origin of a deployment: URL and description."""

    url: str
    description: str

    @classmethod
    def from_json_value(cls, data: Any) -> CustomOrigin:
        """Build from either a `[url, description]` pair or an object."""
        if isinstance(data, list):
            if len(data) != 2 or not all(isinstance(v, str) for v in data):
                raise ValueError("invalid custom origin: expected two strings")
            return cls(url=data[0], description=data[1])
        if isinstance(data, Mapping):
            return cls(
                url=_req(data, "url", str, "a string"),
                description=_req(data, "description", str, "a string"),
            )
        raise ValueError("invalid type for field `custom-origin`")


@dataclass(frozen=True)
class Deployment:
    """The parts of an rpm-ostree deployment that matter for updates."""

    booted: bool
    checksum: str
    version: str
    container_image_ref: str | None = None
    custom_origin: CustomOrigin | None = None
    base_checksum: str | None = None
    stream: str | None = None
    oci_manifest: str | None = None
    staged: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> Deployment:
        if not isinstance(data, Mapping):
            raise ValueError("invalid type: expected a deployment object")
        meta = _req(data, "base-commit-meta", Mapping, "an object")
        staged = data.get("staged", False)
        if not isinstance(staged, bool):
            raise ValueError("invalid type for field `staged`: expected a boolean")
        origin = data.get("custom-origin")
        return cls(
            booted=_req(data, "booted", bool, "a boolean"),
            checksum=_req(data, "checksum", str, "a string"),
            version=_req(data, "version", str, "a string"),
            container_image_ref=_opt_str(data, "container-image-reference"),
            custom_origin=None if origin is None else CustomOrigin.from_json_value(origin),
            base_checksum=_opt_str(data, "base-checksum"),
            stream=_opt_str(meta, _STREAM_KEY),
            oci_manifest=_opt_str(meta, _MANIFEST_KEY),
            staged=staged,
        )

    def into_release(self) -> Release:
        """Convert into a release without an age index."""
        if self.container_image_ref is not None:
            payload = Payload.pullspec(self.container_image_ref)
        else:
            payload = Payload.checksum(self.base_revision())
        return Release(version=self.version, payload=payload, age_index=None)

    def base_revision(self) -> str:
        """Return the deployment base revision."""
        if self.container_image_ref is not None:
            return self.container_image_ref
        if self.base_checksum is not None:
            return self.base_checksum
        return self.checksum

    def ostree_checksum(self) -> str:
        """Return the deployment OSTree checksum."""
        return self.checksum

    def container_image_reference(self) -> OstreeImageReference | None:
        """Return the parsed container image reference, if any and valid."""
        if self.container_image_ref is None:
            return None
        try:
            return OstreeImageReference.parse(self.container_image_ref)
        except ValueError:
            return None


@dataclass(frozen=True)
class Status:
    """Decoded output of `rpm-ostree status --json`."""

    deployments: tuple[Deployment, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> Status:
        if not isinstance(data, Mapping):
            raise ValueError("invalid type: expected a status object")
        entries = _req(data, "deployments", list, "a list")
        return cls(deployments=tuple(Deployment.from_dict(d) for d in entries))

    @classmethod
    def from_json(cls, text: str | bytes) -> Status:
        return cls.from_dict(json.loads(text))


def fedora_coreos_stream_from_deployment(deploy: Deployment) -> str:
    """Return the updates stream of a deployment."""
    if deploy.stream is not None:
        stream = deploy.stream
    elif deploy.oci_manifest is not None:
        manifest = json.loads(deploy.oci_manifest)
        if not isinstance(manifest, Mapping):
            raise ValueError("invalid OCI image manifest: expected an object")
        annotations = manifest.get("annotations")
        stream = annotations.get(_STREAM_KEY) if isinstance(annotations, Mapping) else None
        if not isinstance(stream, str):
            raise ValueError(
                "Missing `fedora-coreos.stream` in base image manifest annotations"
            )
    else:
        raise ValueError("Cannot deserialize ostree base image manifest")
    if not stream:
        raise ValueError("empty stream value")
    return stream


def booted_status(status: Status) -> Deployment:
    """Return the booted deployment."""
    booted = next((d for d in status.deployments if d.booted), None)
    if booted is None:
        raise ValueError("no booted deployment found")
    if not booted.base_revision():
        raise ValueError("empty base revision")
    if not booted.version:
        raise ValueError("empty version")
    return booted


def parse_booted(status: Status) -> Release:
    """Return the release of the booted deployment."""
    return booted_status(status).into_release()


def parse_booted_updates_stream(status: Status) -> str:
    """Return the updates stream of the booted deployment."""
    return fedora_coreos_stream_from_deployment(booted_status(status))


def get_staged_deployment(status: Status) -> Deployment | None:
    """Return the staged deployment; there is at most one."""
    return next((d for d in status.deployments if d.staged), None)


def parse_pending_deployment(status: Status) -> tuple[Release, str] | None:
    """Return the staged release and its stream, if a deployment is staged."""
    staged = get_staged_deployment(status)
    if staged is None:
        return None
    stream = fedora_coreos_stream_from_deployment(staged)
    return staged.into_release(), stream


def parse_local_deployments(status: Status, omit_staged: bool) -> set[Release]:
    """Return the releases of all local deployments."""
    return {
        entry.into_release()
        for entry in status.deployments
        if not (omit_staged and entry.staged)
    }


def invoke_cli_status(booted_only: bool) -> Status:
    """Run `rpm-ostree status --json` and decode its output."""
    cmd = ["rpm-ostree", "status"]
    if booted_only:
        cmd.append("--booted")
    cmd.append("--json")
    env = {**os.environ, "RPMOSTREE_CLIENT_ID": CLIENT_ID}
    try:
        result = subprocess.run(cmd, capture_output=True, env=env, check=False)
    except OSError as err:
        raise OSError(f"failed to run 'rpm-ostree' binary: {err}") from err
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", "replace")
        raise RuntimeError(f"rpm-ostree status failed:\n{stderr}")
    return Status.from_json(result.stdout)