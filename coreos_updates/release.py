"""OS releases, update-graph nodes and container image references."""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

AGE_INDEX_KEY = "org.fedoraproject.coreos.releases.age_index"
SCHEME_KEY = "org.fedoraproject.coreos.scheme"
CHECKSUM_SCHEME = "checksum"
OCI_SCHEME = "oci"

_U64_MAX = 2**64 - 1
_UINT_RE = re.compile(r"\+?[0-9]+")


def _parse_u64(text: str) -> int:
    if not _UINT_RE.fullmatch(text):
        raise ValueError(f"invalid age_index value: {text}")
    value = int(text)
    if value > _U64_MAX:
        raise ValueError(f"invalid age_index value: {text}")
    return value


@dataclass
class Node:
    """A node of a Cincinnati update graph."""

    version: str
    payload: str
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> Node:
        """Build a node from its decoded JSON object."""
        if not isinstance(data, Mapping):
            raise ValueError("invalid type: expected a node object")
        for name in ("version", "payload", "metadata"):
            if name not in data:
                raise ValueError(f"missing field `{name}`")
        version, payload, metadata = data["version"], data["payload"], data["metadata"]
        for name, value in (("version", version), ("payload", payload)):
            if not isinstance(value, str):
                raise ValueError(f"invalid type for field `{name}`: expected a string")
        if not isinstance(metadata, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in metadata.items()
        ):
            raise ValueError("invalid type for field `metadata`: expected a string map")
        return cls(version=version, payload=payload, metadata=dict(metadata))


class PayloadKind(enum.Enum):
    """How a release payload identifies the OS image."""

    CHECKSUM = "checksum"
    PULLSPEC = "pullspec"


@dataclass(frozen=True)
class Payload:
    """An OSTree checksum or an OCI image pullspec."""

    kind: PayloadKind
    value: str

    @classmethod
    def checksum(cls, value: str) -> Payload:
        return cls(PayloadKind.CHECKSUM, value)

    @classmethod
    def pullspec(cls, value: str) -> Payload:
        return cls(PayloadKind.PULLSPEC, value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Release:
    """An OS release, ordered by age index, then version, then payload."""

    version: str
    payload: Payload
    age_index: int | None = None

    def _sort_key(self) -> tuple[int, str, str]:
        age = 0 if self.age_index is None else self.age_index
        return (age, self.version, self.payload.value)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Release):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Release):
            return NotImplemented
        return self._sort_key() <= other._sort_key()

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Release):
            return NotImplemented
        return self._sort_key() > other._sort_key()

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Release):
            return NotImplemented
        return self._sort_key() >= other._sort_key()

    @classmethod
    def from_cincinnati(cls, node: Node) -> Release:
        """Build a release from a Cincinnati node."""
        if not node.version:
            raise ValueError("empty version field")
        if not node.payload:
            raise ValueError("empty payload field (checksum)")
        scheme = node.metadata.get(SCHEME_KEY)
        if scheme is None:
            raise ValueError(f"missing metadata key: {SCHEME_KEY}")
        if scheme == CHECKSUM_SCHEME:
            payload = Payload.checksum(node.payload)
        elif scheme == OCI_SCHEME:
            payload = Payload.pullspec(node.payload)
        else:
            raise ValueError(f"unexpected payload scheme: {scheme}")
        age = node.metadata.get(AGE_INDEX_KEY)
        if age is None:
            raise ValueError(f"missing metadata key: {AGE_INDEX_KEY}")
        return cls(version=node.version, payload=payload, age_index=_parse_u64(age))

    def get_image_reference(self) -> str | None:
        """Return the container image name of an OCI payload, or None for a checksum."""
        if self.payload.kind is PayloadKind.CHECKSUM:
            return None
        return OstreeImageReference.parse(self.payload.value).imgref.name


@dataclass(frozen=True)
class SignatureSource:
    """Where the signature of an OSTree container image is checked."""

    remote: str | None = None
    verified: bool = True

    def __post_init__(self) -> None:
        if self.remote is not None and not self.verified:
            raise ValueError("an OSTree remote signature source is always verified")

    @classmethod
    def ostree_remote(cls, name: str) -> SignatureSource:
        return cls(remote=name)

    @classmethod
    def container_policy(cls) -> SignatureSource:
        return cls()

    @classmethod
    def container_policy_allow_insecure(cls) -> SignatureSource:
        return cls(verified=False)


_TRANSPORTS = {
    "registry": "registry",
    "docker": "registry",
    "oci": "oci",
    "oci-archive": "oci-archive",
    "containers-storage": "containers-storage",
    "dir": "dir",
}


@dataclass(frozen=True)
class ImageReference:
    """A container image name together with its transport."""

    transport: str
    name: str

    def __str__(self) -> str:
        if self.transport == "registry":
            return f"docker://{self.name}"
        return f"{self.transport}:{self.name}"


def _parse_image_reference(text: str) -> ImageReference:
    transport_name, sep, name = text.partition(":")
    if not sep:
        raise ValueError(f"Missing ':' in {text}")
    transport = _TRANSPORTS.get(transport_name)
    if transport is None:
        raise ValueError(f"Unknown transport '{transport_name}'")
    if not name:
        raise ValueError(f"Invalid empty name in {text}")
    if transport_name == "docker":
        if not name.startswith("//"):
            raise ValueError(f"Missing // in docker:// in {text}")
        name = name[2:]
    return ImageReference(transport=transport, name=name)


@dataclass(frozen=True)
class OstreeImageReference:
    """A container image reference with its OSTree signature source."""

    sigverify: SignatureSource
    imgref: ImageReference

    @classmethod
    def parse(cls, text: str) -> OstreeImageReference:
        """Parse an `ostree-*:` image reference string."""
        scheme, sep, rest = text.partition(":")
        if not sep:
            raise ValueError(f"Missing ':' in {text}")
        if scheme == "ostree-image-signed":
            sigverify, imgref = SignatureSource.container_policy(), rest
        elif scheme == "ostree-unverified-image":
            sigverify, imgref = SignatureSource.container_policy_allow_insecure(), rest
        elif scheme == "ostree-unverified-registry":
            sigverify = SignatureSource.container_policy_allow_insecure()
            imgref = f"registry:{rest}"
        elif scheme in ("ostree-remote-registry", "ostree-remote-image"):
            remote, sep, imgref = rest.partition(":")
            if not sep:
                raise ValueError(f"Missing second ':' in {text}")
            if scheme == "ostree-remote-registry":
                imgref = f"registry:{imgref}"
            sigverify = SignatureSource.ostree_remote(remote)
        else:
            raise ValueError(f"Invalid ostree image reference scheme: {scheme}")
        return cls(sigverify=sigverify, imgref=_parse_image_reference(imgref))

    def __str__(self) -> str:
        source = self.sigverify
        if source.remote is not None:
            return f"ostree-remote-image:{source.remote}:{self.imgref}"
        if source.verified:
            return f"ostree-image-signed:{self.imgref}"
        if self.imgref.transport == "registry":
            return f"ostree-unverified-registry:{self.imgref.name}"
        return f"ostree-unverified-image:{self.imgref}"