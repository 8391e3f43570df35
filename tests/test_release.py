import pytest

from coreos_updates.release import (
    AGE_INDEX_KEY,
    CHECKSUM_SCHEME,
    OCI_SCHEME,
    SCHEME_KEY,
    ImageReference,
    Node,
    OstreeImageReference,
    Payload,
    PayloadKind,
    Release,
    SignatureSource,
)

OCI_NAME = (
    "quay.io/fedora/fedora-coreos@sha256:"
    "c4a15145a232d882ccf2ed32d22c06c01a7cf62317eb966a98340ae4bd56dfa6"
)
OCI_REF = f"ostree-remote-image:fedora:docker://{OCI_NAME}"


def rel(version, payload, age):
    return Release(version=version, payload=Payload.checksum(payload), age_index=age)


def test_node_from_dict():
    data = {
        "version": "30.20190725.0",
        "metadata": {
            "org.fedoraproject.coreos.releases.age_index": "1",
            "org.fedoraproject.coreos.scheme": "checksum",
        },
        "payload": "8b79877efa7ac06becd8637d95f8ca83aa385f89f383288bf3c2c31ca53216c7",
    }
    node = Node.from_dict(data)
    assert node.version == "30.20190725.0"
    assert node.payload == data["payload"]
    assert node.metadata == data["metadata"]


@pytest.mark.parametrize("missing", ["version", "payload", "metadata"])
def test_node_missing_field(missing):
    data = {"version": "v", "payload": "p", "metadata": {}}
    del data[missing]
    with pytest.raises(ValueError, match=f"missing field `{missing}`"):
        Node.from_dict(data)


def test_node_bad_metadata_type():
    with pytest.raises(ValueError):
        Node.from_dict({"version": "v", "payload": "p", "metadata": {"a": 1}})


def test_release_from_cincinnati():
    node = Node(
        version="mock-version",
        payload="mock-payload",
        metadata={SCHEME_KEY: CHECKSUM_SCHEME, AGE_INDEX_KEY: "0"},
    )
    release = Release.from_cincinnati(node)
    assert release == Release("mock-version", Payload.checksum("mock-payload"), 0)


def test_release_from_cincinnati_oci():
    node = Node(
        version="mock-version",
        payload=OCI_NAME,
        metadata={SCHEME_KEY: OCI_SCHEME, AGE_INDEX_KEY: "3"},
    )
    release = Release.from_cincinnati(node)
    assert release.payload.kind is PayloadKind.PULLSPEC
    assert release.payload.value == OCI_NAME
    assert release.age_index == 3


@pytest.mark.parametrize(
    "node",
    [
        Node("", "mock-payload", {SCHEME_KEY: CHECKSUM_SCHEME}),
        Node("mock-version", "", {SCHEME_KEY: CHECKSUM_SCHEME}),
        Node("mock-version", "mock-payload", {SCHEME_KEY: CHECKSUM_SCHEME}),
        Node("mock-version", "mock-payload", {}),
    ],
)
def test_invalid_node(node):
    with pytest.raises(ValueError):
        Release.from_cincinnati(node)


def test_unexpected_scheme():
    node = Node("v", "p", {SCHEME_KEY: "floppy", AGE_INDEX_KEY: "0"})
    with pytest.raises(ValueError, match="unexpected payload scheme: floppy"):
        Release.from_cincinnati(node)


@pytest.mark.parametrize("age", ["abc", "-1", "1.5", "", str(2**64)])
def test_invalid_age_index(age):
    node = Node("v", "p", {SCHEME_KEY: CHECKSUM_SCHEME, AGE_INDEX_KEY: age})
    with pytest.raises(ValueError, match="invalid age_index value"):
        Release.from_cincinnati(node)


def test_release_cmp_by_age():
    n0 = rel("v0", "p0", 0)
    n1 = rel("v1", "p1", 1)
    assert n0 < n1
    assert n0 == n0
    assert not (n0 < n0)
    assert not (n0 > n0)


def test_release_cmp_by_version():
    n0 = rel("v0", "p0", 0)
    n1 = rel("v1", "p1", 0)
    assert n0 < n1
    assert not (n0 < n0)
    assert not (n0 > n0)


def test_release_cmp_by_payload():
    n0 = rel("v0", "p0", 0)
    n1 = rel("v0", "p1", 0)
    assert n0 < n1
    assert not (n0 < n0)
    assert not (n0 > n0)


def test_missing_age_sorts_as_zero():
    unaged = rel("v9", "p9", None)
    assert unaged < rel("v0", "p0", 1)
    assert max([rel("a", "x", 2), unaged, rel("b", "y", 1)]) == rel("a", "x", 2)


def test_releases_hashable_in_sets():
    items = {rel("v0", "p0", 0), rel("v0", "p0", 0), rel("v1", "p1", 1)}
    assert len(items) == 2


def test_payload_str():
    assert str(Payload.checksum("abc")) == "abc"
    assert str(Payload.pullspec(OCI_NAME)) == OCI_NAME


def test_get_image_reference():
    assert rel("v", "sha", 0).get_image_reference() is None
    oci = Release("v", Payload.pullspec(OCI_REF), None)
    assert oci.get_image_reference() == OCI_NAME


def test_get_image_reference_invalid():
    with pytest.raises(ValueError):
        Release("v", Payload.pullspec("not-an-ostree-ref"), None).get_image_reference()


def test_parse_remote_image():
    parsed = OstreeImageReference.parse(OCI_REF)
    assert parsed.sigverify == SignatureSource.ostree_remote("fedora")
    assert parsed.imgref == ImageReference("registry", OCI_NAME)
    assert str(parsed) == OCI_REF


def test_remote_registry_equals_remote_image():
    a = OstreeImageReference.parse(f"ostree-remote-registry:fedora:{OCI_NAME}")
    b = OstreeImageReference.parse(OCI_REF)
    assert a == b


def test_unverified_registry_round_trip():
    text = f"ostree-unverified-registry:{OCI_NAME}"
    parsed = OstreeImageReference.parse(text)
    assert parsed.sigverify == SignatureSource.container_policy_allow_insecure()
    assert str(parsed) == text


@pytest.mark.parametrize(
    "text",
    [
        "ostree-image-signed:oci:/var/lib/image",
        "ostree-unverified-image:dir:/srv/image",
        f"ostree-image-signed:docker://{OCI_NAME}",
    ],
)
def test_str_is_stable(text):
    parsed = OstreeImageReference.parse(text)
    assert OstreeImageReference.parse(str(parsed)) == parsed


@pytest.mark.parametrize(
    "text",
    [
        "no-colon",
        "ostree-bogus:docker://quay.io/x",
        "ostree-remote-image:fedora",
        "ostree-image-signed:ftp:quay.io/x",
        "ostree-image-signed:docker:quay.io/x",
        "ostree-image-signed:oci:",
    ],
)
def test_parse_invalid(text):
    with pytest.raises(ValueError):
        OstreeImageReference.parse(text)


def test_remote_signature_source_cannot_be_unverified():
    with pytest.raises(ValueError):
        SignatureSource(remote="fedora", verified=False)