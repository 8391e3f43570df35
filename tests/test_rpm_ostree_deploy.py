import json
import subprocess
from unittest import mock

import pytest

from coreos_updates import rpm_ostree_deploy as deploy
from coreos_updates.release import Payload, Release
from coreos_updates.rpm_ostree_status import CustomOrigin

IMAGE = "ostree-remote-image:fedora:docker://quay.io/fedora/fedora-coreos@sha256:abc"


class FakeRpmOstree:
    """Records commands and answers them with canned results."""

    def __init__(self, returncodes=(), status=None):
        self.calls = []
        self.envs = []
        self.returncodes = list(returncodes)
        self.status = status

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        self.envs.append(kwargs.get("env"))
        if cmd[:2] == ["rpm-ostree", "status"]:
            return subprocess.CompletedProcess(cmd, 0, json.dumps(self.status).encode(), b"")
        code = self.returncodes.pop(0) if self.returncodes else 0
        return subprocess.CompletedProcess(cmd, code, b"", b"mock failure")


def checksum_release():
    return Release(version="foo", payload=Payload.checksum("bar"))


def staged_status(image_ref):
    return {
        "deployments": [
            {
                "booted": False,
                "staged": True,
                "checksum": "staged-commit",
                "version": "2",
                "container-image-reference": image_ref,
                "base-commit-meta": {},
            },
            {
                "booted": True,
                "checksum": "booted-commit",
                "version": "1",
                "base-commit-meta": {},
            },
        ]
    }


def test_deploy_locked_err():
    fake = FakeRpmOstree(returncodes=[1])
    attempts, failures = deploy.DEPLOY_ATTEMPTS.value, deploy.DEPLOY_FAILURES.value
    with mock.patch("subprocess.run", side_effect=fake):
        with pytest.raises(RuntimeError, match="rpm-ostree deploy failed"):
            deploy.deploy_locked(checksum_release(), True, None)
    assert deploy.DEPLOY_ATTEMPTS.value == attempts + 1
    assert deploy.DEPLOY_FAILURES.value == failures + 1


def test_deploy_locked_ok():
    fake = FakeRpmOstree()
    release = checksum_release()
    attempts = deploy.DEPLOY_ATTEMPTS.value
    with mock.patch("subprocess.run", side_effect=fake):
        assert deploy.deploy_locked(release, True, None) == release
    assert deploy.DEPLOY_ATTEMPTS.value == attempts + 1
    assert fake.calls == [
        ["rpm-ostree", "deploy", "--lock-finalization", "--skip-branch-check", "revision=bar"]
    ]
    assert fake.envs[0]["RPMOSTREE_CLIENT_ID"] == "zincati"


def test_deploy_disallows_downgrade():
    fake = FakeRpmOstree()
    release = checksum_release()
    with mock.patch("subprocess.run", side_effect=fake):
        result = deploy.invoke_cli_deploy(release, False, None)
    assert result == release
    assert fake.calls[0] == [
        "rpm-ostree",
        "deploy",
        "--lock-finalization",
        "--skip-branch-check",
        "revision=bar",
        "--disallow-downgrade",
    ]


def test_rebase_with_custom_origin():
    fake = FakeRpmOstree()
    release = Release(version="2", payload=Payload.pullspec(IMAGE))
    origin = CustomOrigin(url="quay.io/fedora/fedora-coreos@sha256:abc", description="desc")
    with mock.patch("subprocess.run", side_effect=fake):
        assert deploy.invoke_cli_deploy(release, True, origin) == release
    assert fake.calls[0] == [
        "rpm-ostree",
        "rebase",
        IMAGE,
        "--lock-finalization",
        "--custom-origin-url",
        origin.url,
        "--custom-origin-description",
        "desc",
    ]


def test_register_driver_retries_with_backoff():
    fake = FakeRpmOstree(returncodes=[1, 1, 1, 0])
    sleeps = []
    failures = deploy.REGISTER_DRIVER_FAILURES.value
    with mock.patch("subprocess.run", side_effect=fake):
        deploy.deploy_register_driver(sleep=sleeps.append)
    assert sleeps == [1, 2, 4]
    assert sum(sleeps) >= 7
    assert deploy.REGISTER_DRIVER_FAILURES.value == failures + 3
    assert fake.calls[-1] == ["rpm-ostree", "deploy", "", "--register-driver=Zincati"]


def test_register_driver_backoff_is_capped():
    fake = FakeRpmOstree(returncodes=[1] * 11)
    sleeps = []
    with mock.patch("subprocess.run", side_effect=fake):
        deploy.deploy_register_driver(sleep=sleeps.append)
    assert max(sleeps) == deploy.MAX_RETRY_SECS
    assert sleeps[-2:] == [256, 256]
    assert sleeps == sorted(sleeps)


def test_register_driver_failure_message():
    fake = FakeRpmOstree(returncodes=[1])
    with mock.patch("subprocess.run", side_effect=fake):
        with pytest.raises(RuntimeError, match="register-driver failed:\nmock failure"):
            deploy.invoke_cli_register()


def test_cleanup():
    fake = FakeRpmOstree(returncodes=[0, 1])
    with mock.patch("subprocess.run", side_effect=fake):
        deploy.invoke_cli_cleanup()
        with pytest.raises(RuntimeError, match="rpm-ostree cleanup failed"):
            deploy.invoke_cli_cleanup()
    assert fake.calls[0] == ["rpm-ostree", "cleanup", "-p"]


def test_missing_binary():
    with mock.patch("subprocess.run", side_effect=FileNotFoundError("rpm-ostree")):
        with pytest.raises(OSError, match="failed to run 'rpm-ostree' binary"):
            deploy.invoke_cli_cleanup()


def test_finalize_checksum():
    fake = FakeRpmOstree()
    release = checksum_release()
    with mock.patch("subprocess.run", side_effect=fake):
        assert deploy.finalize_deployment(release) == release
    assert fake.calls == [["rpm-ostree", "finalize-deployment", "bar"]]


def test_finalize_failure_counts():
    fake = FakeRpmOstree(returncodes=[1])
    failures = deploy.FINALIZE_FAILURES.value
    with mock.patch("subprocess.run", side_effect=fake):
        with pytest.raises(RuntimeError, match="finalize-deployment failed"):
            deploy.finalize_deployment(checksum_release())
    assert deploy.FINALIZE_FAILURES.value == failures + 1


def test_finalize_oci_uses_staged_commit():
    fake = FakeRpmOstree(status=staged_status(IMAGE))
    release = Release(version="2", payload=Payload.pullspec(IMAGE))
    with mock.patch("subprocess.run", side_effect=fake):
        assert deploy.finalize_deployment(release) == release
    assert fake.calls[-1] == ["rpm-ostree", "finalize-deployment", "staged-commit"]


def test_finalize_oci_mismatch():
    other = "ostree-remote-image:fedora:docker://quay.io/fedora/fedora-coreos@sha256:def"
    fake = FakeRpmOstree(status=staged_status(other))
    release = Release(version="2", payload=Payload.pullspec(IMAGE))
    with mock.patch("subprocess.run", side_effect=fake):
        with pytest.raises(RuntimeError, match="does not match the update reference"):
            deploy.finalize_deployment(release)
    assert all(call[1] != "finalize-deployment" for call in fake.calls)


def test_finalize_oci_without_staged():
    status = staged_status(IMAGE)
    status["deployments"] = status["deployments"][1:]
    fake = FakeRpmOstree(status=status)
    release = Release(version="2", payload=Payload.pullspec(IMAGE))
    with mock.patch("subprocess.run", side_effect=fake):
        with pytest.raises(RuntimeError, match="No staged deployment to finalize."):
            deploy.finalize_deployment(release)