import logging
import os
import subprocess
from unittest import mock

import pytest

from byohost.bundle_downloader import (
    BundleDownloader,
    BundleType,
    convert_error,
    get_bundle_name,
)
from byohost.exceptions import BundleDownloadError, BundleExtractError

NORMALIZED_OS = "Ubuntu_20.04.3_x64"
K8S_VERSION = "v1.22.5"
TEST_TAG = "test-tag"


class MockImgpkg:
    def __init__(self, err=None):
        self.call_count = 0
        self.err = err
        self.addresses = []

    def get(self, bundle_addr, target_dir):
        self.call_count += 1
        self.addresses.append(bundle_addr)
        if self.err is not None:
            raise self.err


@pytest.fixture
def downloader(tmp_path):
    return BundleDownloader(BundleType.K8S, "", str(tmp_path), logging.getLogger("test"))


def test_download_then_cache_hit(downloader):
    mi = MockImgpkg()
    downloader.download_from_repo(NORMALIZED_OS, K8S_VERSION, TEST_TAG, mi.get)
    downloader.download_from_repo(NORMALIZED_OS, K8S_VERSION, TEST_TAG, mi.get)
    assert mi.call_count == 1


def test_creates_missing_dirs(downloader):
    downloader.download_path = os.path.join(downloader.download_path, "a", "b", "c")
    mi = MockImgpkg()
    downloader.download_from_repo(NORMALIZED_OS, K8S_VERSION, TEST_TAG, mi.get)
    assert mi.call_count == 1
    assert os.path.isdir(downloader.bundle_dir_path(K8S_VERSION))


def test_renames_dir_after_download(downloader):
    downloader.repo_addr = "repo.ccoomm/r/"
    mi = MockImgpkg()
    downloader.download_from_repo(NORMALIZED_OS, K8S_VERSION, TEST_TAG, mi.get)
    assert mi.addresses == [downloader.bundle_addr(NORMALIZED_OS, K8S_VERSION, TEST_TAG)]
    assert os.path.isdir(downloader.bundle_dir_path(K8S_VERSION))
    assert not os.path.exists(downloader.bundle_dir_path(K8S_VERSION + "a"))


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ('fetching image: Get "a.a.com/": dial tcp: lookup a.a.com: no such host', BundleDownloadError),
        (
            "extracting image into directory: read tcp 192.168.0.1:1->1.1.1.1:1: read: connection timed out",
            BundleDownloadError,
        ),
        (
            'fetching image: Get "a.a/": dial tcp: lookup a.a: Temporary failure in name resolution',
            BundleDownloadError,
        ),
        ("extracting image into directory: write /tmp/asd: no space left on device", BundleExtractError),
    ],
)
def test_known_errors_are_converted(downloader, message, expected):
    mi = MockImgpkg(RuntimeError(message))
    with pytest.raises(expected) as info:
        downloader.download_from_repo(NORMALIZED_OS, K8S_VERSION, TEST_TAG, mi.get)
    assert str(info.value) == str(expected())


def test_unknown_error_passes_through(downloader):
    err = RuntimeError("something else")
    with pytest.raises(RuntimeError) as info:
        downloader.download_from_repo(NORMALIZED_OS, K8S_VERSION, TEST_TAG, MockImgpkg(err).get)
    assert info.value is err


def test_failed_download_leaves_nothing(tmp_path):
    bd = BundleDownloader(BundleType.K8S, "repo", str(tmp_path))
    with pytest.raises(BundleDownloadError):
        bd.download_from_repo(
            NORMALIZED_OS, K8S_VERSION, TEST_TAG, MockImgpkg(RuntimeError("no such host")).get
        )
    assert os.listdir(tmp_path) == []


def test_convert_error_none():
    assert convert_error(None) is None


def test_bundle_name_and_addr(downloader):
    assert get_bundle_name(NORMALIZED_OS) == "byoh-bundle-ubuntu_20.04.3_x64_k8s"
    downloader.repo_addr = "projects.registry.vmware.com"
    assert (
        downloader.bundle_addr(NORMALIZED_OS, K8S_VERSION, TEST_TAG)
        == "projects.registry.vmware.com/byoh-bundle-ubuntu_20.04.3_x64_k8s:test-tag"
    )


def test_bundle_dir_path_layout(tmp_path):
    bd = BundleDownloader(BundleType.K8S, "repo/x", str(tmp_path))
    assert bd.bundle_dir_path(K8S_VERSION) == os.path.join(str(tmp_path), "repo.x", "k8s") + "-v1.22.5"
    assert bd.bundle_path_or_preview(K8S_VERSION) == bd.bundle_dir_path(K8S_VERSION)


def test_preview_mode_does_not_download():
    bd = BundleDownloader(BundleType.K8S, "repo", "")
    assert bd.bundle_path_or_preview(K8S_VERSION) == ""
    with mock.patch("byohost.bundle_downloader.subprocess.run") as run:
        bd.download_or_preview(NORMALIZED_OS, K8S_VERSION, TEST_TAG)
    assert run.call_count == 0


def test_download_runs_imgpkg(tmp_path):
    bd = BundleDownloader(BundleType.K8S, "repo", str(tmp_path))
    completed = subprocess.CompletedProcess([], 0, stdout="", stderr="")
    with mock.patch("byohost.bundle_downloader.subprocess.run", return_value=completed) as run:
        bd.download_or_preview(NORMALIZED_OS, K8S_VERSION, TEST_TAG)
    args = run.call_args.args[0]
    assert args[:3] == ["imgpkg", "pull", "--recursive"]
    assert bd.bundle_addr(NORMALIZED_OS, K8S_VERSION, TEST_TAG) in args
    assert os.path.isdir(bd.bundle_dir_path(K8S_VERSION))


def test_download_imgpkg_failure_converted(tmp_path):
    bd = BundleDownloader(BundleType.K8S, "repo", str(tmp_path))
    completed = subprocess.CompletedProcess(
        [], 1, stdout="", stderr="dial tcp: lookup a.a.com: no such host\n"
    )
    with mock.patch("byohost.bundle_downloader.subprocess.run", return_value=completed):
        with pytest.raises(BundleDownloadError):
            bd.download(NORMALIZED_OS, K8S_VERSION, TEST_TAG)
    assert not os.path.exists(bd.bundle_dir_path(K8S_VERSION))