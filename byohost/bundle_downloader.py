"""Download of installer bundles from an OCI repository with a local cache."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from byohost.exceptions import BundleDownloadError, BundleExtractError

DOWNLOAD_PATH_PERMISSIONS = 0o777

_KNOWN_ERRORS: dict[str, type[Exception]] = {
    "no such host": BundleDownloadError,
    "connection timed out": BundleDownloadError,
    "temporary failure in name resolution": BundleDownloadError,
    "no space left on device": BundleExtractError,
}


class BundleType(str, Enum):
    """Kinds of bundle that can be downloaded."""

    K8S = "k8s"


def get_bundle_name(normalized_os_version: str) -> str:
    """Return the bundle name for an OS, in lower case."""
    return f"byoh-bundle-{normalized_os_version}_k8s".lower()


def convert_error(err: BaseException | None) -> BaseException | None:
    """Map known download failures to installer errors; return others unchanged."""
    if err is None:
        return None
    text = str(err).lower()
    for suffix, error_class in _KNOWN_ERRORS.items():
        if text.endswith(suffix):
            return error_class()
    return err


@dataclass
class BundleDownloader:
    """Downloads bundles into ``download_path``, one directory per repository."""

    bundle_type: BundleType
    repo_addr: str
    download_path: str
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def download(self, normalized_os_version: str, k8s_version: str, tag: str) -> None:
        """Download and extract the bundle unless it is already cached."""
        self.download_from_repo(
            normalized_os_version, k8s_version, tag, self._download_by_imgpkg
        )

    def download_from_repo(
        self,
        normalized_os_version: str,
        k8s_version: str,
        tag: str,
        download_by_tool: Callable[[str, str], None],
    ) -> None:
        """Download the bundle with ``download_by_tool(bundle_addr, target_dir)``.

        The download goes to a temporary directory, renamed into place once
        it succeeds. A cached bundle is not downloaded again.
        """
        repo_dir = self._bundle_path_with_repo()
        try:
            os.makedirs(repo_dir, DOWNLOAD_PATH_PERMISSIONS, exist_ok=True)

            bundle_dir = self.bundle_dir_path(k8s_version)
            if os.path.isdir(bundle_dir):
                self.logger.info("Cache hit path=%s", bundle_dir)
                return
            self.logger.info("Cache miss path=%s", bundle_dir)

            temp_dir = tempfile.mkdtemp(prefix="tempBundle", dir=repo_dir)
            try:
                bundle_addr = self.bundle_addr(normalized_os_version, k8s_version, tag)
                try:
                    download_by_tool(bundle_addr, temp_dir)
                except Exception as exc:
                    converted = convert_error(exc)
                    if converted is exc:
                        raise
                    raise converted from exc
                os.rename(temp_dir, bundle_dir)
            finally:
                shutil.rmtree(temp_dir, ignore_errors=True)
        finally:
            # Removes the repository directory only when nothing is in it.
            try:
                os.rmdir(repo_dir)
            except OSError as exc:
                self.logger.debug("Did not remove directory path=%s: %s", repo_dir, exc)

    def download_or_preview(self, os: str, k8s: str, tag: str) -> None:
        """Download the bundle, or do nothing in preview mode (no download path)."""
        if not self.download_path:
            self.logger.info("Running in preview mode, skip bundle download")
            return
        self.download(os, k8s, tag)

    def bundle_dir_path(self, k8s_version: str) -> str:
        """Return the directory that holds the bundle for ``k8s_version``."""
        base = os.path.join(self._bundle_path_with_repo(), self.bundle_type.value)
        return f"{base}-{k8s_version}"

    def bundle_path_or_preview(self, k8s_version: str) -> str:
        """Return the bundle directory, or an empty string in preview mode."""
        if not self.download_path:
            return ""
        return self.bundle_dir_path(k8s_version)

    def bundle_addr(self, normalized_os_version: str, k8s_version: str, tag: str) -> str:
        """Return the full address of the bundle in the repository."""
        return f"{self.repo_addr}/{get_bundle_name(normalized_os_version)}:{tag}"

    def _bundle_path_with_repo(self) -> str:
        path = os.path.join(self.download_path, self.repo_addr.replace("/", "."))
        return os.path.normpath(path) if path else path

    def _download_by_imgpkg(self, bundle_addr: str, bundle_dir_path: str) -> None:
        self.logger.info("Downloading bundle from=%s", bundle_addr)
        result = subprocess.run(
            ["imgpkg", "pull", "--recursive", "-i", bundle_addr, "-o", bundle_dir_path],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            message = result.stderr.strip() or f"imgpkg exited with status {result.returncode}"
            raise RuntimeError(message)