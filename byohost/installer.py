"""Installation and uninstallation of Kubernetes components for a given OS
and Kubernetes version.

The components are packaged as bundles hosted in OCI registries. Without a
download path the installer runs in preview mode: it reports every step but
neither downloads nor executes anything.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field

from byohost.algo import BaseK8sInstaller, OutputBuilder, Ubuntu20_4K8s1_22
from byohost.bundle_downloader import BundleDownloader, BundleType
from byohost.checks import run_prechecks
from byohost.exceptions import (
    BundleInstallError,
    BundleUninstallError,
    DetectOSError,
    InstallerError,
    OsK8sNotSupportedError,
)
from byohost.os_detector import OSDetector
from byohost.registry import Registry

_UBUNTU_20_04_BUNDLE = "Ubuntu_20.04.1_x86-64"
_UBUNTU_20_04_FILTER = "Ubuntu_20.04.*_x86-64"
_SUPPORTED_K8S = ("v1.21.*", "v1.22.*", "v1.23.*")


def apply_fmt(step_fmt: str, text: str) -> str:
    """Apply a %-style format to ``text``; an empty format leaves it as is."""
    return (step_fmt or "%s") % text


class LogPrinter(OutputBuilder):
    """Sends every kind of output to a logger at info level."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def out(self, text: str) -> None:
        self.logger.info(text)

    def err(self, text: str) -> None:
        self.logger.info(text)

    def cmd(self, text: str) -> None:
        self.logger.info(text)

    def desc(self, text: str) -> None:
        self.logger.info(text)

    def msg(self, text: str) -> None:
        self.logger.info(text)


@dataclass
class StringPrinter(OutputBuilder):
    """Collects formatted output lines; ``str()`` joins them with the divider."""

    steps: list[str] = field(default_factory=list)
    desc_fmt: str = ""
    cmd_fmt: str = ""
    out_fmt: str = ""
    err_fmt: str = ""
    msg_fmt: str = ""
    str_divider: str = "\n"

    def out(self, text: str) -> None:
        self.steps.append(apply_fmt(self.out_fmt, text))

    def err(self, text: str) -> None:
        self.steps.append(apply_fmt(self.err_fmt, text))

    def cmd(self, text: str) -> None:
        self.steps.append(apply_fmt(self.cmd_fmt, text))

    def desc(self, text: str) -> None:
        self.steps.append(apply_fmt(self.desc_fmt, text))

    def msg(self, text: str) -> None:
        self.steps.append(apply_fmt(self.msg_fmt, text))

    def clear(self) -> None:
        """Forget every collected line."""
        self.steps.clear()

    def __str__(self) -> str:
        return (self.str_divider or "\n").join(self.steps)


def get_supported_registry(output_builder: OutputBuilder | None = None) -> Registry:
    """Return a registry with installers for the supported OS and Kubernetes versions."""
    registry = Registry()
    for k8s in _SUPPORTED_K8S:
        registry.add_bundle_installer(
            _UBUNTU_20_04_BUNDLE,
            k8s,
            BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), output_builder=output_builder),
        )
    # Any patch version of a supported major and minor version matches.
    for k8s in _SUPPORTED_K8S:
        registry.add_k8s_filter(k8s)
    registry.add_os_filter(_UBUNTU_20_04_FILTER, _UBUNTU_20_04_BUNDLE)
    return registry


@dataclass
class Installer:
    """Installs and uninstalls Kubernetes bundles on the detected OS."""

    registry: Registry
    bundle_downloader: BundleDownloader
    detected_os: str
    logger: logging.Logger

    def install(self, bundle_repo: str, k8s_ver: str, tag: str) -> None:
        """Install ``k8s_ver`` from ``bundle_repo`` on the current OS."""
        algo_installer = self._installer_with_bundle(bundle_repo, k8s_ver, tag)
        try:
            algo_installer.install()
        except Exception as exc:
            raise BundleInstallError() from exc

    def uninstall(self, bundle_repo: str, k8s_ver: str, tag: str) -> None:
        """Uninstall ``k8s_ver`` from the current OS."""
        algo_installer = self._installer_with_bundle(bundle_repo, k8s_ver, tag)
        try:
            algo_installer.uninstall()
        except Exception as exc:
            raise BundleUninstallError() from exc

    def _installer_with_bundle(self, bundle_repo: str, k8s_ver: str, tag: str) -> BaseK8sInstaller:
        self.bundle_downloader.repo_addr = bundle_repo
        algo_installer, os_bundle = self.registry.get_installer(self.detected_os, k8s_ver)
        if algo_installer is None:
            raise OsK8sNotSupportedError()
        self.logger.info("Current OS will be handled as OS=%s", os_bundle)

        # An empty bundle path means preview mode.
        prepared = dataclasses.replace(
            algo_installer,
            bundle_path=self.bundle_downloader.bundle_path_or_preview(k8s_ver),
        )
        self.bundle_downloader.download_or_preview(os_bundle, k8s_ver, tag)
        return prepared


def new_unchecked(
    current_os: str,
    bundle_type: BundleType | str = BundleType.K8S,
    download_path: str = "",
    logger: logging.Logger | None = None,
    output_builder: OutputBuilder | None = None,
) -> Installer:
    """Return an installer for ``current_os`` without detection or prechecks.

    With an empty download path the installer runs in preview mode.
    """
    logger = logger or logging.getLogger(__name__)
    downloader = BundleDownloader(BundleType(bundle_type), "", download_path, logger)
    registry = get_supported_registry(output_builder)
    if not registry.list_k8s(current_os):
        raise OsK8sNotSupportedError()
    return Installer(
        registry=registry,
        bundle_downloader=downloader,
        detected_os=current_os,
        logger=logger,
    )


def create_installer(
    download_path: str,
    bundle_type: BundleType | str = BundleType.K8S,
    logger: logging.Logger | None = None,
) -> Installer:
    """Return an installer for the detected OS, storing bundles under ``download_path``."""
    if not download_path:
        raise InstallerError("empty download path")
    logger = logger or logging.getLogger(__name__)

    try:
        current_os = OSDetector().detect()
    except Exception as exc:
        raise DetectOSError() from exc
    logger.info("Detected OS=%s", current_os)

    if not run_prechecks(logger, current_os):
        raise InstallerError("precheck failed")

    return new_unchecked(current_os, bundle_type, download_path, logger, LogPrinter(logger))


def list_supported_os() -> tuple[list[str], list[str]]:
    """Return the supported OS filters and the bundle OS of each."""
    return get_supported_registry().list_os()


def list_supported_k8s(os: str) -> list[str]:
    """Return the Kubernetes versions supported for a bundle or host OS."""
    return get_supported_registry().list_k8s(os)


def preview_changes(os: str, k8s_ver: str) -> tuple[str, str]:
    """Describe the install and uninstall changes without applying them."""
    previewer = StringPrinter(msg_fmt="# %s")
    registry = get_supported_registry(previewer)
    algo_installer, _ = registry.get_installer(os, k8s_ver)
    if algo_installer is None:
        raise OsK8sNotSupportedError()

    algo_installer.install()
    install = str(previewer)
    previewer.clear()
    algo_installer.uninstall()
    uninstall = str(previewer)
    return install, uninstall