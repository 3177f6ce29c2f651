"""Registry of installers for bundle operating systems and Kubernetes versions.

The registry holds three kinds of entries:

1. installers keyed by bundle OS and Kubernetes version filter;
2. filters matching a concrete host OS to a bundle OS;
3. filters matching a concrete Kubernetes version to a version filter,
   such as ``v1.22.3`` to ``v1.22.*``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any


class DuplicateInstallerError(ValueError):
    """Raised when an installer is registered twice for the same OS and version."""


def _matches(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text) is not None
    except re.error:
        return False


@dataclass
class Registry:
    """Maps host OS and Kubernetes versions to installers."""

    _installers: dict[str, dict[str, Any]] = field(default_factory=dict)
    _os_filters: list[tuple[str, str]] = field(default_factory=list)
    _k8s_filters: list[str] = field(default_factory=list)

    def add_bundle_installer(self, os: str, k8s_ver: str, installer: Any) -> None:
        """Register ``installer`` for bundle OS ``os`` and version ``k8s_ver``."""
        by_version = self._installers.setdefault(os, {})
        if k8s_ver in by_version:
            raise DuplicateInstallerError(f"{os} {k8s_ver} already exists")
        by_version[k8s_ver] = installer

    def add_os_filter(self, os_filter: str, os_bundle: str) -> None:
        """Map host OS names matching ``os_filter`` to ``os_bundle``."""
        self._os_filters.append((os_filter, os_bundle))

    def add_k8s_filter(self, k8s_filter: str) -> None:
        """Add a Kubernetes version filter; it is also the version key."""
        self._k8s_filters.append(k8s_filter)

    def list_os(self) -> tuple[list[str], list[str]]:
        """Return the OS filters and the bundle OS each one maps to."""
        return (
            [os_filter for os_filter, _ in self._os_filters],
            [os_bundle for _, os_bundle in self._os_filters],
        )

    def list_k8s(self, os_bundle_host: str) -> list[str]:
        """Return the Kubernetes versions for a bundle OS or a host OS."""
        if os_bundle_host in self._installers:
            return list(self._installers[os_bundle_host])
        return list(self._installers.get(self._resolve_os(os_bundle_host), {}))

    def get_installer(self, os_host: str, k8s_ver: str) -> tuple[Any, str]:
        """Return the installer for a host OS and version, and the bundle OS.

        The installer is None when nothing matches.
        """
        os_bundle = self._resolve_os(os_host)
        k8s_bundle = self._resolve_k8s(k8s_ver)
        return self._installers.get(os_bundle, {}).get(k8s_bundle), os_bundle

    def _resolve_os(self, os: str) -> str:
        return next(
            (bundle for os_filter, bundle in self._os_filters if _matches(os_filter, os)),
            "",
        )

    def _resolve_k8s(self, k8s: str) -> str:
        return next((f for f in self._k8s_filters if _matches(f, k8s)), "")