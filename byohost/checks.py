"""Prechecks run before Kubernetes components are installed."""

from __future__ import annotations

import logging
import shutil
import sys

from byohost.exceptions import InstallerError

PRE_REQUISITE_PACKAGES = ("socat", "ebtables", "ethtool", "conntrack")


def check_prerequisite_packages() -> None:
    """Raise InstallerError when a required program is missing on Linux."""
    if not sys.platform.startswith("linux"):
        return
    missing = [name for name in PRE_REQUISITE_PACKAGES if shutil.which(name) is None]
    if missing:
        raise InstallerError(f"required package(s): [{' '.join(missing)}] not found")


def run_prechecks(logger: logging.Logger, os: str) -> bool:
    """Run every precheck for ``os``; return whether all of them passed."""
    try:
        check_prerequisite_packages()
    except InstallerError as exc:
        logger.error("Failed pre-requisite packages precheck: %s", exc)
        return False
    return True