"""Command line for listing, previewing, installing and uninstalling bundles."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from byohost.bundle_downloader import BundleType, get_bundle_name
from byohost.installer import (
    LogPrinter,
    create_installer,
    list_supported_k8s,
    list_supported_os,
    new_unchecked,
    preview_changes,
)
from byohost.os_detector import OSDetector

_logger = logging.getLogger("byohost.cli")

_MIN_WIDTH = 8
_TAB_WIDTH = 8


def _align_block(rows: list[list[str]]) -> list[str]:
    widths: dict[int, int] = {}
    for cells in rows:
        for index, cell in enumerate(cells[:-1]):
            widths[index] = max(widths.get(index, _MIN_WIDTH), len(cell))
    lines = []
    for cells in rows:
        parts = []
        for index, cell in enumerate(cells[:-1]):
            width = -(-widths[index] // _TAB_WIDTH) * _TAB_WIDTH
            parts.append(cell + "\t" * (-(-(width - len(cell)) // _TAB_WIDTH)))
        parts.append(cells[-1])
        lines.append("".join(parts))
    return lines


def _align_tabs(text: str) -> str:
    """Align tab-separated cells to tab stops, one block of tabbed lines at a time."""
    output: list[str] = []
    block: list[list[str]] = []
    for line in text.split("\n"):
        if "\t" in line:
            block.append(line.split("\t"))
            continue
        if block:
            output.extend(_align_block(block))
            block = []
        output.append(line)
    if block:
        output.extend(_align_block(block))
    return "\n".join(output)


def _list_supported() -> None:
    text = (
        "The corresponding bundles (particular to a patch version) should be pushed "
        "to the OCI registry of choice\n"
        "By default, BYOH uses projects.registry.vmware.com\n\n"
        "Note: It may happen that a specific patch version of a k8s minor release "
        "is not available in the OCI registry\n\n"
    )
    text += "OS\tK8S Version\tBYOH Bundle Name\n"
    text += "---\t-----------\t----------------\n"
    os_filters, os_bundles = list_supported_os()
    for os_filter, os_bundle in zip(os_filters, os_bundles):
        for k8s in list_supported_k8s(os_bundle):
            text += f"{os_filter}\t {k8s}\t{get_bundle_name(os_bundle)}:{k8s}\n"
    print(_align_tabs(text), end="")


def _detect_os() -> None:
    try:
        detected = OSDetector().detect()
    except Exception as exc:
        _logger.error("Error detecting OS: %s", exc)
        return
    print(f"Detected OS as: {detected}", end="")


def _run_installer(args: argparse.Namespace, install: bool) -> None:
    try:
        if args.os:
            # Override the detection of the current OS.
            installer = new_unchecked(
                args.os, BundleType.K8S, args.cache_path, _logger, LogPrinter(_logger)
            )
        else:
            installer = create_installer(args.cache_path, BundleType.K8S, _logger)
    except Exception as exc:
        _logger.error("unable to create installer: %s", exc)
        return

    try:
        if install:
            installer.install(args.bundle_repo, args.k8s, args.tag)
        else:
            installer.uninstall(args.bundle_repo, args.k8s, args.tag)
    except Exception as exc:
        _logger.error("error installing/uninstalling: %s", exc)


def _preview_os_changes(args: argparse.Namespace) -> None:
    try:
        install, uninstall = preview_changes(args.os, args.k8s)
    except Exception as exc:
        _logger.error("error previewing changes for os os=%s k8s=%s: %s", args.os, args.k8s, exc)
        return
    print(f"Install changes:\n{install}\n")
    print(f"Uninstall changes:\n{uninstall}", end="")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="byoh-installer")
    parser.add_argument("--list-supported", action="store_true",
                        help="List all supported OS, Kubernetes versions and BYOH Bundle names")
    parser.add_argument("--detect", action="store_true",
                        help="Detects the current operating system")
    parser.add_argument("--install", action="store_true", help="Install a BYOH Bundle")
    parser.add_argument("--uninstall", action="store_true", help="Uninstall a BYOH Bundle")
    parser.add_argument("--bundle-repo", default="projects.registry.vmware.com",
                        help="BYOH Bundle Repository")
    parser.add_argument("--cache-path", default=".", help="Path to the local bundle cache")
    parser.add_argument("--k8s", default="1.22.1", help="Kubernetes version")
    parser.add_argument("--os", default="",
                        help="OS. If used with install/uninstall, override os detection")
    parser.add_argument("--tag", default="", help="BYOH Bundle tag")
    parser.add_argument("--preview-os-changes", action="store_true",
                        help="Preview the install and uninstall changes for the specified OS")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the installer command line."""
    logging.basicConfig(level=logging.INFO)
    args = _parser().parse_args(argv)

    if args.list_supported:
        _list_supported()
    elif args.detect:
        _detect_os()
    elif args.install:
        _run_installer(args, install=True)
    elif args.uninstall:
        _run_installer(args, install=False)
    elif args.preview_os_changes:
        _preview_os_changes(args)
    else:
        print("No flag set. See --help")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())