"""Support for the write_files and runcmd directives of cloud-init.

A bootstrap script is a YAML document. Every entry of ``write_files`` is
decoded, rendered as a template and written to disk; afterwards every
command of ``runCmd`` is run through the shell.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
import os
import re
import subprocess
import zlib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

import yaml

_FILE_PERMISSION = 0o644
_DIR_PERMISSION = 0o744
_MAX_UINT32 = 2**32 - 1

_BASE64 = "application/base64"
_GZIP = "application/x-gzip"
_PLAIN = "text/plain"


class CloudInitError(Exception):
    """Raised when a bootstrap script cannot be parsed or applied."""


def _lowered(mapping: Mapping) -> dict[str, Any]:
    # Keys are matched without regard to case.
    return {str(key).lower(): value for key, value in mapping.items()}


def _typed(values: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = values.get(key)
    if value is None:
        return default
    if kind is str and isinstance(value, bool):
        raise CloudInitError(f"field {key!r} must be a string, got {value!r}")
    if not isinstance(value, kind):
        raise CloudInitError(f"field {key!r} must be of type {kind.__name__}, got {value!r}")
    return value


@dataclass
class FileSpec:
    """One entry of the write_files directive."""

    path: str
    content: str = ""
    encoding: str = ""
    owner: str = ""
    permissions: str = ""
    append: bool = False

    @classmethod
    def from_mapping(cls, data: Any) -> FileSpec:
        """Build a file entry from a parsed YAML mapping."""
        if not isinstance(data, Mapping):
            raise CloudInitError(f"write_files entry must be a mapping, got {data!r}")
        values = _lowered(data)
        return cls(
            path=_typed(values, "path", str, ""),
            content=_typed(values, "content", str, ""),
            encoding=_typed(values, "encoding", str, ""),
            owner=_typed(values, "owner", str, ""),
            permissions=_typed(values, "permissions", str, ""),
            append=_typed(values, "append", bool, False),
        )


@dataclass
class _BootstrapConfig:
    files_to_write: list[FileSpec] = field(default_factory=list)
    commands_to_execute: list[str] = field(default_factory=list)

    @classmethod
    def from_document(cls, document: Any) -> _BootstrapConfig:
        if document is None:
            return cls()
        if not isinstance(document, Mapping):
            raise CloudInitError(f"bootstrap script must be a mapping, got {document!r}")
        values = _lowered(document)
        files = _typed(values, "write_files", list, [])
        commands = _typed(values, "runcmd", list, [])
        for command in commands:
            if not isinstance(command, str):
                raise CloudInitError(f"runCmd entries must be strings, got {command!r}")
        return cls(
            files_to_write=[FileSpec.from_mapping(entry) for entry in files],
            commands_to_execute=list(commands),
        )


class _FileWriting(Protocol):
    def mkdir_if_not_exists(self, dir_name: str) -> None: ...

    def write_to_file(self, file: FileSpec) -> None: ...


class _CmdRunning(Protocol):
    def run_cmd(self, cmd: str) -> None: ...


class _TemplateParsing(Protocol):
    def parse_template(self, template_content: str) -> str: ...


class CmdRunner:
    """Runs commands through /bin/sh."""

    def run_cmd(self, cmd: str) -> None:
        """Run ``cmd``; raise CalledProcessError when it exits non-zero.

        Standard error is passed through; standard output is discarded.
        """
        subprocess.run(
            ["/bin/sh", "-c", cmd],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            check=True,
        )


def _parse_permissions(permissions: str) -> int:
    if not re.fullmatch(r"[0-7]+", permissions):
        raise CloudInitError(f"Error parse the file permission {permissions}")
    mode = int(permissions, 8)
    if mode > _MAX_UINT32:
        raise CloudInitError(f"Error parse the file permission {permissions}")
    return mode & 0o777


def _lookup_owner(owner: str) -> tuple[int, int]:
    parts = owner.split(":")
    if len(parts) != 2:
        raise CloudInitError(f"Invalid owner format '{owner}'")
    import pwd

    try:
        entry = pwd.getpwnam(parts[0])
    except KeyError as exc:
        raise CloudInitError(f"Error Lookup user {parts[0]}") from exc
    return entry.pw_uid, entry.pw_gid


class FileWriter:
    """Creates directories and writes files as described by write_files."""

    def mkdir_if_not_exists(self, dir_name: str) -> None:
        """Create ``dir_name`` and its parents unless it already exists."""
        if not os.path.exists(dir_name):
            os.makedirs(dir_name, _DIR_PERMISSION, exist_ok=True)

    def write_to_file(self, file: FileSpec) -> None:
        """Write the content of ``file``, then apply permissions and owner.

        An existing file is written over from its start, or appended to
        when ``append`` is set.
        """
        flags = os.O_WRONLY | os.O_CREAT
        if file.append:
            flags |= os.O_APPEND
        fd = os.open(file.path, flags, _FILE_PERMISSION)
        with os.fdopen(fd, "wb") as handle:
            handle.write(file.content.encode("utf-8", "surrogateescape"))
            handle.flush()
            if file.permissions:
                os.fchmod(handle.fileno(), _parse_permissions(file.permissions))
            if file.owner:
                uid, gid = _lookup_owner(file.owner)
                os.fchown(handle.fileno(), uid, gid)


_ACTION = re.compile(r"\{\{(-\s)?(.*?)(\s-)?\}\}", re.DOTALL)
_FIELD_CHAIN = re.compile(r"(?:\.[A-Za-z_]\w*)+")
_NO_VALUE = object()


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _lookup_field(value: Any, name: str) -> Any:
    if value is None:
        raise CloudInitError(f"nil data; no entry for key {name!r}")
    if isinstance(value, Mapping):
        return value[name] if name in value else _NO_VALUE
    for attribute in (name, _snake_case(name)):
        if hasattr(value, attribute):
            result = getattr(value, attribute)
            return result() if callable(result) else result
    raise CloudInitError(f"can't evaluate field {name} in type {type(value).__name__}")


def _format_value(value: Any) -> str:
    if value is _NO_VALUE:
        return "<no value>"
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class TemplateParser:
    """Renders ``{{ .Field }}`` placeholders against ``template``.

    Supported actions are ``{{ . }}``, field chains such as
    ``{{ .A.B }}``, string literals and comments, with ``{{-`` and ``-}}``
    trimming surrounding whitespace. Fields are looked up as mapping keys
    or attributes (also in snake_case).
    """

    template: Any = None

    def parse_template(self, template_content: str) -> str:
        """Return the rendered content; raise CloudInitError on bad templates."""
        pieces: list[str] = []
        position = 0
        trim_next = False
        for match in _ACTION.finditer(template_content):
            text = template_content[position : match.start()]
            self._check_text(text)
            if trim_next:
                text = text.lstrip()
            if match.group(1):
                text = text.rstrip()
            pieces.append(text)
            pieces.append(self._evaluate(match.group(2).strip()))
            trim_next = bool(match.group(3))
            position = match.end()
        tail = template_content[position:]
        self._check_text(tail)
        pieces.append(tail.lstrip() if trim_next else tail)
        return "".join(pieces)

    @staticmethod
    def _check_text(text: str) -> None:
        if "{{" in text:
            raise CloudInitError("template: unclosed action")

    def _evaluate(self, body: str) -> str:
        if body.startswith("/*") and body.endswith("*/"):
            return ""
        if not body:
            raise CloudInitError("template: missing value for command")
        if body == ".":
            return _format_value(self.template)
        if _FIELD_CHAIN.fullmatch(body):
            value = self.template
            names = body[1:].split(".")
            for index, name in enumerate(names):
                value = _lookup_field(value, name)
                if value is _NO_VALUE and index < len(names) - 1:
                    raise CloudInitError(f"template: nil value evaluating {body}")
            return _format_value(value)
        if len(body) >= 2 and body[0] == body[-1] == "`":
            return body[1:-1]
        if len(body) >= 2 and body[0] == body[-1] == '"':
            try:
                return json.loads(body)
            except ValueError as exc:
                raise CloudInitError(f"template: bad string literal {body}") from exc
        raise CloudInitError(f"template: unsupported action {{{{{body}}}}}")


def parse_encoding_scheme(encoding: str) -> list[str]:
    """Map a write_files encoding name to the decoding steps it needs."""
    name = encoding.lower().strip()
    if name in ("gz+base64", "gzip+base64", "gz+b64", "gzip+b64"):
        return [_BASE64, _GZIP]
    if name in ("base64", "b64"):
        return [_BASE64]
    return [_PLAIN]


def decode_content(content: str, encodings: list[str]) -> str:
    """Apply the decoding steps in order and return the decoded text."""
    data = content.encode("utf-8", "surrogateescape")
    for encoding in encodings:
        if encoding == _BASE64:
            try:
                data = base64.b64decode(data.replace(b"\r", b"").replace(b"\n", b""), validate=True)
            except binascii.Error as exc:
                raise CloudInitError(f"illegal base64 data: {exc}") from exc
        elif encoding == _GZIP:
            try:
                data = gzip.decompress(data)
            except (OSError, EOFError, zlib.error) as exc:
                raise CloudInitError(f"error decompressing gzip data: {exc}") from exc
        elif encoding == _PLAIN:
            continue
        else:
            raise CloudInitError(f"Unknown bootstrap data encoding: {content!r}")
    return data.decode("utf-8", "surrogateescape")


@dataclass
class ScriptExecutor:
    """Applies the write_files and runCmd directives of a bootstrap script."""

    write_files_executor: _FileWriting = field(default_factory=FileWriter)
    run_cmd_executor: _CmdRunning = field(default_factory=CmdRunner)
    parse_template_executor: _TemplateParsing = field(default_factory=TemplateParser)

    def execute(self, bootstrap_script: str) -> None:
        """Write every file, then run every command, stopping at the first error."""
        try:
            config = _BootstrapConfig.from_document(yaml.safe_load(bootstrap_script))
        except (yaml.YAMLError, CloudInitError) as exc:
            raise CloudInitError(
                f"error parsing write_files action: {bootstrap_script}"
            ) from exc

        for spec in config.files_to_write:
            directory = os.path.dirname(spec.path) or "."
            try:
                self.write_files_executor.mkdir_if_not_exists(directory)
            except Exception as exc:
                raise CloudInitError(f"Error creating the directory {directory}") from exc

            try:
                content = decode_content(spec.content, parse_encoding_scheme(spec.encoding))
            except Exception as exc:
                raise CloudInitError(f"error decoding content for {spec.path}") from exc

            try:
                content = self.parse_template_executor.parse_template(content)
            except Exception as exc:
                raise CloudInitError(f"error parse template content for {spec.path}") from exc

            try:
                self.write_files_executor.write_to_file(replace(spec, content=content))
            except Exception as exc:
                raise CloudInitError(f"Error writing the file {spec.path}") from exc

        for command in config.commands_to_execute:
            try:
                self.run_cmd_executor.run_cmd(command)
            except Exception as exc:
                raise CloudInitError(f"Error running the command {command}") from exc