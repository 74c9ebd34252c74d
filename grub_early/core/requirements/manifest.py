"""
GRUB module metadata: the dependency manifest (``moddep.lst``) and the
command table (``command.lst``).

Both files use ``name: value value ...`` lines. A leading ``*`` on a name
marks the default provider of an abstract capability; it is not part of the
module identity, so ``*usb`` and ``usb`` are the same module.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from grub_early.core.errors import GrubEarlyError, MissingInputError

_log = logging.getLogger("grub_early.manifest")

PROVIDER_MARKER = "*"
MODDEP_FILENAME = "moddep.lst"
COMMAND_FILENAME = "command.lst"

_MODULE_NAME_RE = re.compile(r"^[A-Za-z0-9_.+\-]+$")


class ModuleNameError(GrubEarlyError):
    pass


def normalize_name(name: str) -> str:
    return name.strip().lstrip(PROVIDER_MARKER)


def validate_module_name(name: str) -> str:
    if not isinstance(name, str) or not _MODULE_NAME_RE.match(name):
        raise ModuleNameError(f"Malformed module name {name!r}")
    return name


def _parse_lines(text: str, source: str) -> Iterator[Tuple[str, List[str]]]:
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, rest = line.partition(":")
        key = normalize_name(key)
        if not sep or not key:
            _log.debug("manifest skip source=%s line=%d text=%r", source, lineno, raw)
            continue
        values = [normalize_name(v) for v in rest.split()]
        yield key, [v for v in values if v]


def _merge(entries: Iterable[Tuple[str, List[str]]]) -> Dict[str, Tuple[str, ...]]:
    merged: Dict[str, List[str]] = {}
    for key, values in entries:
        bucket = merged.setdefault(key, [])
        for v in values:
            if v not in bucket:
                bucket.append(v)
    return {k: tuple(v) for k, v in merged.items()}


class DependencyManifest:
    """Read-only module -> dependencies mapping for one build target."""

    def __init__(self, entries: Optional[Dict[str, Iterable[str]]] = None):
        self._deps: Dict[str, Tuple[str, ...]] = _merge(
            (normalize_name(k), [normalize_name(v) for v in vs])
            for k, vs in (entries or {}).items()
        )

    @classmethod
    def parse(cls, text: str, *, source: str = "<text>") -> "DependencyManifest":
        m = cls()
        m._deps = _merge(_parse_lines(text, source))
        return m

    @classmethod
    def from_file(cls, path: Path) -> "DependencyManifest":
        return cls.parse(_read_required(path), source=str(path))

    def dependencies(self, name: str) -> Tuple[str, ...]:
        return self._deps.get(normalize_name(name), ())

    def names(self) -> List[str]:
        return sorted(self._deps.keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._deps

    def __len__(self) -> int:
        return len(self._deps)


class CommandTable:
    """Command name -> module(s) providing it. Absent commands are built-in."""

    def __init__(self, entries: Optional[Dict[str, Iterable[str]]] = None):
        self._commands: Dict[str, Tuple[str, ...]] = _merge(
            (normalize_name(k), [normalize_name(v) for v in vs])
            for k, vs in (entries or {}).items()
        )

    @classmethod
    def parse(cls, text: str, *, source: str = "<text>") -> "CommandTable":
        t = cls()
        t._commands = _merge(_parse_lines(text, source))
        return t

    @classmethod
    def from_file(cls, path: Path) -> "CommandTable":
        return cls.parse(_read_required(path), source=str(path))

    def modules_for(self, command: str) -> Tuple[str, ...]:
        return self._commands.get(normalize_name(command), ())

    def __contains__(self, command: object) -> bool:
        return isinstance(command, str) and normalize_name(command) in self._commands

    def __len__(self) -> int:
        return len(self._commands)


def _read_required(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise MissingInputError(f"Module metadata file '{path}' doesn't exist nor is readable") from exc


def load_module_metadata(moddir: Path) -> Tuple[DependencyManifest, CommandTable]:
    moddir = Path(moddir)
    if not moddir.is_dir():
        raise MissingInputError(f"grub modules directory '{moddir}' not found")
    manifest = DependencyManifest.from_file(moddir / MODDEP_FILENAME)
    commands = CommandTable.from_file(moddir / COMMAND_FILENAME)
    _log.info(
        "Loaded module metadata from %s (%d modules, %d commands)",
        moddir,
        len(manifest),
        len(commands),
    )
    return manifest, commands
