"""
Host requirements artifact: the resolved module list of one host, one name
per line. A peer build that lacks the host's scripts reads it back instead.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Tuple

from grub_early.core.errors import MissingInputError

from .manifest import validate_module_name

_log = logging.getLogger("grub_early.artifact")

ARTIFACT_FILENAME = "modules.lst"


def artifact_path(base_dir: Path, host_id: str = "") -> Path:
    base = Path(base_dir)
    return (base / host_id / ARTIFACT_FILENAME) if host_id else (base / ARTIFACT_FILENAME)


def write_artifact(path: Path, modules: Iterable[str]) -> Path:
    names = sorted({validate_module_name(m) for m in modules})
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{n}\n" for n in names), encoding="utf-8")
    _log.info("Wrote %d module requirements to %s", len(names), path)
    return path


def read_artifact(path: Path, *, required: bool = True) -> Tuple[str, ...]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        if required:
            raise MissingInputError(f"Requirements artifact '{path}' doesn't exist nor is readable") from exc
        return ()
    names = []
    for line in text.splitlines():
        name = line.strip()
        if not name or name.startswith("#"):
            continue
        names.append(validate_module_name(name))
    return tuple(sorted(set(names)))
