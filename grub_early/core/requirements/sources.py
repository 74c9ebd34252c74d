from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from grub_early.core.dialect.tokens import ScriptText, to_script_text
from grub_early.core.errors import MissingInputError

_log = logging.getLogger("grub_early.sources")

SourceRole = Literal["loader", "shared", "host", "peer"]


@dataclass(frozen=True)
class ScriptSource:
    """A boot script tagged with the part it plays in the image.

    Either ``path`` or ``text`` is set. Peer-host scripts are optional by
    default: an absent peer file contributes nothing.
    """

    label: str
    role: SourceRole
    path: Optional[Path] = None
    text: Optional[str] = None
    required: bool = True

    @classmethod
    def from_path(cls, path: Path, role: SourceRole, *, label: Optional[str] = None,
                  required: Optional[bool] = None) -> "ScriptSource":
        if required is None:
            required = role != "peer"
        return cls(label=label or str(path), role=role, path=Path(path), required=required)

    @classmethod
    def from_text(cls, text: str, role: SourceRole, label: str) -> "ScriptSource":
        return cls(label=label, role=role, text=text, required=True)

    def read(self) -> ScriptText:
        if self.text is not None:
            return to_script_text(self.text)
        if self.path is None:
            return ()
        try:
            return to_script_text(self.path.read_text(encoding="utf-8", errors="replace"))
        except OSError as exc:
            if self.required:
                raise MissingInputError(
                    f"Required {self.role} script '{self.path}' doesn't exist nor is readable"
                ) from exc
            _log.debug("optional source absent label=%s path=%s", self.label, self.path)
            return ()
