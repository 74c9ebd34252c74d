from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Tuple


ScriptText = Tuple[str, ...]

TokenKind = Literal[
    "command",
    "control",
    "assignment",
    "terminal-role",
    "disk-descriptor",
    "datetime-field",
    "module-load",
]


@dataclass(frozen=True, order=True)
class CommandToken:
    """One normalized invocation or special form found in a boot script.

    Plain invocations only carry a ``name``. Special forms carry the argument
    their module need depends on, e.g. ``assignment(pager)`` or
    ``disk-descriptor(hd0,msdos1)``.
    """

    kind: TokenKind
    name: str
    argument: str = ""

    def __str__(self) -> str:
        if self.kind in ("command", "control"):
            return self.name
        return f"{self.kind}({self.argument})"

    @classmethod
    def command(cls, name: str) -> "CommandToken":
        return cls("command", name)

    @classmethod
    def control(cls, name: str) -> "CommandToken":
        return cls("control", name)

    @classmethod
    def assignment(cls, variable: str) -> "CommandToken":
        return cls("assignment", "set", variable)

    @classmethod
    def terminal_role(cls, command: str, value: str) -> "CommandToken":
        return cls("terminal-role", command, value)

    @classmethod
    def disk_descriptor(cls, text: str) -> "CommandToken":
        return cls("disk-descriptor", "disk", text)

    @classmethod
    def datetime_field(cls, field: str) -> "CommandToken":
        return cls("datetime-field", "datetime", field)

    @classmethod
    def module_load(cls, module: str) -> "CommandToken":
        return cls("module-load", "insmod", module)


def to_script_text(text: str) -> ScriptText:
    return tuple(text.splitlines())
