from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, Optional, Set

from grub_early.core.dialect.tokens import CommandToken

from .manifest import CommandTable
from .rules import FIRMWARE_DISK_MODULE, RuleTable, builtin_rules

_FAMILY_RE = re.compile(r"^([A-Za-z_]+)")
_PARTITION_RE = re.compile(r"^([a-z]+)[0-9]+$")


@dataclass(frozen=True)
class DeviceClass:
    kind: str  # memory | pseudo | firmware | native | abstraction | opaque | unknown
    family: str
    partition_maps: tuple = ()


def classify_device(text: str, rules: RuleTable) -> DeviceClass:
    """Classify the inside of a ``(...)`` device literal, e.g. ``hd0,msdos1``."""
    disk, *parts = text.split(",")
    maps = []
    for part in parts:
        m = _PARTITION_RE.match(part.strip())
        if m and m.group(1) in rules.partition_maps:
            maps.append(m.group(1))

    if "$" in disk:
        return DeviceClass("opaque", disk, tuple(maps))

    if "/" in disk:
        family = disk.split("/", 1)[0]
    else:
        m = _FAMILY_RE.match(disk)
        family = m.group(1) if m else disk

    if family in rules.memory_disks:
        kind = "memory"
    elif family in rules.pseudo_filesystems:
        kind = "pseudo"
    elif family in rules.firmware_bus_families:
        kind = "firmware"
    elif family in rules.native_bus_families:
        kind = "native"
    elif family in rules.abstractions:
        kind = "abstraction"
    else:
        kind = "unknown"
    return DeviceClass(kind, family, tuple(maps))


class ModuleMapper:
    """Token -> required module names. Total: unknown tokens map to nothing."""

    def __init__(self, commands: Optional[CommandTable] = None, rules: Optional[RuleTable] = None):
        self.commands = commands or CommandTable()
        self.rules = rules or builtin_rules()

    def map(self, token: CommandToken) -> FrozenSet[str]:
        kind = token.kind
        if kind == "control":
            return frozenset(self.rules.control)
        if kind == "assignment":
            return frozenset(self.rules.assignment.get(token.argument, ()))
        if kind == "terminal-role":
            return frozenset(self.rules.terminal_role_modules(token.argument))
        if kind == "disk-descriptor":
            return self._map_device(token.argument)
        if kind == "datetime-field":
            return frozenset(self.rules.datetime)
        if kind == "module-load":
            return frozenset({token.argument}) if token.argument else frozenset()
        if kind == "command":
            return frozenset(self.commands.modules_for(token.name))
        return frozenset()

    def _map_device(self, text: str) -> FrozenSet[str]:
        dc = classify_device(text, self.rules)
        out: Set[str] = {f"part_{m}" for m in dc.partition_maps}
        if dc.kind == "memory":
            out.update(self.rules.memory_disks[dc.family])
        elif dc.kind == "pseudo":
            out.update(self.rules.pseudo_filesystems[dc.family])
        elif dc.kind == "firmware":
            out.add(FIRMWARE_DISK_MODULE)
        elif dc.kind == "native":
            out.add(FIRMWARE_DISK_MODULE)
            out.update(self.rules.native_bus_families[dc.family])
        elif dc.kind == "abstraction":
            out.update(self.rules.abstractions[dc.family])
        return frozenset(out)
