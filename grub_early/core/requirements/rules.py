"""
Pattern rule table: which modules a control construct or special form needs.

Plain commands are not listed here; they are looked up in the command table
shipped with GRUB (``command.lst``, see ``manifest.py``).

The built-in table can be extended with a YAML/JSON override file, e.g.:

    assignment:
      gfxmode: [video_bochs]
    terminal_roles:
      serial: [serial, terminfo]
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError

_log = logging.getLogger("grub_early.rules")


FIRMWARE_DISK_MODULE = "biosdisk"

PARTITION_MAPS = (
    "msdos",
    "gpt",
    "apple",
    "bsd",
    "sun",
    "sunpc",
    "dvh",
    "plan",
    "acorn",
    "amiga",
)


class RuleTable(BaseModel):
    control: List[str] = Field(default_factory=lambda: ["test"])
    datetime: List[str] = Field(default_factory=lambda: ["datehook"])

    # assignment(varname) -> modules
    assignment: Dict[str, List[str]] = Field(default_factory=dict)

    # terminal-role(value) -> modules; exact match first, then "<key>_" prefix
    terminal_roles: Dict[str, List[str]] = Field(default_factory=dict)

    # disk-descriptor families
    memory_disks: Dict[str, List[str]] = Field(default_factory=dict)
    pseudo_filesystems: Dict[str, List[str]] = Field(default_factory=dict)
    firmware_bus_families: List[str] = Field(default_factory=list)
    # physical-bus families: firmware disk module plus their native drivers
    native_bus_families: Dict[str, List[str]] = Field(default_factory=dict)
    abstractions: Dict[str, List[str]] = Field(default_factory=dict)
    partition_maps: List[str] = Field(default_factory=lambda: list(PARTITION_MAPS))

    # incompatibility check
    fallback_disabling: List[str] = Field(default_factory=list)
    # bus family of a boot disk -> native driver module (None: no driver)
    bus_native_drivers: Dict[str, Optional[str]] = Field(default_factory=dict)

    def terminal_role_modules(self, value: str) -> Tuple[str, ...]:
        if value in self.terminal_roles:
            return tuple(self.terminal_roles[value])
        best = ""
        for key in self.terminal_roles:
            if value.startswith(key + "_") and len(key) > len(best):
                best = key
        return tuple(self.terminal_roles[best]) if best else ()

    def merged(self, overrides: Dict) -> "RuleTable":
        data = self.model_dump()
        for key, value in (overrides or {}).items():
            if key not in data:
                _log.warning("Skipping unknown rule section %r", key)
                continue
            if isinstance(data[key], dict) and isinstance(value, dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return RuleTable(**data)


def builtin_rules() -> RuleTable:
    return RuleTable(
        assignment={
            "pager": ["sleep"],
        },
        terminal_roles={
            "gfxterm": ["gfxterm"],
            "vga_text": ["vga_text"],
            "mda_text": ["mda_text"],
            "serial": ["serial"],
            "at_keyboard": ["at_keyboard"],
            "usb_keyboard": ["usb_keyboard"],
            "spkmodem": ["spkmodem"],
            "morse": ["morse"],
        },
        memory_disks={"memdisk": ["memdisk"]},
        pseudo_filesystems={"proc": ["procfs"]},
        firmware_bus_families=["hd", "fd", "cd"],
        native_bus_families={
            "ahci": ["ahci"],
            "ata": ["pata"],
            "scsi": [],
            "usb": ["usbms"],
        },
        abstractions={
            "crypto": ["cryptodisk"],
            "cryptouuid": ["cryptodisk"],
            "lvm": ["lvm"],
            "lvmid": ["lvm"],
            "md": ["mdraid1x"],
            "mduuid": ["mdraid1x"],
        },
        fallback_disabling=["usb_keyboard", "nativedisk"],
        bus_native_drivers={
            "ata": "pata",
            "ide": "pata",
            "pata": "pata",
            "sata": "ahci",
            "ahci": "ahci",
            "usb": "usbms",
            "scsi": None,
            "sas": None,
            "virtio": None,
            "nvme": None,
            "mmc": None,
        },
    )


def load_rule_overrides(path: Optional[Path]) -> Dict:
    """
    Load rule overrides from a YAML or JSON file.

    Returns an empty dict if the path is unset, absent, or malformed; the
    built-in table stays in effect in that case.
    """
    if path is None or not Path(path).exists():
        return {}
    try:
        raw_text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        _log.warning("Cannot read rule override file %s: %s", path, exc)
        return {}

    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            _log.warning("Failed to parse rule file %s as JSON or YAML: %s", path, exc)
            return {}

    if not isinstance(data, dict):
        _log.warning("Rule override file %s must be a mapping, got %s", path, type(data).__name__)
        return {}
    return data


def load_rules(path: Optional[Path] = None) -> RuleTable:
    base = builtin_rules()
    overrides = load_rule_overrides(path)
    if not overrides:
        return base
    try:
        rules = base.merged(overrides)
    except ValidationError as exc:
        _log.warning("Ignoring invalid rule overrides from %s: %s", path, exc)
        return base
    _log.info("Loaded %d rule override sections from %s", len(overrides), path)
    return rules
