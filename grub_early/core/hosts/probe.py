"""
Current-host probing: what the /boot filesystem sits on.

Everything here shells out (``grub-probe``, ``lsblk``, ``setpci``) or reads
sysfs; results feed the generated scripts and the host feature modules.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from grub_early.core.config import EarlyConfig, Paths
from grub_early.core.errors import ExternalToolError
from grub_early.core.external import run_tool, tool_lines
from grub_early.core.requirements.rules import FIRMWARE_DISK_MODULE

_log = logging.getLogger("grub_early.probe")

# used by host detection and day/night logic in every generated normal.cfg
HOST_DETECTION_MODULES = (
    "lspci", "setpci", "cmosdump", "cmostest", "eval",
    "date", "regexp", "datehook", "datetime", "probe",
)
MEMDISK_MODULES = ("memdisk", "tar")
ALTERNATIVE_INPUT_MODULES = ("at_keyboard",)
GFXTERM_MENU_MODULES = ("gfxterm_menu", "gfxmenu")

# (variable suffix, setpci register)
PCI_REGISTERS: Tuple[Tuple[str, str], ...] = (
    ("VENDOR_ID", "00.W"),
    ("DEVICE_ID", "02.W"),
    ("BASE_ADDRESS_0", "10.L"),
    ("BASE_ADDRESS_1", "14.L"),
    ("BASE_ADDRESS_2", "18.L"),
    ("BASE_ADDRESS_3", "1c.L"),
    ("BASE_ADDRESS_4", "20.L"),
    ("BASE_ADDRESS_5", "24.L"),
)

_PCI_PATH_RE = re.compile(r"^/sys/devices/pci[^/]+/([^/]+)/.*/block/[^/]+$")


@dataclass
class PciIdentity:
    device: str
    disk: str
    bus: str
    # register name -> (setpci register, value without leading zeros)
    registers: Dict[str, Tuple[str, str]] = field(default_factory=dict)


@dataclass
class BootProbe:
    devices: List[str] = field(default_factory=list)
    cryptodisk_uuids: List[str] = field(default_factory=list)
    hints: str = ""
    fs_uuid: str = ""
    abstractions: List[str] = field(default_factory=list)
    partmaps: List[str] = field(default_factory=list)
    buses: List[str] = field(default_factory=list)
    pci: List[PciIdentity] = field(default_factory=list)


def bus_from_transport(disk: str, transport: str) -> Optional[str]:
    """lsblk TRAN column -> bus family; virtio disks report no transport."""
    t = (transport or "").strip().lower()
    if t:
        return t
    if disk.startswith("vd"):
        return "virtio"
    if disk.startswith("nvme"):
        return "nvme"
    if disk.startswith("mmcblk"):
        return "mmc"
    return None


class HostProber:
    def __init__(self, paths: Paths, target: Path = Path("/boot"), sys_root: Path = Path("/sys")):
        self.paths = paths
        self.target = Path(target)
        self.sys_root = Path(sys_root)

    def grub_probe(self, what: str) -> List[str]:
        return tool_lines([self.paths.grub_probe, "-t", what, self.target])

    def top_level_disk(self, device: str) -> str:
        out = tool_lines(["lsblk", "--inverse", "--ascii", "--noheadings", "--output", "NAME", device])
        names = [re.sub(r"^[\s|`-]*", "", line) for line in out]
        names = [n for n in names if n]
        if not names:
            raise ExternalToolError(f"Top level disk name not found for device '{device}' (not a device?)")
        return names[-1]

    def bus_family(self, device: str) -> Optional[str]:
        disk = self.top_level_disk(device)
        transport = run_tool(["lsblk", "--nodeps", "--noheadings", "--output", "TRAN", f"/dev/{disk}"])
        bus = bus_from_transport(disk, transport)
        _log.debug("bus device=%s disk=%s transport=%r bus=%s", device, disk, transport, bus)
        return bus

    def pci_bus(self, disk: str) -> str:
        block = os.path.realpath(self.sys_root / "block" / disk)
        m = _PCI_PATH_RE.match(block)
        if not m:
            raise ExternalToolError(f"not a PCI device '{disk}'")
        return re.sub(r"^0000:", "", m.group(1))

    def pci_identity(self, device: str) -> PciIdentity:
        disk = self.top_level_disk(device)
        bus = self.pci_bus(disk)
        ident = PciIdentity(device=device, disk=disk, bus=bus)
        for name, register in PCI_REGISTERS:
            value = run_tool(["setpci", "-s", bus, register]).lstrip("0")
            if value:
                ident.registers[name] = (register, value)
        return ident

    def collect(self, *, with_pci: bool = False) -> BootProbe:
        p = BootProbe()
        p.devices = self.grub_probe("device")
        p.cryptodisk_uuids = self.grub_probe("cryptodisk_uuid")
        p.hints = " ".join(self.grub_probe("hints_string"))
        p.fs_uuid = " ".join(self.grub_probe("fs_uuid"))
        p.abstractions = sorted({w for line in self.grub_probe("abstraction") for w in line.split()})
        p.partmaps = sorted({w for line in self.grub_probe("partmap") for w in line.split()})

        buses = set()
        for device in p.devices:
            bus = self.bus_family(device)
            if bus is None:
                _log.warning("Unknown bus for boot device %s; native driver check skipped for it", device)
            else:
                buses.add(bus)
        p.buses = sorted(buses)

        if with_pci:
            p.pci = [self.pci_identity(d) for d in p.devices]
        _log.info(
            "Probed %s: devices=%s crypto=%s partmaps=%s buses=%s",
            self.target,
            ",".join(p.devices),
            ",".join(p.cryptodisk_uuids),
            ",".join(p.partmaps),
            ",".join(p.buses),
        )
        return p


def host_feature_modules(cfg: EarlyConfig, probe: BootProbe) -> List[str]:
    """Modules only the current host contributes, beyond what its scripts use."""
    mods: List[str] = list(HOST_DETECTION_MODULES)
    mods += probe.abstractions
    mods.append(FIRMWARE_DISK_MODULE)
    mods += [f"part_{m}" for m in probe.partmaps]
    mods += MEMDISK_MODULES
    if not cfg.no_alternative_input:
        mods += ALTERNATIVE_INPUT_MODULES
    if not cfg.no_gfxterm:
        mods += GFXTERM_MENU_MODULES
    mods += cfg.themes_modules.split()
    out: List[str] = []
    for m in mods:
        if m and m not in out:
            out.append(m)
    return out


def machine_uuid(short: bool = True) -> str:
    """Host UUID from dmidecode, processor ID as fallback."""
    env = {**os.environ, "LC_ALL": "C"}
    uuid = _dmidecode(["--string", "system-uuid"], env).replace("-", "_")
    if not uuid:
        for line in _dmidecode(["--type", "processor"], env).splitlines():
            m = re.match(r"^\s+ID:\s+(.*)$", line)
            if m:
                uuid = "".join(m.group(1).split())
                break
    if short:
        uuid = uuid.split("_", 1)[0][:16]
    return uuid


def _dmidecode(args: List[str], env: Dict[str, str]) -> str:
    if shutil.which("dmidecode") is None:
        raise ExternalToolError("Binary 'dmidecode' is required to get the host UUID")
    return run_tool(["dmidecode", *args], env=env)
