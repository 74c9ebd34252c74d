from __future__ import annotations

import logging
from typing import AbstractSet, FrozenSet, Iterable, Set

from grub_early.core.errors import GrubEarlyError

from .rules import RuleTable

_log = logging.getLogger("grub_early.constraints")


class UnsatisfiableConstraintError(GrubEarlyError):
    def __init__(self, module: str, bus: str):
        self.module = module
        self.bus = bus
        super().__init__(
            f"Module '{module}' disables the firmware disk fallback but the boot disk "
            f"is on bus '{bus}' which has no native driver module"
        )


def check_firmware_fallback(
    modules: AbstractSet[str],
    boot_buses: Iterable[str],
    rules: RuleTable,
) -> FrozenSet[str]:
    """Native drivers the boot disks need once the firmware fallback is gone.

    Returns nothing when no fallback-disabling module is present. Raises
    UnsatisfiableConstraintError when a boot disk bus has no native driver.
    """
    disabling = sorted(m for m in rules.fallback_disabling if m in modules)
    if not disabling:
        return frozenset()

    drivers: Set[str] = set()
    for bus in sorted({b.strip().lower() for b in boot_buses if b and b.strip()}):
        driver = rules.bus_native_drivers.get(bus)
        if not driver:
            raise UnsatisfiableConstraintError(disabling[0], bus)
        _log.info("Firmware disk fallback disabled by %s: adding native driver %s for bus %s",
                  ",".join(disabling), driver, bus)
        drivers.add(driver)
    return frozenset(drivers)
