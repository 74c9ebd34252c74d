from __future__ import annotations

import logging
from pathlib import Path
from typing import List

_log = logging.getLogger("grub_early.kernels")

KERNEL_PREFIX = "vmlinuz-"
INITRD_PREFIX = "initrd.img-"


def discover_kernels(boot_dir: Path) -> List[str]:
    """Versions having both ``vmlinuz-<v>`` and ``initrd.img-<v>`` in ``boot_dir``."""
    d = Path(boot_dir)
    versions = []
    if d.is_dir():
        for p in sorted(d.glob(f"{KERNEL_PREFIX}*")):
            if not p.is_file():
                continue
            version = p.name[len(KERNEL_PREFIX):]
            if version and (d / f"{INITRD_PREFIX}{version}").is_file():
                versions.append(version)
    _log.info("Found kernels: %s", " ".join(versions))
    return versions
