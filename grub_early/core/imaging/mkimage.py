from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Sequence

from grub_early.core.config import Paths
from grub_early.core.errors import GrubEarlyError
from grub_early.core.external import run_tool

_log = logging.getLogger("grub_early.mkimage")

MODULE_SUFFIX = ".mod"


class UnknownModuleError(GrubEarlyError):
    def __init__(self, modules: Sequence[str], moddir: Path):
        self.modules = list(modules)
        self.moddir = Path(moddir)
        super().__init__(
            f"No module file in '{moddir}' for: {' '.join(self.modules)}"
        )


def verify_modules(moddir: Path, modules: Iterable[str]) -> None:
    """Every resolved name must exist as ``<name>.mod`` in ``moddir``."""
    missing = [m for m in modules if not (Path(moddir) / f"{m}{MODULE_SUFFIX}").is_file()]
    if missing:
        raise UnknownModuleError(sorted(missing), moddir)


def mkimage_argv(paths: Paths, modules: Sequence[str]) -> List[str]:
    return [
        str(paths.grub_mkimage),
        "--directory", str(paths.moddir),
        "--output", str(paths.core_img),
        "--format", paths.core_format,
        "--compression", paths.core_compression,
        "--config", str(paths.core_cfg),
        "--memdisk", str(paths.core_memdisk),
        *modules,
    ]


def bios_setup_argv(paths: Paths, device: str, install_args: str = "") -> List[str]:
    return [
        str(paths.grub_bios_setup),
        f"--directory={paths.early_dir}",
        device,
        *install_args.split(),
    ]


def build_core_image(paths: Paths, modules: Sequence[str]) -> Path:
    verify_modules(paths.moddir, modules)
    _log.info("Creating core image '%s' ...", paths.core_img)
    run_tool(mkimage_argv(paths, modules))
    return paths.core_img


def ensure_boot_img(paths: Paths) -> Path:
    if not paths.boot_img.is_file():
        _log.info("Copying '%s' to '%s'", paths.boot_img_src, paths.boot_img)
        shutil.copyfile(paths.boot_img_src, paths.boot_img)
    return paths.boot_img


def install_to_mbr(paths: Paths, device: str, install_args: str = "") -> None:
    _log.info("Installing grub to MBR BIOS of disk '%s' ...", device)
    run_tool(bios_setup_argv(paths, device, install_args))
