"""
Memdisk staging: the directory tree that becomes ``(memdisk)`` at boot,
and its tarball.
"""
from __future__ import annotations

import logging
import shutil
import tarfile
from pathlib import Path
from typing import Dict, Iterable, Optional

from grub_early.core.config import Paths
from grub_early.core.errors import MissingInputError
from grub_early.core.external import run_tool
from grub_early.core.scripts.themes import (
    THEME_FILENAME,
    THEME_INNER_FILENAME,
    ThemeVariant,
    derivative_name,
    replace_desktop_color,
)

_log = logging.getLogger("grub_early.memdisk")

TERMINAL_BG_IMAGE_BASENAME = "terminal_background"


def prepare_memdisk_dir(paths: Paths, *, empty: bool = True) -> Path:
    if not paths.early_dir.is_dir():
        _log.info("Creating early directory '%s'", paths.early_dir)
        paths.early_dir.mkdir(mode=0o700, parents=True)
    if empty and paths.memdisk_dir.exists():
        _log.info("Deleting memdisk directory '%s'", paths.memdisk_dir)
        shutil.rmtree(paths.memdisk_dir)
    if not paths.memdisk_dir.is_dir():
        _log.info("Creating memdisk directory '%s'", paths.memdisk_dir)
        paths.memdisk_dir.mkdir(mode=0o700, parents=True)
    return paths.memdisk_dir


def _copy_required(src: Path, dest: Path, what: str) -> None:
    if not src.is_file():
        raise MissingInputError(f"{what} '{src}' doesn't exist nor is readable")
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)


def compile_keymap(paths: Paths, keymap: str, dest_dir: Path) -> str:
    name = f"{keymap}.gkb"
    dest = Path(dest_dir) / name
    _log.info("Creating layout '%s' to '%s'", keymap, dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    run_tool([paths.grub_kbdcomp, "-o", dest, keymap])
    return name


def copy_locale(paths: Paths, locale_short: str, dest_dir: Path) -> str:
    name = f"{locale_short}.mo"
    src = paths.grub_locale_dir / locale_short / "LC_MESSAGES" / "grub.mo"
    _log.info("Copying locale '%s' to '%s'", locale_short, Path(dest_dir) / name)
    _copy_required(src, Path(dest_dir) / name, "Locale file")
    return name


def copy_font(paths: Paths, font: str, dest_dir: Path) -> str:
    name = f"{font}.pf2"
    src = paths.grub_fonts_dir / name
    _log.info("Copying font '%s' to '%s'", font, Path(dest_dir) / name)
    _copy_required(src, Path(dest_dir) / name, "Font file")
    return name


def copy_optional(src: Optional[Path], dest: Path) -> bool:
    if src is None or not Path(src).is_file():
        return False
    _log.info("Copying '%s' to '%s'", src, dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)
    return True


def _recolor(theme_dir: Path, color: str) -> None:
    for name in (THEME_FILENAME, THEME_INNER_FILENAME):
        f = theme_dir / name
        if f.is_file():
            f.write_text(replace_desktop_color(f.read_text(encoding="utf-8"), color), encoding="utf-8")


def stage_themes(variants: Iterable[ThemeVariant], dest: Path) -> Path:
    """Copy themes (or generate color derivatives of the default one) to ``dest``."""
    dest = Path(dest)
    if dest.exists():
        _log.info("Deleting themes dir '%s'", dest)
        shutil.rmtree(dest)
    dest.mkdir(parents=True)

    for v in variants:
        if not v.enabled or v.source_dir is None:
            continue
        src = Path(v.source_dir)
        if not v.colors:
            _log.info("Copying themes dir%s '%s' to '%s'", v.label, src, dest)
            for theme in sorted(p for p in src.iterdir() if p.is_dir()):
                shutil.copytree(theme, dest / theme.name, dirs_exist_ok=True)
            continue

        default_src = src / v.default
        if not v.settings.random_bg_color_nodefault and not (dest / v.default).exists():
            _log.info("Copying default theme%s '%s' to '%s'", v.label, default_src, dest)
            shutil.copytree(default_src, dest / v.default)
        _log.info("Generating random background theme derivatives%s ...", v.label)
        for color in v.colors:
            target = dest / derivative_name(v.default, color)
            _log.debug(" - %s", target.name)
            shutil.copytree(default_src, target, dirs_exist_ok=True)
            _recolor(target, color)
    return dest


def stage_terminal_bg_images(variants: Dict[str, ThemeVariant], dest_dir: Path) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for name, v in variants.items():
        image = v.settings.terminal_bg_image
        if image is None:
            continue
        image = Path(image)
        suffix = f"_{name}" if name else ""
        basename = f"{TERMINAL_BG_IMAGE_BASENAME}{suffix}{image.suffix}"
        if copy_optional(image, Path(dest_dir) / basename):
            out[name] = basename
        else:
            _log.warning("Terminal background image%s '%s' not found", v.label, image)
    return out


def create_memdisk_tarball(memdisk_dir: Path, dest: Path) -> Path:
    _log.info("Creating memdisk '%s' from '%s'", dest, memdisk_dir)
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(dest, "w") as tar:
        tar.add(str(memdisk_dir), arcname=".")
    return dest
