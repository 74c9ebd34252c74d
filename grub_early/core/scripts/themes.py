"""
Theme discovery and the theme-related script fragments.

A theme is a directory under the themes dir holding ``theme.txt`` (and
optionally ``theme-inner.txt`` for submenus). Random selection is driven by
the boot-time ``$SECOND`` value, so the number of themes must divide 60.
"""
from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from grub_early.core.config import EarlyConfig, ThemeSettings
from grub_early.core.errors import ConfigError

from .tree import Assign, Command, Comment, If, Node, bracket

_log = logging.getLogger("grub_early.themes")

THEME_FILENAME = "theme.txt"
THEME_INNER_FILENAME = "theme-inner.txt"
GENERATED_COLORS = "generated"
GENERATED_COLORS_COUNT = 9
MAX_THEMES = 10

_COLOR_RE = re.compile(r"^#[a-fA-F0-9]{6}$")
DESKTOP_COLOR_RE = re.compile(
    r'^[ \t]*#?(?P<keep>[ \t]*desktop-color[ \t]*:[ \t]*)"(?P<color>[^"]+)"',
    re.MULTILINE,
)


@dataclass
class ThemeVariant:
    """Theme settings of one variant ("" or "day"/"night") after discovery."""

    variant: str
    settings: ThemeSettings
    source_dir: Optional[Path] = None
    names: List[str] = field(default_factory=list)
    default: Optional[str] = None
    colors: List[str] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return bool(self.names)

    @property
    def label(self) -> str:
        return f" ({self.variant})" if self.variant else ""


def discover_themes(themes_dir: Optional[Path]) -> List[str]:
    if themes_dir is None:
        return []
    d = Path(themes_dir)
    if not d.is_dir():
        _log.debug("Theme directory '%s' doesn't exist", d)
        return []
    names = sorted(p.name for p in d.iterdir() if p.is_dir())
    if not names:
        _log.warning("No theme found in directory '%s'", d)
    return names


def read_desktop_color(theme_file: Path) -> Optional[str]:
    try:
        text = Path(theme_file).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    m = DESKTOP_COLOR_RE.search(text)
    return m.group("color") if m else None


def replace_desktop_color(text: str, color: str) -> str:
    """Set (and uncomment) the desktop-color of a theme file."""
    return DESKTOP_COLOR_RE.sub(lambda m: m.group("keep") + f'"{color}"', text)


def generate_color_list(count: int = GENERATED_COLORS_COUNT, rng: Optional[random.Random] = None) -> List[str]:
    r = rng or random.Random()
    return ["#%06X" % r.randrange(0x1000000) for _ in range(count)]


def validate_color_list(colors: List[str], option: str = "random_bg_color") -> List[str]:
    for c in colors:
        if not _COLOR_RE.match(c):
            raise ConfigError(f"Invalid color list for option '{option}' ({' '.join(colors)})")
    return colors


def derivative_name(default: str, color: str) -> str:
    return f"{default}_{color.lstrip('#')}"


def resolve_theme_variants(cfg: EarlyConfig, rng: Optional[random.Random] = None) -> Dict[str, ThemeVariant]:
    """Discover themes for every variant of ``cfg``.

    Theming is all or nothing across day and night. Random background colors
    turn the default theme into color derivatives which replace the discovered
    names.
    """
    out: Dict[str, ThemeVariant] = {}
    for name, settings in cfg.theme_variants().items():
        v = ThemeVariant(variant=name, settings=settings, source_dir=settings.themes_dir)
        v.names = discover_themes(settings.themes_dir)
        if v.names:
            v.default = settings.theme_default or v.names[0]
            _log.debug("Theme names%s: %s (default %s)", v.label, ",".join(v.names), v.default)
        out[name] = v

    if cfg.day_night is not None and out["day"].enabled != out["night"].enabled:
        raise ConfigError(
            "It cannot have a situation where theming is enabled at DAY time "
            "but not at NIGHT time, or the opposite"
        )

    for v in out.values():
        colors = list(v.settings.random_bg_color)
        if not v.enabled or not colors:
            continue
        option = "random_bg_color" + (f"_{v.variant}" if v.variant else "")
        if colors == [GENERATED_COLORS]:
            colors = generate_color_list(rng=rng)
            _log.debug("Colors generated%s: %s", v.label, ",".join(colors))
        v.colors = validate_color_list(colors, option)
        names = [] if v.settings.random_bg_color_nodefault else [v.default]
        names += [derivative_name(v.default, c) for c in v.colors]
        v.names = names
        _log.debug("Theme names%s updated: %s", v.label, ",".join(v.names))
    return out


def random_theme_enabled(cfg: EarlyConfig, variants: Dict[str, ThemeVariant]) -> bool:
    if cfg.random_theme:
        return True
    return any(v.colors or v.settings.random_bg_image for v in variants.values())


def select_random_theme(names: List[str]) -> List[Node]:
    """``if [ $SECOND -gt N ]`` chain picking one of ``names``."""
    count = len(names)
    if count == 0:
        raise ConfigError("Invalid number of themes (can't be '0')")
    if count in (7, 8, 9):
        raise ConfigError(
            f"Invalid number of themes (can't be '{count}', needs to be a divider of 60, "
            "because randomness is based on seconds). Tips: remove themes to get to 6 "
            "or add some to get to 10"
        )
    if count > MAX_THEMES:
        raise ConfigError(f"Invalid number of themes (can't be '{count}', maximum allowed is {MAX_THEMES})")

    steps = 60 // count
    branches = []
    for multiplier in range(count):
        threshold = 59 - steps - steps * multiplier
        theme = names[count - 1 - multiplier]
        branches.append((bracket("$SECOND", "-gt", str(threshold)), [Assign("theme_name", theme)]))
    return [Comment("select random theme based on current seconds"), If(branches)]


def background_color_switch(themes_dir: Path, names: List[str]) -> List[Node]:
    """Terminal background color following the desktop-color of the active theme."""
    branches = []
    for name in names:
        color = read_desktop_color(Path(themes_dir) / name / THEME_FILENAME)
        if color:
            branches.append(
                (bracket('"$theme_name"', "=", f'"{name}"'), [Command("background_color", f'"{color}"')])
            )
    return [If(branches)] if branches else []
