"""
Build configuration.

Two file formats are accepted:

    - YAML or JSON mapping matching ``EarlyConfig``
    - shell-style defaults file (``/etc/default/grub``) with ``GRUB_EARLY_*``
      assignments; the standard ``GRUB_*`` keys fill in options left empty

Environment variables:
    GRUB_EARLY_CONFIG     - config path when none is given on the command line
    GRUB_EARLY_VERBOSITY  - overrides ``verbosity``
    GRUB_EARLY_MODDIR     - overrides ``paths.moddir``
"""
from __future__ import annotations

import json
import logging
import os
import re
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from grub_early.core.errors import ConfigError

_log = logging.getLogger("grub_early.config")

DEFAULT_CONFIG_PATH = Path("/etc/default/grub")

V_QUIET = 0
V_INFO = 1
V_DEBUG = 2

_TRUE_VALUES = {"1", "y", "yes", "o", "on", "true"}
_TIME_RE = re.compile(r"^[0-9]{2}:[0-9]{2}$")


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_VALUES


class Paths(BaseModel):
    grub_prefix: Path = Path("/usr")
    moddir: Path = Path("/usr/lib/grub/i386-pc")
    boot_dir: Path = Path("/boot")
    early_dir: Path = Path("/boot/grub/early")
    core_format: str = "i386-pc"
    core_compression: str = "auto"
    locale_dir: Optional[Path] = None
    fonts_dir: Optional[Path] = None

    @property
    def grub_mkimage(self) -> Path:
        return self.grub_prefix / "bin" / "grub-mkimage"

    @property
    def grub_kbdcomp(self) -> Path:
        return self.grub_prefix / "bin" / "grub-kbdcomp"

    @property
    def grub_probe(self) -> Path:
        return self.grub_prefix / "sbin" / "grub-probe"

    @property
    def grub_bios_setup(self) -> Path:
        return self.grub_prefix / "sbin" / "grub-bios-setup"

    @property
    def core_img(self) -> Path:
        return self.early_dir / "core.img"

    @property
    def core_memdisk(self) -> Path:
        return self.early_dir / "memdisk.tar"

    @property
    def core_cfg(self) -> Path:
        return self.early_dir / "load.cfg"

    @property
    def boot_img(self) -> Path:
        return self.early_dir / "boot.img"

    @property
    def boot_img_src(self) -> Path:
        return self.moddir / "boot.img"

    @property
    def memdisk_dir(self) -> Path:
        return self.early_dir / "memdisk"

    @property
    def normal_cfg(self) -> Path:
        return self.memdisk_dir / "normal.cfg"

    @property
    def grub_locale_dir(self) -> Path:
        return self.locale_dir or (self.grub_prefix / "share" / "locale")

    @property
    def grub_fonts_dir(self) -> Path:
        return self.fonts_dir or (self.grub_prefix / "share" / "grub")


class ThemeSettings(BaseModel):
    themes_dir: Optional[Path] = None
    theme_default: Optional[str] = None
    terminal_bg_color: Optional[str] = None
    terminal_bg_image: Optional[Path] = None
    random_bg_image: bool = False
    # list of "#RRGGBB" colors, or the single word "generated"
    random_bg_color: List[str] = Field(default_factory=list)
    random_bg_color_nodefault: bool = False

    @field_validator("random_bg_color", mode="before")
    @classmethod
    def _split_colors(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return v.split()
        return v


class DayNight(BaseModel):
    """Day/night variants of the theme settings.

    ``day`` applies from ``day_time`` to ``night_time``; ``night`` the rest of
    the day. The active variant is chosen by the boot script at boot time.
    """

    day_time: str
    night_time: str
    day: ThemeSettings = Field(default_factory=ThemeSettings)
    night: ThemeSettings = Field(default_factory=ThemeSettings)

    @field_validator("day_time", "night_time")
    @classmethod
    def _check_time(cls, v: str) -> str:
        v = (v or "").strip()
        if not _TIME_RE.match(v):
            raise ValueError("invalid time format (must be: %H:%M, i.e.: 08:00 or 21:30)")
        return v

    @staticmethod
    def _split(value: str) -> tuple[int, int]:
        h, m = value.split(":")
        return int(h), int(m)

    @property
    def day_hm(self) -> tuple[int, int]:
        return self._split(self.day_time)

    @property
    def night_hm(self) -> tuple[int, int]:
        return self._split(self.night_time)


class KernelMenuSettings(BaseModel):
    wrapper_submenu_title: str = "Kernels"
    wrapper_submenu_classes: Optional[str] = None
    submenus_classes: str = "linux,os,kernel"
    submenus_title: str = "GNU/Linux %s"
    submenus_title_recovery: Optional[str] = None

    @model_validator(mode="after")
    def _defaults(self) -> "KernelMenuSettings":
        if not self.wrapper_submenu_classes:
            self.wrapper_submenu_classes = (
                f"wrapper,{self.submenus_classes}" if self.submenus_classes else "wrapper"
            )
        if not self.submenus_title_recovery:
            self.submenus_title_recovery = f"{self.submenus_title} (recovery)"
        return self


class EarlyConfig(BaseModel):
    verbosity: int = V_QUIET
    cmdline_linux: str = "quiet splash"
    timeout: Optional[int] = 15
    empty_memdisk_dir: bool = True
    short_uuid: bool = True
    noprogress: bool = True
    common_conf: Optional[Path] = None
    common_menu: Optional[Path] = None
    keymap: str = "us"
    locale: str = "en"
    font: str = "ascii"
    gfxmode: Optional[str] = "auto"
    gfxpayload: Optional[str] = "keep"
    no_gfxterm: bool = False
    no_alternative_input: bool = False
    random_theme: bool = False
    wrap_in_submenu: Optional[str] = None
    wrapper_submenu_classes: str = "default"
    alternative_menu: Optional[str] = None
    cryptomount_opts: str = ""
    themes_modules: str = ""
    extra_modules: str = ""
    install_args: str = ""
    core_cfg: Optional[Path] = None
    normal_cfg: Optional[Path] = None
    rules_file: Optional[Path] = None
    hook_script: Optional[Path] = None

    theme: ThemeSettings = Field(default_factory=ThemeSettings)
    day_night: Optional[DayNight] = None
    kernels: KernelMenuSettings = Field(default_factory=KernelMenuSettings)
    paths: Paths = Field(default_factory=Paths)

    @field_validator("verbosity")
    @classmethod
    def _check_verbosity(cls, v: int) -> int:
        if v not in (V_QUIET, V_INFO, V_DEBUG):
            raise ValueError(f"verbosity must be {V_QUIET}, {V_INFO} or {V_DEBUG}")
        return v

    @property
    def keymap_enabled(self) -> bool:
        return bool(self.keymap) and self.keymap not in ("en", "us")

    @property
    def locale_short(self) -> str:
        return (self.locale or "").strip()[:2]

    def theme_variants(self) -> Dict[str, ThemeSettings]:
        """Theme settings keyed by variant: {"": ...} or {"day": ..., "night": ...}."""
        if self.day_night is None:
            return {"": self.theme}
        out: Dict[str, ThemeSettings] = {}
        for name in ("day", "night"):
            variant: ThemeSettings = getattr(self.day_night, name)
            if variant.themes_dir is None and self.theme.themes_dir is not None:
                variant = variant.model_copy(update={"themes_dir": self.theme.themes_dir})
            out[name] = variant
        return out


# ---------------------------------------------------------------------------
# shell-style defaults file
# ---------------------------------------------------------------------------

_PREFIX = "GRUB_EARLY_"

_THEME_KEYS = {
    "THEMES_DIR": "themes_dir",
    "THEME_DEFAULT": "theme_default",
    "TERMINAL_BG_COLOR": "terminal_bg_color",
    "TERMINAL_BG_IMAGE": "terminal_bg_image",
    "RANDOM_BG_IMAGE": "random_bg_image",
    "RANDOM_BG_COLOR": "random_bg_color",
    "RANDOM_BG_COLOR_NODEFAULT": "random_bg_color_nodefault",
}

_KERNEL_KEYS = {
    "KERNEL_WRAPPER_SUBMENU_TITLE": "wrapper_submenu_title",
    "KERNEL_WRAPPER_SUBMENU_CLASSES": "wrapper_submenu_classes",
    "KERNEL_SUBMENUS_CLASSES": "submenus_classes",
    "KERNEL_SUBMENUS_TITLE": "submenus_title",
    "KERNEL_SUBLENUS_TITLE": "submenus_title",
    "KERNEL_SUBMENUS_TITLE_RECOVERY": "submenus_title_recovery",
    "KERNEL_SUBLENUS_TITLE_RECOVERY": "submenus_title_recovery",
}

# standard grub keys used when the GRUB_EARLY_ one is empty
_FALLBACK_KEYS = {
    "cmdline_linux": "GRUB_CMDLINE_LINUX_DEFAULT",
    "timeout": "GRUB_TIMEOUT",
    "gfxmode": "GRUB_GFXMODE",
    "gfxpayload": "GRUB_GFXPAYLOAD_LINUX",
}

_BOOL_FIELDS = {
    name for name, f in EarlyConfig.model_fields.items() if f.annotation is bool
} | {"random_bg_image", "random_bg_color_nodefault"}


def parse_shell_assignments(text: str) -> Dict[str, str]:
    """``KEY=value`` lines of a shell defaults file; anything else is ignored."""
    out: Dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            parts = shlex.split(line, comments=True, posix=True)
        except ValueError as exc:
            _log.warning("Skipping unparsable config line %d: %s", lineno, exc)
            continue
        if parts and parts[0] == "export":
            parts = parts[1:]
        if len(parts) != 1 or "=" not in parts[0]:
            _log.debug("config skip line=%d text=%r", lineno, raw)
            continue
        key, _, value = parts[0].partition("=")
        if re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", key):
            out[key] = value
    return out


def _coerce(field: str, value: str) -> Any:
    if field in _BOOL_FIELDS:
        return as_bool(value)
    return value


def config_dict_from_shell(assignments: Dict[str, str]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    theme: Dict[str, Any] = {}
    variants: Dict[str, Dict[str, Any]] = {"day": {}, "night": {}}
    kernels: Dict[str, Any] = {}

    for key, value in assignments.items():
        if not key.startswith(_PREFIX):
            continue
        name = key[len(_PREFIX):]

        suffix = None
        for s in ("_DAY", "_NIGHT"):
            if name.endswith(s) and name[: -len(s)] in _THEME_KEYS:
                suffix = s[1:].lower()
                name = name[: -len(s)]
        if name in _THEME_KEYS:
            target = variants[suffix] if suffix else theme
            if value != "":
                target[_THEME_KEYS[name]] = _coerce(_THEME_KEYS[name], value)
            continue
        if name in _KERNEL_KEYS:
            if value != "":
                kernels[_KERNEL_KEYS[name]] = value
            continue
        if name in ("DAY_TIME", "NIGHT_TIME"):
            data[name.lower()] = value
            continue

        field = name.lower()
        if field in EarlyConfig.model_fields and field not in ("theme", "day_night", "kernels", "paths"):
            if value == "" and field not in _BOOL_FIELDS:
                continue
            data[field] = _coerce(field, value)
        else:
            _log.debug("config unknown key=%s", key)

    for field, std_key in _FALLBACK_KEYS.items():
        if field not in data and assignments.get(std_key):
            data[field] = assignments[std_key]

    for tkey, field in _THEME_KEYS.items():
        day, night = variants["day"].get(field), variants["night"].get(field)
        if (day is None) != (night is None):
            raise ConfigError(f"Both {_PREFIX}{tkey}_DAY and {_PREFIX}{tkey}_NIGHT must be specified")

    day_time, night_time = data.pop("day_time", ""), data.pop("night_time", "")
    if day_time or night_time:
        if not (day_time and night_time):
            raise ConfigError(f"Both {_PREFIX}DAY_TIME and {_PREFIX}NIGHT_TIME must be specified")
        data["day_night"] = {
            "day_time": day_time,
            "night_time": night_time,
            "day": variants["day"],
            "night": variants["night"],
        }

    data["theme"] = theme
    data["kernels"] = kernels
    return data


# ---------------------------------------------------------------------------
# loading
# ---------------------------------------------------------------------------

def _load_mapping(text: str, path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration '{path}' as JSON or YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration '{path}' must be a mapping, got {type(data).__name__}")
    return data


def _apply_env(data: Dict[str, Any]) -> Dict[str, Any]:
    verbosity = (os.getenv("GRUB_EARLY_VERBOSITY") or "").strip()
    if verbosity:
        data["verbosity"] = verbosity
    moddir = (os.getenv("GRUB_EARLY_MODDIR") or "").strip()
    if moddir:
        data.setdefault("paths", {})
        data["paths"]["moddir"] = moddir
    return data


def default_moddir() -> Path:
    env = (os.getenv("GRUB_EARLY_MODDIR") or "").strip()
    return Path(env) if env else Paths().moddir


def resolve_config_path(path: Optional[Path]) -> Path:
    if path is not None:
        return Path(path)
    env_path = (os.getenv("GRUB_EARLY_CONFIG") or "").strip()
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> EarlyConfig:
    resolved = resolve_config_path(path)
    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Configuration file '{resolved}' doesn't exist nor is readable") from exc

    if resolved.suffix.lower() in (".yaml", ".yml", ".json"):
        data = _load_mapping(text, resolved)
    else:
        data = config_dict_from_shell(parse_shell_assignments(text))

    data = _apply_env(data)
    try:
        cfg = EarlyConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration '{resolved}': {exc}") from exc
    _log.debug("config loaded path=%s day_night=%s", resolved, cfg.day_night is not None)
    return cfg
