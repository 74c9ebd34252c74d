"""
Configuration loading: YAML/JSON mappings and shell-style defaults files.
"""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from grub_early.core.config import (
    EarlyConfig,
    as_bool,
    config_dict_from_shell,
    default_moddir,
    load_config,
    parse_shell_assignments,
)
from grub_early.core.errors import ConfigError

SHELL_DEFAULTS = """\
# standard grub keys
GRUB_TIMEOUT=5
GRUB_CMDLINE_LINUX_DEFAULT="quiet splash"
GRUB_GFXMODE=1024x768

export GRUB_EARLY_VERBOSITY=1
GRUB_EARLY_KEYMAP=fr
GRUB_EARLY_LOCALE=fr_FR
GRUB_EARLY_NO_GFXTERM=yes
GRUB_EARLY_CMDLINE_LINUX='ro nomodeset'
GRUB_EARLY_THEMES_DIR=/usr/share/grub/themes
GRUB_EARLY_KERNEL_SUBLENUS_TITLE="Debian %s"
GRUB_EARLY_UNKNOWN_OPTION=whatever
"""


# -----------------------------
# shell parsing
# -----------------------------

def test_parse_shell_assignments_handles_quotes_and_export():
    data = parse_shell_assignments(SHELL_DEFAULTS)
    assert data["GRUB_CMDLINE_LINUX_DEFAULT"] == "quiet splash"
    assert data["GRUB_EARLY_VERBOSITY"] == "1"
    assert data["GRUB_EARLY_CMDLINE_LINUX"] == "ro nomodeset"


def test_shell_defaults_file(tmp_path):
    p = tmp_path / "grub"
    p.write_text(SHELL_DEFAULTS, encoding="utf-8")
    cfg = load_config(p)
    assert cfg.verbosity == 1
    assert cfg.keymap == "fr"
    assert cfg.keymap_enabled is True
    assert cfg.locale_short == "fr"
    assert cfg.no_gfxterm is True
    assert cfg.cmdline_linux == "ro nomodeset"
    assert cfg.timeout == 5
    assert cfg.gfxmode == "1024x768"
    assert cfg.theme.themes_dir == Path("/usr/share/grub/themes")
    assert cfg.kernels.submenus_title == "Debian %s"
    assert cfg.kernels.submenus_title_recovery == "Debian %s (recovery)"
    assert cfg.day_night is None


def test_standard_keys_only_fill_empty_options():
    data = config_dict_from_shell({"GRUB_CMDLINE_LINUX_DEFAULT": "quiet", "GRUB_EARLY_CMDLINE_LINUX": "single"})
    assert data["cmdline_linux"] == "single"


def test_day_night_from_shell():
    data = config_dict_from_shell({
        "GRUB_EARLY_DAY_TIME": "08:00",
        "GRUB_EARLY_NIGHT_TIME": "20:30",
        "GRUB_EARLY_THEME_DEFAULT_DAY": "light",
        "GRUB_EARLY_THEME_DEFAULT_NIGHT": "dark",
        "GRUB_EARLY_RANDOM_BG_COLOR_DAY": "#FFFFFF #EEEEEE",
        "GRUB_EARLY_RANDOM_BG_COLOR_NIGHT": "generated",
    })
    cfg = EarlyConfig.model_validate(data)
    assert cfg.day_night.day_hm == (8, 0)
    assert cfg.day_night.night_hm == (20, 30)
    assert cfg.day_night.day.theme_default == "light"
    assert cfg.day_night.night.theme_default == "dark"
    assert cfg.day_night.day.random_bg_color == ["#FFFFFF", "#EEEEEE"]
    assert cfg.day_night.night.random_bg_color == ["generated"]


def test_half_specified_day_night_theme_key_fails():
    with pytest.raises(ConfigError, match="Both GRUB_EARLY_THEME_DEFAULT_DAY and GRUB_EARLY_THEME_DEFAULT_NIGHT"):
        config_dict_from_shell({"GRUB_EARLY_THEME_DEFAULT_DAY": "light"})


def test_half_specified_day_night_times_fail():
    with pytest.raises(ConfigError, match="DAY_TIME"):
        config_dict_from_shell({"GRUB_EARLY_DAY_TIME": "08:00"})


def test_bad_time_format_fails(tmp_path):
    p = tmp_path / "grub"
    p.write_text("GRUB_EARLY_DAY_TIME=8h\nGRUB_EARLY_NIGHT_TIME=20:00\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(p)


def test_as_bool():
    assert as_bool("yes") and as_bool("O") and as_bool("1") and as_bool(True)
    assert not as_bool("") and not as_bool("no") and not as_bool(None)


# -----------------------------
# YAML / JSON
# -----------------------------

def test_yaml_config(tmp_path):
    p = tmp_path / "early.yaml"
    p.write_text(
        "verbosity: 2\n"
        "extra_modules: luks gcry_sha256\n"
        "theme:\n"
        "  themes_dir: /themes\n"
        "day_night:\n"
        "  day_time: '07:30'\n"
        "  night_time: '19:00'\n"
        "  night:\n"
        "    theme_default: dark\n"
        "paths:\n"
        "  early_dir: /tmp/early\n",
        encoding="utf-8",
    )
    cfg = load_config(p)
    assert cfg.verbosity == 2
    assert cfg.paths.core_img == Path("/tmp/early/core.img")
    assert cfg.paths.normal_cfg == Path("/tmp/early/memdisk/normal.cfg")
    variants = cfg.theme_variants()
    assert set(variants) == {"day", "night"}
    # variants inherit the base themes dir
    assert variants["night"].themes_dir == Path("/themes")
    assert variants["night"].theme_default == "dark"


def test_json_config(tmp_path):
    p = tmp_path / "early.json"
    p.write_text(json.dumps({"timeout": 3, "kernels": {"submenus_classes": "os"}}), encoding="utf-8")
    cfg = load_config(p)
    assert cfg.timeout == 3
    assert cfg.kernels.wrapper_submenu_classes == "wrapper,os"
    assert cfg.theme_variants() == {"": cfg.theme}


def test_invalid_verbosity_fails(tmp_path):
    p = tmp_path / "early.yaml"
    p.write_text("verbosity: 7\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)


def test_non_mapping_yaml_fails(tmp_path):
    p = tmp_path / "early.yaml"
    p.write_text("- a\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="must be a mapping"):
        load_config(p)


def test_missing_config_fails(tmp_path):
    with pytest.raises(ConfigError, match="doesn't exist"):
        load_config(tmp_path / "nope.yaml")


# -----------------------------
# environment
# -----------------------------

def test_env_overrides(tmp_path, monkeypatch):
    p = tmp_path / "early.yaml"
    p.write_text("verbosity: 0\n", encoding="utf-8")
    monkeypatch.setenv("GRUB_EARLY_CONFIG", str(p))
    monkeypatch.setenv("GRUB_EARLY_VERBOSITY", "2")
    monkeypatch.setenv("GRUB_EARLY_MODDIR", str(tmp_path / "mods"))
    cfg = load_config()
    assert cfg.verbosity == 2
    assert cfg.paths.moddir == tmp_path / "mods"
    assert default_moddir() == tmp_path / "mods"


def test_default_moddir_without_env(monkeypatch):
    monkeypatch.delenv("GRUB_EARLY_MODDIR", raising=False)
    assert default_moddir() == Path("/usr/lib/grub/i386-pc")
