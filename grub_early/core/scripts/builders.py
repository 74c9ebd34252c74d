"""
Boot script builders.

    load.cfg    embedded config of core.img; switches to normal mode on the memdisk
    normal.cfg  shared entry script: verbosity, day/night, host detection
    params.cfg  per-host parameters (keymap, locale, theme, gfx, input)
    menus.cfg   per-host menus (kernels, alternative and common menus)
    detect.cfg  per-host PCI based detection snippet

In single-host mode params and menus are part of normal.cfg itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from grub_early.core.config import V_DEBUG, V_QUIET, EarlyConfig
from grub_early.core.hosts.multi_host import (
    HOST_CONFIGURATION_FILENAME,
    HOST_MENUS_FILENAME,
    HostLayout,
)
from grub_early.core.hosts.probe import BootProbe, PciIdentity

from .themes import (
    THEME_FILENAME,
    THEME_INNER_FILENAME,
    ThemeVariant,
    background_color_switch,
    select_random_theme,
)
from .tree import (
    Assign,
    Blank,
    Block,
    Command,
    Comment,
    Function,
    If,
    MenuEntry,
    Node,
    Raw,
    Script,
    Submenu,
    bracket,
    quote,
    split_classes,
)

_log = logging.getLogger("grub_early.builders")

COMMON_CONF_FILENAME = "conf_common.cfg"
COMMON_MENU_FILENAME = "menu_common.cfg"
DAY_CONDITION = bracket('"$day_night_mode"', "=", '"day"')


@dataclass
class ScriptContext:
    """Everything the builders need, resolved beforehand by the pipeline."""

    cfg: EarlyConfig
    layout: HostLayout
    probe: BootProbe = field(default_factory=BootProbe)
    kernels: List[str] = field(default_factory=list)
    themes: Dict[str, ThemeVariant] = field(default_factory=dict)
    random_theme: bool = False
    themes_dir: Optional[Path] = None
    keymap_file: Optional[str] = None
    font_file: Optional[str] = None
    terminal_bg_images: Dict[str, str] = field(default_factory=dict)
    has_common_conf: bool = False
    has_common_menu: bool = False

    @property
    def day_night(self) -> bool:
        return self.cfg.day_night is not None

    @property
    def theme_enabled(self) -> bool:
        return any(v.enabled for v in self.themes.values())

    @property
    def prefix(self) -> str:
        return "$prefix" + self.layout.script_prefix


def _section(comment: str, *nodes: Node) -> Block:
    return Block([Blank(), Comment(comment), *nodes])


def _by_variant(ctx: ScriptContext, make) -> List[Node]:
    """Nodes built per theme variant; a day/night switch when variants exist."""
    if not ctx.day_night:
        return list(make(ctx.themes[""]))
    return [If([(DAY_CONDITION, list(make(ctx.themes["day"])))], orelse=list(make(ctx.themes["night"])))]


# ---------------------------------------------------------------------------
# load.cfg
# ---------------------------------------------------------------------------

def build_load_cfg(normal_cfg_name: str = "normal.cfg") -> Script:
    # no comments here: they crash the loader before normal mode
    return Script([
        Assign("root", "(memdisk)"),
        Assign("prefix", "($root)"),
        Blank(),
        Assign("enable_progress_indicator", "0"),
        Blank(),
        Command("normal", f"$prefix/{normal_cfg_name}"),
    ])


# ---------------------------------------------------------------------------
# normal.cfg
# ---------------------------------------------------------------------------

def _day_night_calculation(ctx: ScriptContext) -> Block:
    dn = ctx.cfg.day_night
    dh, dm = dn.day_hm
    nh, nm = dn.night_hm
    night = [Assign("day_night_mode", "night")]
    return Block([
        Blank(),
        Comment("day/night mode calculations"),
        Blank(),
        Comment("day time by default"),
        Assign("day_night_mode", "day"),
        Blank(),
        If(
            [
                (bracket('"$HOUR"', "-gt", f'"{dh}"', "-a", '"$HOUR"', "-eq", f'"{nh}"',
                         "-a", '"$MINUTE"', "-ge", f'"{nm}"'), night),
                (bracket('"$HOUR"', "-lt", f'"{dh}"'), [
                    If([(bracket('"$HOUR"', "-ne", f'"{nh}"', "-o", '"$MINUTE"', "-ge", f'"{nm}"'), night)]),
                ]),
            ],
            orelse=[
                If([
                    (bracket('"$MINUTE"', "-lt", f'"{dm}"'), [
                        If([(bracket('"$HOUR"', "-ne", f'"{nh}"', "-o", '"$MINUTE"', "-ge", f'"{nm}"',
                                     "-o", f'"{dm}"', "-le", f'"{nm}"'), night)]),
                    ]),
                    (bracket('"$MINUTE"', "-gt", f'"{dm}"', "-a", '"$HOUR"', "-eq", f'"{nh}"'), [
                        If([
                            (bracket('"$MINUTE"', "-gt", f'"{nm}"', "-a", f'"{dm}"', "-lt", f'"{nm}"'), night),
                            (bracket('"$MINUTE"', "-eq", f'"{nm}"'), night),
                        ]),
                    ]),
                ]),
            ],
        ),
        Blank(),
        Comment("export the resulting mode"),
        Command("export", "day_night_mode"),
        Blank(),
        Comment("end of day/night mode calculations"),
    ])


def _source_if_readable(path: str) -> If:
    return If([(bracket("-r", path), [Command("source", path)])])


def build_normal_cfg(ctx: ScriptContext, detections: Optional[Dict[str, str]] = None) -> Script:
    """Entry script of normal mode.

    ``detections`` maps host ids to their detect.cfg text and is only used in
    multi-host mode, where host parameters and menus live in per-host files.
    """
    cfg = ctx.cfg
    s = Script()

    if cfg.noprogress:
        s.add(_section(
            "prevent terminal box poping out in gfx mode",
            Assign("enable_progress_indicator", "0", export=True),
        ))

    s.add(
        _section("define verbosity level", Assign("verbosity", str(cfg.verbosity), export=True)),
        _section(
            "display message if verbosity enabled",
            Function("msg", [
                If([(bracket("$verbosity", "-gt", str(V_QUIET)), [Command("echo", '"${1}"')])]),
            ]),
        ),
    )

    if cfg.verbosity == V_DEBUG:
        s.add(_section("enable pager", Assign("pager", "1")))

    if ctx.day_night:
        s.add(_day_night_calculation(ctx))

    if not ctx.layout.multi:
        s.add(*build_params(ctx))
        s.add(*build_menus(ctx))
        return s

    if ctx.has_common_conf:
        s.add(_section("common configuration", _source_if_readable(f"$prefix/{COMMON_CONF_FILENAME}")))

    for host_id in ctx.layout.all_host_ids:
        text = (detections or {}).get(host_id)
        if text is None:
            _log.warning("No detection snippet for host %s", host_id)
            continue
        s.add(Blank(), Comment(f"detect host '{host_id}'"), Raw(text))

    s.add(
        _section("export the host name", Command("export", "hostname")),
        _section(
            "load host configuration",
            _source_if_readable(f"{ctx.prefix}/{HOST_CONFIGURATION_FILENAME}"),
        ),
        _section("load host menu", _source_if_readable(f"{ctx.prefix}/{HOST_MENUS_FILENAME}")),
    )
    return s


# ---------------------------------------------------------------------------
# params.cfg
# ---------------------------------------------------------------------------

def _theme_name_nodes(ctx: ScriptContext) -> List[Node]:
    if ctx.random_theme:
        return _by_variant(ctx, lambda v: select_random_theme(v.names))
    return _by_variant(ctx, lambda v: [Assign("theme_name", v.default)])


def _background_color_nodes(ctx: ScriptContext) -> List[Node]:
    def make(v: ThemeVariant) -> List[Node]:
        if v.settings.terminal_bg_color:
            return [Command("background_color", f'"{v.settings.terminal_bg_color}"')]
        if ctx.themes_dir is None or not v.enabled:
            return []
        return background_color_switch(ctx.themes_dir, v.names)

    if not ctx.day_night:
        return make(ctx.themes[""])
    day, night = make(ctx.themes["day"]), make(ctx.themes["night"])
    if not day and not night:
        return []
    return [If([(DAY_CONDITION, day or [Command("true")])], orelse=night)]


def _gfx_nodes(ctx: ScriptContext) -> List[Node]:
    cfg = ctx.cfg
    out: List[Node] = []
    if ctx.font_file:
        out.append(_section("load font", Command("loadfont", f"{ctx.prefix}/{ctx.font_file}")))

    if ctx.theme_enabled:
        out.append(_section("define theme name", *_theme_name_nodes(ctx)))
        out.append(_section("export the theme name", Command("export", "theme_name")))
        out.append(_section(
            "define theme path (not enabled yet)",
            Assign("theme", f"{ctx.prefix}/themes/$theme_name/{THEME_FILENAME}"),
        ))

    if cfg.gfxmode:
        out.append(_section("define resolution (not enabled yet)", Assign("gfxmode", cfg.gfxmode)))
    if cfg.gfxpayload:
        out.append(_section("keep payload or not", Assign("gfxpayload", cfg.gfxpayload)))

    out.append(_section("switch to gfx rendering (use above settings)", Command("terminal_output", "gfxterm")))

    bg = _background_color_nodes(ctx)
    if bg:
        out.append(_section("set terminal background color", *bg))

    if ctx.terminal_bg_images:
        if ctx.day_night and {"day", "night"} <= set(ctx.terminal_bg_images):
            image = [If(
                [(DAY_CONDITION, [Command("background_image", "-m", "stretch",
                                          f"{ctx.prefix}/{ctx.terminal_bg_images['day']}")])],
                orelse=[Command("background_image", "-m", "stretch",
                                f"{ctx.prefix}/{ctx.terminal_bg_images['night']}")],
            )]
        else:
            name = next(iter(ctx.terminal_bg_images.values()))
            image = [Command("background_image", "-m", "stretch", f"{ctx.prefix}/{name}")]
        out.append(_section("set terminal background image", *image))

    submenu_body: List[Node] = []
    if ctx.theme_enabled:
        theme_dir = f"{ctx.prefix}/themes/$theme_name"
        out.append(_section("set theme for submenu", Function("set_submenu_theme", [
            If([
                (bracket("-r", f"{theme_dir}/{THEME_INNER_FILENAME}"),
                 [Assign("theme", f"{theme_dir}/{THEME_INNER_FILENAME}")]),
                (bracket("-r", f"{theme_dir}/{THEME_FILENAME}"),
                 [Assign("theme", f"{theme_dir}/{THEME_FILENAME}")]),
            ]),
        ])))
        submenu_body += [Comment("set theme"), Command("set_submenu_theme")]
    submenu_body += [Comment("switch to gfx rendering"), Command("terminal_output", "gfxterm")]
    out.append(_section("switch to gfx rendering in submenu", Function("submenu_gfxmode", submenu_body)))
    return out


def build_params(ctx: ScriptContext) -> List[Node]:
    cfg = ctx.cfg
    out: List[Node] = []

    if ctx.keymap_file:
        out.append(_section(
            "load keyboard layout (not enabled yet)",
            Command("keymap", f"{ctx.prefix}/{ctx.keymap_file}"),
        ))

    if cfg.locale:
        out.append(_section(
            "load locale (enabled instantly)",
            Assign("locale_dir", ctx.prefix),
            Assign("lang", cfg.locale),
        ))

    if not cfg.no_gfxterm:
        out += _gfx_nodes(ctx)
    else:
        out.append(_section("disable gfx dependent configurations", Assign("no_gfxterm", "true", export=True)))

    if cfg.timeout is not None:
        out.append(_section("set a timeout (to show a progress in gfx mode)", Assign("timeout", str(cfg.timeout))))

    out.append(Block([
        Blank(),
        Comment("alternative config enabled"),
        Assign("alternative_config_enabled", "0"),
        Blank(),
        Comment("required to catch keystatus"),
        Command("terminal_input", "console"),
        Blank(),
        Comment("a key status is available"),
        If([("keystatus", [
            Comment("'shift' key was pressed"),
            If([("keystatus --shift", [
                Comment("flag the alternative config activation"),
                Assign("alternative_config_enabled", "1"),
            ])]),
        ])]),
        Command("export", "alternative_config_enabled"),
    ]))

    if not cfg.no_alternative_input and cfg.keymap_enabled:
        out.append(_section(
            "'at_keyboard' use keyboard layout ('console' doesn't)",
            Command("terminal_input", "at_keyboard"),
        ))
    return out


# ---------------------------------------------------------------------------
# menus.cfg
# ---------------------------------------------------------------------------

def _gfx_submenu_nodes(ctx: ScriptContext) -> List[Node]:
    if ctx.cfg.no_gfxterm:
        return []
    return [Comment("enter gfx rendering mode"), Command("submenu_gfxmode")]


def _kernel_entry_body(ctx: ScriptContext, version: str, cmdline: str) -> List[Node]:
    probe = ctx.probe
    body: List[Node] = [
        Assign("color_normal", "light-gray/black"),
        Assign("color_highlight", "dark-gray/black"),
        Blank(),
    ]
    for uuid in probe.cryptodisk_uuids:
        body += [Command("cryptomount", "-u", uuid, *ctx.cfg.cryptomount_opts.split()), Command("msg")]
    body += [
        Blank(),
        Command("search", "--no-floppy", "--fs-uuid", "--set=root", *probe.hints.split(), probe.fs_uuid),
        Command("msg", quote(f"Loading Linux {version} ...")),
        Command("linux", f"/boot/vmlinuz-{version}", f"root=UUID={probe.fs_uuid}", "ro", *cmdline.split()),
        Command("msg", quote("Loading intial ram disk ...")),
        Command("initrd", f"/boot/initrd.img-{version}"),
    ]
    return body


def build_kernel_menu(ctx: ScriptContext) -> Submenu:
    k = ctx.cfg.kernels
    classes = split_classes(k.submenus_classes)
    body: List[Node] = list(_gfx_submenu_nodes(ctx))
    for version in ctx.kernels:
        body += [
            Blank(),
            Comment("kernel menu entries"),
            MenuEntry(
                k.submenus_title.replace("%s", version),
                classes,
                f"gnulinux-{version}",
                _kernel_entry_body(ctx, version, ctx.cfg.cmdline_linux),
            ),
            MenuEntry(
                k.submenus_title_recovery.replace("%s", version),
                ["recovery", *classes],
                f"gnulinux-{version}-recovery",
                _kernel_entry_body(ctx, version, "single"),
            ),
        ]
    return Submenu(
        k.wrapper_submenu_title,
        split_classes(k.wrapper_submenu_classes),
        "submenu-kernels",
        body,
    )


def build_menus(ctx: ScriptContext) -> List[Node]:
    cfg = ctx.cfg
    items: List[Node] = []

    if cfg.alternative_menu:
        items.append(_section(
            "if alternative config was enabled",
            If([(bracket("$alternative_config_enabled", "-eq", "1"), [Raw(cfg.alternative_menu)])]),
        ))

    items.append(_section("menu wrapper for host kernel entries", build_kernel_menu(ctx)))

    if ctx.layout.multi and ctx.has_common_menu:
        items.append(_section("common menu", _source_if_readable(f"$prefix/{COMMON_MENU_FILENAME}")))

    if not cfg.wrap_in_submenu:
        return items
    return [_section("menu wrapper", Submenu(
        cfg.wrap_in_submenu,
        split_classes(cfg.wrapper_submenu_classes),
        "submenu-default",
        list(_gfx_submenu_nodes(ctx)) + items,
    ))]


# ---------------------------------------------------------------------------
# detect.cfg
# ---------------------------------------------------------------------------

def pci_variable(host_id: str, disk: str, register: str) -> str:
    base = "".join(c if c.isalnum() else "_" for c in f"{host_id}_{disk}").upper()
    return f"{base}_{register}"


def build_detect_cfg(host_id: str, pci: List[PciIdentity]) -> Script:
    s = Script()
    conditions: List[str] = []
    for ident in pci:
        setters: List[Node] = []
        exports: List[Node] = []
        for name, (register, value) in ident.registers.items():
            var = pci_variable(host_id, ident.disk, name)
            setters.append(Command("setpci", "-s", ident.bus, "-v", var, register))
            exports.append(Command("export", var))
            conditions.append(f"\"${var}\" = '{value}'")
        s.add(Blank(), Comment(f"PCI variables for ({host_id}){ident.device}"), *setters, *exports)

    if not conditions:
        _log.warning("No PCI identification for host %s: it will never be detected", host_id)
        return s
    s.add(
        Blank(),
        Comment(f"if '{host_id}' host is detected"),
        If([(bracket(" -a ".join(conditions)), [Assign("hostname", host_id)])]),
    )
    return s
