"""
End-to-end build of the early image.

    memdisk staging -> probing -> script generation -> requirement resolution
    -> memdisk tarball -> grub-mkimage -> grub-bios-setup

A dry run stops after the tarball: nothing is linked nor written to the disk.
"""
from __future__ import annotations

import logging
import os
import shutil
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from grub_early.core.config import EarlyConfig
from grub_early.core.errors import ConfigError, ExternalToolError
from grub_early.core.external import run_tool
from grub_early.core.hosts.kernels import discover_kernels
from grub_early.core.hosts.multi_host import (
    HOST_CONFIGURATION_FILENAME,
    HOST_DETECTION_FILENAME,
    HOST_MENUS_FILENAME,
    HostLayout,
    build_layout,
    extract_peer_archive,
    peer_artifact,
    peer_sources,
)
from grub_early.core.hosts.probe import BootProbe, HostProber, host_feature_modules
from grub_early.core.imaging.memdisk import (
    compile_keymap,
    copy_font,
    copy_locale,
    copy_optional,
    create_memdisk_tarball,
    prepare_memdisk_dir,
    stage_terminal_bg_images,
    stage_themes,
)
from grub_early.core.imaging.mkimage import build_core_image, ensure_boot_img, install_to_mbr, verify_modules
from grub_early.core.requirements import (
    RequirementAggregator,
    Resolution,
    ScriptSource,
    artifact_path,
    load_module_metadata,
    load_rules,
    parse_module_list,
)
from grub_early.core.scripts.builders import (
    COMMON_CONF_FILENAME,
    COMMON_MENU_FILENAME,
    ScriptContext,
    build_detect_cfg,
    build_load_cfg,
    build_menus,
    build_normal_cfg,
    build_params,
)
from grub_early.core.scripts.themes import random_theme_enabled, resolve_theme_variants
from grub_early.core.scripts.tree import Script

_log = logging.getLogger("grub_early.pipeline")


@dataclass
class BuildOptions:
    device: str
    no_install: bool = False
    other_hosts: Optional[str] = None
    multi_hosts: bool = False
    uuid: Optional[str] = None
    extra_modules: str = ""
    dry_run: bool = False
    hostname: Optional[str] = None


@dataclass
class BuildResult:
    resolution: Resolution
    layout: HostLayout
    scripts: Dict[str, Path] = field(default_factory=dict)
    memdisk: Optional[Path] = None
    core_img: Optional[Path] = None
    installed: bool = False

    @property
    def modules(self) -> Tuple[str, ...]:
        return self.resolution.modules


def _write_script(script: Script, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(script.render(), encoding="utf-8")
    _log.info("Creating configuration file '%s'", path)
    return path


class BuildPipeline:
    def __init__(self, cfg: EarlyConfig, options: BuildOptions, prober: Optional[HostProber] = None):
        self.cfg = cfg
        self.options = options
        self.paths = cfg.paths
        self.prober = prober or HostProber(cfg.paths, target=cfg.paths.boot_dir)

    # -- checks ------------------------------------------------------------

    def check_environment(self) -> None:
        if self.options.dry_run:
            return
        for binary in (self.paths.grub_kbdcomp, self.paths.grub_mkimage,
                       self.paths.grub_probe, self.paths.grub_bios_setup):
            if not (binary.is_file() and os.access(binary, os.X_OK)):
                raise ExternalToolError(f"binary '{binary.name}' not found (at path: '{binary}')")
        try:
            run_tool(["lsblk", self.options.device])
        except ExternalToolError as exc:
            raise ConfigError(f"invalid device '{self.options.device}'") from exc

    # -- stages ------------------------------------------------------------

    def stage_assets(self, ctx: ScriptContext, host_dir: Path) -> None:
        cfg = self.cfg
        if cfg.keymap_enabled:
            ctx.keymap_file = compile_keymap(self.paths, cfg.keymap, host_dir)
        if cfg.locale_short and cfg.locale_short != "en":
            copy_locale(self.paths, cfg.locale_short, host_dir)
        if cfg.no_gfxterm:
            return
        if cfg.font:
            ctx.font_file = copy_font(self.paths, cfg.font, host_dir)
        if ctx.theme_enabled:
            ctx.themes_dir = stage_themes(ctx.themes.values(), host_dir / "themes")
            ctx.terminal_bg_images = stage_terminal_bg_images(ctx.themes, host_dir)

    def write_scripts(self, ctx: ScriptContext, host_dir: Path) -> Dict[str, Path]:
        cfg, paths, layout = self.cfg, self.paths, ctx.layout
        written: Dict[str, Path] = {}

        if cfg.normal_cfg is not None:
            _log.info("Copying '%s' to '%s'", cfg.normal_cfg, paths.normal_cfg)
            shutil.copyfile(cfg.normal_cfg, paths.normal_cfg)
            written["normal"] = paths.normal_cfg
        elif not layout.multi:
            written["normal"] = _write_script(build_normal_cfg(ctx), paths.normal_cfg)
        else:
            written["detect"] = _write_script(
                build_detect_cfg(layout.host_id, ctx.probe.pci), host_dir / HOST_DETECTION_FILENAME
            )
            written["params"] = _write_script(Script(build_params(ctx)), host_dir / HOST_CONFIGURATION_FILENAME)
            written["menus"] = _write_script(Script(build_menus(ctx)), host_dir / HOST_MENUS_FILENAME)
            detections = {}
            for host_id in layout.all_host_ids:
                f = paths.memdisk_dir / host_id / HOST_DETECTION_FILENAME
                if f.is_file():
                    detections[host_id] = f.read_text(encoding="utf-8")
            written["normal"] = _write_script(build_normal_cfg(ctx, detections), paths.normal_cfg)

        if cfg.core_cfg is not None:
            _log.info("Copying '%s' to '%s'", cfg.core_cfg, paths.core_cfg)
            shutil.copyfile(cfg.core_cfg, paths.core_cfg)
            written["load"] = paths.core_cfg
        else:
            written["load"] = _write_script(build_load_cfg(paths.normal_cfg.name), paths.core_cfg)
        return written

    def sources(self, written: Dict[str, Path], layout: HostLayout) -> List[ScriptSource]:
        out = [ScriptSource.from_path(written["load"], "loader", label="load.cfg"),
               ScriptSource.from_path(written["normal"], "shared", label="normal.cfg")]
        if "params" in written:
            out.append(ScriptSource.from_path(written["params"], "host", label=f"{layout.host_id}:params.cfg"))
            out.append(ScriptSource.from_path(written["menus"], "host", label=f"{layout.host_id}:menus.cfg"))
        for peer in layout.peers:
            out += peer_sources(self.paths.memdisk_dir / peer.host_id, peer.host_id)
        return out

    def resolve(self, sources: List[ScriptSource], layout: HostLayout, probe: BootProbe) -> Resolution:
        manifest, commands = load_module_metadata(self.paths.moddir)
        aggregator = RequirementAggregator(manifest, commands, load_rules(self.cfg.rules_file))
        extra = parse_module_list(f"{self.cfg.extra_modules} {self.options.extra_modules}")
        if layout.multi:
            target = artifact_path(self.paths.memdisk_dir, layout.host_id)
        else:
            target = artifact_path(self.paths.early_dir)
        return aggregator.aggregate(
            sources,
            extra_modules=extra,
            host_features=host_feature_modules(self.cfg, probe),
            boot_buses=probe.buses,
            peer_artifacts=[peer_artifact(self.paths.memdisk_dir / p.host_id) for p in layout.peers],
            artifact_path=target,
        )

    def run_hook(self, modules: Tuple[str, ...]) -> None:
        hook = self.cfg.hook_script
        if hook is None or not Path(hook).is_file():
            return
        _log.debug("Hook script '%s' being triggered", hook)
        env = {
            **os.environ,
            "GRUB_EARLY_DIR": str(self.paths.early_dir),
            "GRUB_MEMDISK_DIR": str(self.paths.memdisk_dir),
            "GRUB_EARLY_MODULES": " ".join(modules),
        }
        run_tool(["sh", str(hook)], env=env)

    # -- entry point -------------------------------------------------------

    def run(self) -> BuildResult:
        cfg, opts, paths = self.cfg, self.options, self.paths
        self.check_environment()

        layout = build_layout(
            opts.hostname or socket.gethostname(),
            other_hosts=opts.other_hosts,
            multi_hosts=opts.multi_hosts,
            uuid=opts.uuid,
            short_uuid=cfg.short_uuid,
        )

        prepare_memdisk_dir(paths, empty=cfg.empty_memdisk_dir)
        for peer in layout.peers:
            extract_peer_archive(peer, paths.memdisk_dir)
        host_dir = layout.host_dir(paths.memdisk_dir)
        host_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

        themes = resolve_theme_variants(cfg)
        ctx = ScriptContext(
            cfg=cfg,
            layout=layout,
            themes=themes,
            random_theme=random_theme_enabled(cfg, themes),
            kernels=discover_kernels(paths.boot_dir),
        )
        self.stage_assets(ctx, host_dir)
        ctx.probe = self.prober.collect(with_pci=layout.multi)
        if layout.multi:
            ctx.has_common_conf = copy_optional(cfg.common_conf, paths.memdisk_dir / COMMON_CONF_FILENAME)
            ctx.has_common_menu = copy_optional(cfg.common_menu, paths.memdisk_dir / COMMON_MENU_FILENAME)

        written = self.write_scripts(ctx, host_dir)
        resolution = self.resolve(self.sources(written, layout), layout, ctx.probe)
        verify_modules(paths.moddir, resolution.modules)
        self.run_hook(resolution.modules)

        result = BuildResult(resolution=resolution, layout=layout, scripts=written)
        result.memdisk = create_memdisk_tarball(paths.memdisk_dir, paths.core_memdisk)
        if opts.dry_run:
            _log.info("Dry run: not creating the core image nor installing it")
            return result

        result.core_img = build_core_image(paths, resolution.modules)
        ensure_boot_img(paths)
        if opts.no_install:
            _log.info("Not installing grub to MBR BIOS of disk '%s' (user asked not to)", opts.device)
        else:
            install_to_mbr(paths, opts.device, cfg.install_args)
            result.installed = True
        _log.info("Done! ;-)")
        return result
