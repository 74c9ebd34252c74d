from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from grub_early import __version__
from grub_early.core.build.pipeline import BuildOptions, BuildPipeline
from grub_early.core.config import V_DEBUG, V_INFO, V_QUIET, default_moddir, load_config
from grub_early.core.errors import GrubEarlyError
from grub_early.core.requirements import (
    RequirementAggregator,
    ScriptSource,
    load_module_metadata,
    load_rules,
    parse_module_list,
)

_log = logging.getLogger("grub_early.cli")

_LEVELS = {V_QUIET: logging.WARNING, V_INFO: logging.INFO, V_DEBUG: logging.DEBUG}


def _verbosity(value: str) -> int:
    try:
        v = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid verbosity '{value}'")
    if v not in _LEVELS:
        raise argparse.ArgumentTypeError(f"verbosity must be {V_QUIET}, {V_INFO} or {V_DEBUG}")
    return v


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbosity", type=_verbosity, default=V_QUIET,
                        help="0: quiet, 1: info, 2: debug (default 0)")

    ap = argparse.ArgumentParser(
        prog="grub-early",
        description="Build a GRUB early image (core.img) with an embedded memdisk, for an encrypted /boot.",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="command", required=True)

    b = sub.add_parser("build", parents=[common], help="Generate the scripts, build core.img and install it")
    b.add_argument("device", help="disk whose MBR receives the image, e.g. /dev/sda")
    b.add_argument("-c", "--config", type=Path, default=None,
                   help="configuration file (default $GRUB_EARLY_CONFIG or /etc/default/grub)")
    b.add_argument("-n", "--no-install", action="store_true", help="do not install to the disk MBR")
    b.add_argument("-o", "--other-hosts", default=None,
                   help="peer host archives: 'id:archive_path | id:archive_path'")
    b.add_argument("-m", "--multi-hosts", action="store_true", help="enable multi-host mode")
    b.add_argument("-u", "--uuid", default=None, help="host id to use instead of hostname_machineuuid")
    b.add_argument("--extra-modules", default="", help="space separated modules to embed as well")
    b.add_argument("--dry-run", action="store_true", help="stop before grub-mkimage")

    r = sub.add_parser("resolve", parents=[common], help="Print the modules the given boot scripts require")
    r.add_argument("files", nargs="+", type=Path, help="boot script files")
    r.add_argument("--moddir", type=Path, default=None, help="GRUB module directory")
    r.add_argument("--extra-modules", default="", help="space separated modules to add")
    r.add_argument("--artifact", type=Path, default=None, help="write the resulting module list there")
    r.add_argument("--peer", type=Path, action="append", default=[], help="peer requirements artifact (repeatable)")
    r.add_argument("--boot-bus", action="append", default=[], help="bus family of a boot disk (repeatable)")
    r.add_argument("--rules", type=Path, default=None, help="YAML/JSON rule overrides")
    r.add_argument("--json", action="store_true", help="print the full resolution as JSON")
    return ap


def _cmd_build(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    options = BuildOptions(
        device=args.device,
        no_install=args.no_install,
        other_hosts=args.other_hosts,
        multi_hosts=args.multi_hosts,
        uuid=args.uuid,
        extra_modules=args.extra_modules,
        dry_run=args.dry_run,
    )
    result = BuildPipeline(cfg, options).run()
    _log.info("Modules: %s", " ".join(result.modules))
    return 0


def _cmd_resolve(args: argparse.Namespace) -> int:
    moddir = args.moddir or default_moddir()
    manifest, commands = load_module_metadata(moddir)
    aggregator = RequirementAggregator(manifest, commands, load_rules(args.rules))
    sources = [ScriptSource.from_path(f, "shared") for f in args.files]
    resolution = aggregator.aggregate(
        sources,
        extra_modules=parse_module_list(args.extra_modules),
        boot_buses=args.boot_bus,
        peer_artifacts=args.peer,
        artifact_path=args.artifact,
    )
    if args.json:
        print(json.dumps(resolution.as_dict(), indent=2, sort_keys=True))
    else:
        print(" ".join(resolution.modules))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=_LEVELS[args.verbosity], format="%(levelname)s: %(message)s")
    try:
        if args.command == "build":
            return _cmd_build(args)
        return _cmd_resolve(args)
    except GrubEarlyError as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
