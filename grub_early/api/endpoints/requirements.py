from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from grub_early.core.config import default_moddir
from grub_early.core.errors import MissingInputError
from grub_early.core.requirements import (
    RequirementAggregator,
    ScriptSource,
    artifact_path,
    load_module_metadata,
    load_rules,
    parse_module_list,
    read_artifact,
)

log = logging.getLogger("grub_early.api.requirements")

router = APIRouter(prefix="/api/v1/requirements", tags=["requirements"])

_HOST_ID_RE = re.compile(r"^[\w-]+$")


def artifacts_dir() -> Optional[Path]:
    env = (os.getenv("GRUB_EARLY_ARTIFACTS_DIR") or "").strip()
    return Path(env) if env else None


def allowed_roots() -> List[Path]:
    """Directories a request may point moddir / rules_file into.

    The configured module directory plus GRUB_EARLY_API_ROOTS (os.pathsep separated).
    """
    roots = [default_moddir()]
    env = (os.getenv("GRUB_EARLY_API_ROOTS") or "").strip()
    roots.extend(Path(p) for p in env.split(os.pathsep) if p.strip())
    return [r.resolve() for r in roots]


def _checked_path(value: str, field: str) -> Path:
    p = Path(value).resolve()
    for root in allowed_roots():
        if p == root or root in p.parents:
            return p
    log.warning("Rejected %s outside allowed roots: %s", field, value)
    raise HTTPException(status_code=403, detail=f"{field} is outside the allowed directories")


class ScriptIn(BaseModel):
    label: str
    role: Literal["loader", "shared", "host", "peer"] = "shared"
    text: str = ""


class ResolveRequest(BaseModel):
    scripts: List[ScriptIn] = Field(default_factory=list)
    extra_modules: Union[List[str], str] = Field(default_factory=list)
    boot_buses: List[str] = Field(default_factory=list)
    moddir: Optional[str] = None
    rules_file: Optional[str] = None


@router.post("/resolve")
def resolve_requirements(req: ResolveRequest):
    # build errors propagate to SafeErrorMiddleware, which maps them to 400/422
    moddir = _checked_path(req.moddir, "moddir") if req.moddir else default_moddir()
    rules_file = _checked_path(req.rules_file, "rules_file") if req.rules_file else None
    manifest, commands = load_module_metadata(moddir)

    extra = req.extra_modules if isinstance(req.extra_modules, str) else " ".join(req.extra_modules)
    aggregator = RequirementAggregator(
        manifest, commands, load_rules(rules_file)
    )
    sources = [ScriptSource.from_text(s.text, s.role, s.label) for s in req.scripts]
    resolution = aggregator.aggregate(
        sources,
        extra_modules=parse_module_list(extra),
        boot_buses=req.boot_buses,
    )
    log.info("resolve scripts=%d modules=%d", len(sources), len(resolution.modules))
    return resolution.as_dict()


@router.get("/{host_id}")
def get_host_requirements(host_id: str):
    if not _HOST_ID_RE.match(host_id):
        raise HTTPException(status_code=400, detail="Invalid host id")
    base = artifacts_dir()
    if base is None:
        raise HTTPException(status_code=404, detail="Requirements artifact not found")
    try:
        modules = read_artifact(artifact_path(base, host_id))
    except MissingInputError:
        raise HTTPException(status_code=404, detail="Requirements artifact not found")
    return {"host_id": host_id, "modules": list(modules)}
