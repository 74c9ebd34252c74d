from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter
from starlette.responses import JSONResponse

from grub_early.api.endpoints.requirements import artifacts_dir
from grub_early.core.config import default_moddir
from grub_early.core.observability.metrics import inc_named
from grub_early.core.requirements.manifest import COMMAND_FILENAME, MODDEP_FILENAME

router = APIRouter()


@router.get("/health/live")
async def live():
    inc_named("health_live")
    return {"status": "ok"}


@router.get("/health/ready")
def ready():
    """
    Readiness reflects ability to resolve requirements: the default module
    directory must carry its metadata files.
    """
    inc_named("health_ready")
    problems: list[str] = []

    moddir = default_moddir()
    for name in (MODDEP_FILENAME, COMMAND_FILENAME):
        if not (moddir / name).is_file():
            problems.append(f"missing_file:{moddir / name}")

    adir = artifacts_dir()
    if adir is not None and not Path(adir).is_dir():
        problems.append(f"missing_dir:{adir}")

    if problems:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "problems": problems},
        )
    return {"status": "ready"}
