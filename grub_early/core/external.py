from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from grub_early.core.errors import ExternalToolError

_log = logging.getLogger("grub_early.external")

Arg = Union[str, Path]


def run_tool(argv: Sequence[Arg], *, cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> str:
    """Run an external tool and return its stripped stdout."""
    args: List[str] = [str(a) for a in argv]
    _log.debug("exec argv=%s", " ".join(args))
    try:
        p = subprocess.run(
            args,
            cwd=str(cwd) if cwd else None,
            env=env,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        return (p.stdout or "").strip()
    except FileNotFoundError as e:
        raise ExternalToolError(f"binary '{Path(args[0]).name}' not found (at path: '{args[0]}')") from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or e.stdout or str(e)).strip()
        raise ExternalToolError(f"'{Path(args[0]).name}' failed: {detail}") from e


def tool_lines(argv: Sequence[Arg]) -> List[str]:
    return [line.strip() for line in run_tool(argv).splitlines() if line.strip()]

