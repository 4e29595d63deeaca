from __future__ import annotations

import os
import shutil
from functools import lru_cache
from pathlib import Path

_ENV_VARS = {"ffmpeg": "FFMPEG_PATH", "ffprobe": "FFPROBE_PATH"}


@lru_cache(maxsize=None)
def resolve_tool(name: str) -> str:
    """Locate ffmpeg/ffprobe: explicit env override first, then PATH."""
    name = name.lower().strip()
    if name not in _ENV_VARS:
        raise ValueError(f"unexpected tool: {name}")
    checked: list[str] = []
    env_var = _ENV_VARS[name]
    env_val = (os.getenv(env_var) or "").strip()
    if env_val:
        checked.append(f"{env_var}={env_val}")
        path = Path(env_val)
        if path.exists():
            return str(path)

    resolved = shutil.which(name)
    if resolved:
        return resolved
    checked.append("PATH")
    raise RuntimeError(f"{name} not found; checked: {', '.join(checked)}")


def tool_available(name: str) -> bool:
    try:
        resolve_tool(name)
    except RuntimeError:
        return False
    return True
