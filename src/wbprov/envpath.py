# envpath.py
from __future__ import annotations

import os
import shlex
import shutil
from pathlib import Path
from typing import Iterable, List, Optional


def split_path(value: str | None) -> List[str]:
    if not value:
        return []
    return [p for p in value.split(os.pathsep) if p]


def compose(front: Iterable[str | Path], inherited: Iterable[str] = ()) -> List[str]:
    """
    Ordered search path: `front` entries first (in the given order), then the
    inherited entries. Duplicates keep their first occurrence so a directory
    listed up front can't be shadowed by a later copy of itself.
    """
    out: List[str] = []
    seen: set[str] = set()
    for entry in [*front, *inherited]:
        s = str(entry)
        if not s:
            continue
        key = os.path.normpath(s)
        if key in seen:
            continue
        seen.add(key)
        out.append(s)
    return out


def resolve(binary: str, path_list: List[str]) -> Optional[Path]:
    """Resolve a bare command name against an explicit search path."""
    found = shutil.which(binary, path=os.pathsep.join(path_list))
    return Path(found) if found else None


def resolves_to(binary: str, path_list: List[str], artifact: Path) -> bool:
    found = resolve(binary, path_list)
    if found is None:
        return False
    return found.resolve() == Path(artifact).resolve()


def render_env_file(path_list: List[str]) -> str:
    value = os.pathsep.join(path_list)
    return (
        "# generated by wbprov; source this file to use the provisioned tools\n"
        f"export PATH={shlex.quote(value)}\n"
    )
