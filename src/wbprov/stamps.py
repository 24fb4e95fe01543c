# stamps.py
from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .model import Recipe, Step

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Step-level rebuild skipping, with container layer semantics:
#   key(step_i) = hash(
#       key(step_{i-1}),
#       step kind, command, cwd, data,
#       recipe env, workdir
#   )
#
# A stamp is a small json file written after a step succeeds. On rerun a
# step is skipped only if its stamp holds the same chained key, so editing
# any step invalidates that step and everything after it.
#
# Layout:
#   <state_dir>/stamps/<step name>.json
# ---------------------------------------------------------------------

STAMP_FORMAT = 1


@dataclass(frozen=True)
class StampHit:
    hit: bool
    key: str
    reason: str  # human readable


def _sha256_str(s: str) -> str:
    h = hashlib.sha256()
    h.update(s.encode("utf-8"))
    return h.hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def step_fingerprint(step: Step) -> Dict:
    return {
        "name": step.name,
        "kind": step.kind,
        "run": step.run or "",
        "cwd": step.cwd or ".",
        "data": step.data,
    }


def chain_keys(recipe: Recipe, workdir: str | Path | None = None) -> List[str]:
    """Chained key for every step of the recipe, in order."""
    prev = _sha256_str(_json_dumps_stable({
        "v": STAMP_FORMAT,
        "recipe": recipe.name,
        "env": recipe.env,
        "workdir": str(workdir or recipe.workdir),
    }))
    keys: List[str] = []
    for s in recipe.steps:
        prev = _sha256_str(prev + _json_dumps_stable(step_fingerprint(s)))
        keys.append(prev)
    return keys


def _safe_name(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name)


class StampStore:
    """
    File-based stamp store:
      root/
        <step>.json
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def path(self, step_name: str) -> Path:
        return self.root / f"{_safe_name(step_name)}.json"

    def check(self, step: Step, key: str) -> StampHit:
        p = self.path(step.name)
        if not p.exists():
            return StampHit(hit=False, key=key, reason="no stamp")
        try:
            stored = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return StampHit(hit=False, key=key, reason="unreadable stamp")
        if stored.get("key") != key:
            return StampHit(hit=False, key=key, reason="step or an earlier step changed")
        return StampHit(hit=True, key=key, reason="stamp matches")

    def save(self, step: Step, key: str, extra: Optional[Dict] = None) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        p = self.path(step.name)
        tmp = p.with_suffix(".json.tmp")
        payload = {
            "key": key,
            "step": step_fingerprint(step),
            "saved_at_unix": int(time.time()),
            **(extra or {}),
        }
        tmp.write_text(json.dumps(payload, sort_keys=True, indent=2, default=str), encoding="utf-8")
        tmp.replace(p)
        return p

    def invalidate_from(self, recipe: Recipe, index: int) -> None:
        """Drop stamps for the step at `index` and every step after it."""
        for s in recipe.steps[index:]:
            self.path(s.name).unlink(missing_ok=True)
