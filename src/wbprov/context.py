# context.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .envpath import compose, split_path
from .model import Recipe, Step
from .shell import build_env


@dataclass
class StepContext:
    """
    Mutable state threaded through one provisioning run.

    `toolchain_dirs` and `published_dirs` grow as toolchain/publish steps
    succeed; `search_path` is always derived from them in front of the
    inherited PATH.
    """
    recipe: Recipe
    workdir: Path
    state_dir: Path
    inherited_path: List[str] = field(default_factory=lambda: split_path(os.environ.get("PATH")))
    toolchain_dirs: List[str] = field(default_factory=list)
    published_dirs: List[str] = field(default_factory=list)
    toolchain_env: Dict[str, str] = field(default_factory=dict)
    artifacts: List[Path] = field(default_factory=list)

    @property
    def search_path(self) -> List[str]:
        return compose([*self.published_dirs, *self.toolchain_dirs], self.inherited_path)

    def resolve(self, p: str | Path) -> Path:
        return self.recipe.resolve(p, self.workdir)

    def env(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        merged = {**self.recipe.env, **self.toolchain_env, **(extra or {})}
        return build_env(extra=merged, path=self.search_path)

    def log_file(self, step: Step) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in step.name)
        return self.state_dir / "logs" / f"{safe}.log"

    @property
    def artifact(self) -> Optional[Path]:
        return self.artifacts[-1] if self.artifacts else None
