# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


STEP_KINDS = (
    "sh",
    "apt_update",
    "apt_install",
    "source",
    "toolchain",
    "build",
    "publish",
)


@dataclass(frozen=True)
class Step:
    """A single provisioning step inside a recipe."""
    name: str
    kind: str = "sh"
    run: str | None = None
    cwd: str | None = None
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in STEP_KINDS:
            raise ValueError(f"Step {self.name!r}: unknown kind {self.kind!r}")


@dataclass
class Recipe:
    """
    An ordered provisioning procedure.

    `workdir` anchors every relative path found in step data, both on a local
    host and inside a rendered container image. `binary` is the command name
    the procedure must expose on the search path once it finishes.
    """
    name: str
    steps: List[Step]
    base_image: str = "ubuntu:20.04"
    workdir: str = "/root"
    binary: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Recipe {self.name!r} has no steps")
        seen: set[str] = set()
        for s in self.steps:
            if s.name in seen:
                raise ValueError(f"Duplicate step name: {s.name}")
            seen.add(s.name)

    def resolve(self, p: str | Path, workdir: str | Path | None = None) -> Path:
        """Resolve a step path against the recipe (or overridden) workdir."""
        path = Path(p).expanduser()
        if path.is_absolute():
            return path
        return Path(workdir or self.workdir) / path

    def steps_of(self, kind: str) -> List[Step]:
        return [s for s in self.steps if s.kind == kind]
