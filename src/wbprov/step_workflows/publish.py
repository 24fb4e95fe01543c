# step_workflows/publish.py
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from ..context import StepContext
from ..envpath import render_env_file, resolve
from ..errors import PathPublishError
from ..model import Recipe, Step

ENV_FILE = "env.sh"


def _expected_artifact(recipe: Recipe, ctx: StepContext) -> Optional[Path]:
    for a in reversed(ctx.artifacts):
        if a.name == recipe.binary:
            return a
    return None


def run_step(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    dirs = [str(ctx.resolve(d)) for d in step.data.get("dirs", [])]
    missing = [d for d in dirs if not Path(d).is_dir()]
    if missing:
        raise PathPublishError(
            step=step.name,
            message=f"cannot publish missing director{'y' if len(missing) == 1 else 'ies'}: {', '.join(missing)}",
            details={"missing": ",".join(missing)},
        )

    # later publish steps go in front of earlier ones
    ctx.published_dirs[:0] = [d for d in dirs if d not in ctx.published_dirs]
    search_path = ctx.search_path

    if recipe.binary:
        found = resolve(recipe.binary, search_path)
        expected = _expected_artifact(recipe, ctx)
        if found is None:
            raise PathPublishError(
                step=step.name,
                message=f"{recipe.binary} does not resolve on the published search path",
                details={"path": os.pathsep.join(search_path)},
            )
        if expected is not None and found.resolve() != expected.resolve():
            raise PathPublishError(
                step=step.name,
                message=f"{recipe.binary} resolves to {found}, not the freshly built {expected}",
                details={
                    "resolved": str(found),
                    "expected": str(expected),
                    "hint": "Publish the build output directory so it precedes the inherited PATH.",
                },
            )

    env_file = ctx.state_dir / ENV_FILE
    env_file.parent.mkdir(parents=True, exist_ok=True)
    env_file.write_text(render_env_file(search_path), encoding="utf-8")


# ---------------------------------------------------------------------
# Dockerfile rendering
# ---------------------------------------------------------------------

def render(recipe: Recipe, step: Step) -> List[str]:
    dirs = [str(recipe.resolve(d)) for d in step.data.get("dirs", [])]
    # ${PATH} already starts with the toolchain bin dirs from their own ENV
    lines = [f'ENV PATH="{":".join(dirs)}:${{PATH}}"']
    if recipe.binary:
        lines.append(f"RUN command -v {recipe.binary}")
    return lines
