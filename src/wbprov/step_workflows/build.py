# step_workflows/build.py
from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import List

from ..context import StepContext
from ..envpath import resolve
from ..errors import BuildError, tool_unavailable
from ..model import Recipe, Step
from ..shell import run_command

_ERROR_LINE_PREFIXES = ("error[", "error:", "fatal error")


def first_error_line(output: str) -> str | None:
    for line in output.splitlines():
        if line.strip().lower().startswith(_ERROR_LINE_PREFIXES):
            return line.strip()
    return None


def artifact_path(step: Step, ctx: StepContext) -> Path:
    return ctx.resolve(step.data["artifact"])


def check_artifact(step: Step, artifact: Path) -> None:
    if not artifact.is_file():
        raise BuildError(
            step=step.name,
            message=f"build succeeded but artifact is missing: {artifact}",
            details={"artifact": str(artifact)},
        )
    if not os.access(artifact, os.X_OK):
        raise BuildError(
            step=step.name,
            message=f"artifact is not executable: {artifact}",
            details={"artifact": str(artifact)},
        )


def run_step(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    src = ctx.resolve(step.data["src"])
    if not src.is_dir():
        raise BuildError(
            step=step.name,
            message=f"source tree not found: {src}",
            details={"hint": "The source step must run before the build step."},
        )

    command = list(step.data["command"])
    # resolve against the run's own search path, not the caller's PATH
    if resolve(command[0], ctx.search_path) is None:
        raise tool_unavailable(command[0], step=step.name)

    result = run_command(
        command,
        cwd=src,
        env=ctx.env(step.data.get("env")),
        step=step.name,
        log_file=ctx.log_file(step),
    )
    if not result.ok:
        details = {"exit_code": result.returncode}
        first = first_error_line(result.output)
        if first:
            details["first_error"] = first
        raise BuildError(
            step=step.name,
            message=f"{' '.join(command)} failed",
            details=details,
            output=result.tail(),
        )

    check_artifact(step, artifact_path(step, ctx))


def apply(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    artifact = artifact_path(step, ctx)
    # a cached build still has to leave a runnable artifact behind
    check_artifact(step, artifact)
    ctx.artifacts.append(artifact)


# ---------------------------------------------------------------------
# Dockerfile rendering
# ---------------------------------------------------------------------

def render(recipe: Recipe, step: Step) -> List[str]:
    src = shlex.quote(str(recipe.resolve(step.data["src"])))
    command = " ".join(shlex.quote(c) for c in step.data["command"])
    return [f"RUN cd {src} \\\n    && {command}"]
