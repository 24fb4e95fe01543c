# step_workflows/shell_step.py
from __future__ import annotations

import shlex
from typing import List

from ..context import StepContext
from ..errors import ERRORS_BY_KIND, BuildError
from ..model import Recipe, Step
from ..shell import run_command


def run_step(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    """Run a plain shell step; `data["error_kind"]` picks the error class."""
    cwd = ctx.resolve(step.cwd or ".")
    result = run_command(
        step.run or "",
        cwd=cwd,
        env=ctx.env(step.data.get("env")),
        step=step.name,
        log_file=ctx.log_file(step),
    )
    if result.ok:
        return

    error_cls = ERRORS_BY_KIND.get(step.data.get("error_kind", ""), BuildError)
    raise error_cls(
        step=step.name,
        message=f"command failed (exit={result.returncode}): {step.run}",
        details={"exit_code": result.returncode},
        output=result.tail(),
    )


def render(recipe: Recipe, step: Step) -> List[str]:
    if step.cwd:
        return [f"RUN cd {shlex.quote(str(recipe.resolve(step.cwd)))} && {step.run}"]
    return [f"RUN {step.run}"]
