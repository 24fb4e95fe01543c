# runner.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from . import settings
from .context import StepContext
from .errors import ProvisionError
from .model import Recipe, Step
from .stamps import StampStore, chain_keys
from .step_workflows import apt, build, publish, shell_step, source, toolchain
from .ui.console import get_console

# refresh -> install -> fetch -> toolchain -> build -> publish

STEP_HANDLERS = {
    "sh": shell_step,
    "apt_update": apt,
    "apt_install": apt,
    "source": source,
    "toolchain": toolchain,
    "build": build,
    "publish": publish,
}

# steps that are re-evaluated on every run, stamp or not
ALWAYS_RUN = ("publish",)


# ----------------------------------------------------------------------
# Recipe loading (local file)
# ----------------------------------------------------------------------

def load_recipe(path: str | Path) -> Recipe:
    """
    Load a recipe from a python file path.

    The file must define either:
      - recipe() -> Recipe
      - RECIPE = Recipe(...)
    """
    rp = Path(path).expanduser().resolve()
    if not rp.exists():
        raise FileNotFoundError(f"Recipe file not found: {rp}")
    if rp.suffix != ".py":
        raise ValueError(f"Recipe must be a .py file, got: {rp.name}")

    module_name = f"wbprov_recipe_{rp.stem}"
    globals_dict = runpy.run_path(str(rp), run_name=module_name)

    loaded = None
    if "RECIPE" in globals_dict:
        loaded = globals_dict["RECIPE"]
    elif "recipe" in globals_dict and callable(globals_dict["recipe"]):
        try:
            loaded = globals_dict["recipe"]()
        except TypeError as e:
            if "missing 1 required positional argument" in str(e):
                raise TypeError(
                    "Your recipe() is the imported helper, not a recipe factory (name collision). "
                    "Import it under another name: `from wbprov.dsl import recipe as make_recipe`."
                ) from e
            raise

    if not isinstance(loaded, Recipe):
        raise TypeError(
            "Recipe file must return/define a Recipe. "
            "Define recipe() -> Recipe or RECIPE = Recipe(...)."
        )
    return loaded


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class ProvisionResult:
    status: str  # "ok" | "failed" | "planned"
    steps: Dict[str, str]  # step name -> ok | cached | failed | not_run | planned
    search_path: List[str] = field(default_factory=list)
    artifact: Optional[Path] = None
    env_file: Optional[Path] = None
    error: Optional[ProvisionError] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed_step(self) -> Optional[str]:
        for name, status in self.steps.items():
            if status == "failed":
                return name
        return None


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _apply(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    handler = STEP_HANDLERS[step.kind]
    if hasattr(handler, "apply"):
        handler.apply(recipe, step, ctx)


def _run_step(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    try:
        STEP_HANDLERS[step.kind].run_step(recipe, step, ctx)
    except ProvisionError as e:
        if e.step is None:
            e.step = step.name
        raise
    except Exception as e:
        raise ProvisionError(
            step=step.name,
            message=str(e) or type(e).__name__,
            details={"exception": type(e).__name__},
        ) from e
    _apply(recipe, step, ctx)


def _try_cached(recipe: Recipe, step: Step, ctx: StepContext) -> bool:
    """Re-apply a stamped step's effects; False if what it left behind is gone."""
    try:
        _apply(recipe, step, ctx)
    except ProvisionError:
        return False
    return True


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_recipe(
    recipe: Recipe,
    *,
    workdir: str | Path | None = None,
    state_dir: str | Path | None = None,
    use_stamps: bool = True,
    dry_run: bool = False,
    inherited_path: Optional[List[str]] = None,
) -> ProvisionResult:
    """
    Provision `recipe` step by step. The first failing step aborts the run;
    nothing after it is executed and no env file is left behind.
    """
    console = get_console()
    workdir_p = Path(workdir or recipe.workdir).expanduser().resolve()
    state_p = Path(state_dir or settings.STATE_DIR).expanduser().resolve()

    results: Dict[str, str] = {s.name: "not_run" for s in recipe.steps}

    if dry_run:
        for s in recipe.steps:
            results[s.name] = "planned"
            console.print_plan_step(s.name, s.kind)
        return ProvisionResult(status="planned", steps=results)

    ctx = StepContext(recipe=recipe, workdir=workdir_p, state_dir=state_p)
    if inherited_path is not None:
        ctx.inherited_path = list(inherited_path)

    state_p.mkdir(parents=True, exist_ok=True)
    env_file = state_p / publish.ENV_FILE
    env_file.unlink(missing_ok=True)

    stamps = StampStore(state_p / "stamps")
    keys = chain_keys(recipe, workdir_p)

    console.print_run_started(recipe.name, len(recipe.steps), str(workdir_p))

    for i, step in enumerate(recipe.steps):
        console.print_step(step.name)

        if use_stamps and step.kind not in ALWAYS_RUN:
            hit = stamps.check(step, keys[i])
            if hit.hit:
                if _try_cached(recipe, step, ctx):
                    results[step.name] = "cached"
                    console.print_step_status(step.name, "cached", hit.reason)
                    continue
                console.print_debug(f"stamp for '{step.name}' is stale, its outputs are gone; rerunning")
            else:
                console.print_debug(f"'{step.name}': {hit.reason}")

        stamps.invalidate_from(recipe, i)
        try:
            _run_step(recipe, step, ctx)
        except ProvisionError as e:
            results[step.name] = "failed"
            console.print_failure(e)
            return ProvisionResult(
                status="failed",
                steps=results,
                search_path=ctx.search_path,
                artifact=ctx.artifact,
                error=e,
            )

        if step.kind not in ALWAYS_RUN:
            stamps.save(step, keys[i])
        results[step.name] = "ok"
        console.print_step_status(step.name, "ok")

    return ProvisionResult(
        status="ok",
        steps=results,
        search_path=ctx.search_path,
        artifact=ctx.artifact,
        env_file=env_file if env_file.exists() else None,
    )

