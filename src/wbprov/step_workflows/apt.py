# step_workflows/apt.py
from __future__ import annotations

import re
import shlex
from typing import List

from ..context import StepContext
from ..errors import PackageIndexError, PackageInstallError
from ..model import Recipe, Step
from ..shell import CommandResult, run_command

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
UPDATE_LOG = "/tmp/apt-update.log"

_FETCH_FAILED = re.compile(r"^(W|E|Err):.*(Failed to fetch|Some index files failed to download)", re.M)
_MISSING_PKG = re.compile(r"^E: (?:Unable to locate package|Package '?)([^\s']+)", re.M)
_NOT_ROOT = re.compile(r"are you root\?|Permission denied", re.I)


# ---------------------------------------------------------------------
# Output classification
# ---------------------------------------------------------------------

def index_failures(output: str) -> List[str]:
    """Lines where apt reports a mirror it couldn't fetch from."""
    return [m.group(0) for m in _FETCH_FAILED.finditer(output)]


def missing_packages(output: str) -> List[str]:
    return sorted(set(_MISSING_PKG.findall(output)))


def has_conflict(output: str) -> bool:
    return "unmet dependencies" in output or "held broken packages" in output


def _root_hint(result: CommandResult) -> dict:
    if _NOT_ROOT.search(result.output):
        return {"hint": "apt needs root; run inside the container or with sudo."}
    return {}


# ---------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------

def run_update(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    result = run_command(
        ["apt-get", "update"],
        env=ctx.env(APT_ENV),
        step=step.name,
        log_file=ctx.log_file(step),
    )

    # apt-get update exits 0 on partial mirror failures, so scan the output too
    failures = index_failures(result.output)
    if result.ok and not failures:
        return

    details = {"exit_code": result.returncode, **_root_hint(result)}
    if failures:
        details["failed_fetches"] = len(failures)
    raise PackageIndexError(
        step=step.name,
        message=failures[0] if failures else "package index refresh failed",
        details=details,
        output=result.tail(),
    )


def run_install(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    packages = list(step.data.get("packages", []))
    result = run_command(
        ["apt-get", "install", "-y", "--no-install-recommends", *packages],
        env=ctx.env(APT_ENV),
        step=step.name,
        log_file=ctx.log_file(step),
    )
    if result.ok:
        return

    missing = missing_packages(result.output)
    details: dict = {"exit_code": result.returncode, **_root_hint(result)}
    if missing:
        message = f"package(s) not found: {', '.join(missing)}"
        details["missing"] = ",".join(missing)
        details.setdefault("hint", "Refresh the package index first, or check the package name.")
    elif has_conflict(result.output):
        message = "dependency conflict while installing packages"
    else:
        message = "package installation failed"
    raise PackageInstallError(step=step.name, message=message, details=details, output=result.tail())


def run_step(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    if step.kind == "apt_update":
        run_update(recipe, step, ctx)
    else:
        run_install(recipe, step, ctx)


# ---------------------------------------------------------------------
# Dockerfile rendering
# ---------------------------------------------------------------------

def render(recipe: Recipe, step: Step) -> List[str]:
    if step.kind == "apt_update":
        # apt-get update exits 0 when only some mirrors fail; grep its output
        return [
            f"RUN apt-get update > {UPDATE_LOG} 2>&1; status=$?; cat {UPDATE_LOG}; \\\n"
            '    [ "$status" -eq 0 ] \\\n'
            f"    && ! grep -qE {shlex.quote(_FETCH_FAILED.pattern)} {UPDATE_LOG} \\\n"
            f"    && rm -f {UPDATE_LOG}"
        ]
    packages = " ".join(step.data.get("packages", []))
    return [f"RUN apt-get install -y --no-install-recommends {packages}"]
