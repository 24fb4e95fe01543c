# step_workflows/source.py
from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import List

from ..context import StepContext
from ..errors import SourceFetchError
from ..git_facts.git import head_sha, is_repo
from ..model import Recipe, Step
from ..shell import CommandResult, run_command

_NETWORK_MARKERS = (
    "could not resolve host",
    "unable to access",
    "connection timed out",
    "connection refused",
    "network is unreachable",
    "failed to connect",
)
_UNAVAILABLE_MARKERS = (
    "couldn't find remote ref",
    "repository not found",
    "not found",
    "does not appear to be a git repository",
)


def classify_fetch_failure(output: str) -> str:
    """Return 'network', 'unavailable' or 'unknown' for a failed git fetch."""
    low = output.lower()
    if any(m in low for m in _NETWORK_MARKERS):
        return "network"
    if any(m in low for m in _UNAVAILABLE_MARKERS):
        return "unavailable"
    return "unknown"


def _fail(step: Step, message: str, result: CommandResult | None = None, **details) -> SourceFetchError:
    if result is not None:
        details.setdefault("exit_code", result.returncode)
    return SourceFetchError(
        step=step.name,
        message=message,
        details=details,
        output=result.tail() if result is not None else "",
    )


def _prepare_checkout(step: Step, dest: Path, url: str, ctx: StepContext) -> None:
    """Create (or reuse on rebuild) an empty repository pointing at `url`."""
    log = ctx.log_file(step)
    env = ctx.env()

    if dest.exists() and is_repo(dest):
        res = run_command(["git", "remote", "set-url", "origin", url], cwd=dest, env=env, step=step.name, log_file=log)
        if not res.ok:
            res = run_command(["git", "remote", "add", "origin", url], cwd=dest, env=env, step=step.name, log_file=log)
        if not res.ok:
            raise _fail(step, "could not configure remote on existing checkout", res)
        return

    if dest.exists() and any(dest.iterdir()):
        raise _fail(
            step,
            f"destination exists and is not a git checkout: {dest}",
            hint="Remove the directory or point the source step elsewhere.",
        )

    dest.mkdir(parents=True, exist_ok=True)
    res = run_command(["git", "init", "-q"], cwd=dest, env=env, step=step.name, log_file=log)
    if not res.ok:
        raise _fail(step, "git init failed", res)
    res = run_command(["git", "remote", "add", "origin", url], cwd=dest, env=env, step=step.name, log_file=log)
    if not res.ok:
        raise _fail(step, "could not add remote", res)


def run_step(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    url = step.data["url"]
    ref = step.data["ref"]
    commit = step.data.get("commit")
    dest = ctx.resolve(step.data["dest"])
    log = ctx.log_file(step)
    env = ctx.env({"GIT_TERMINAL_PROMPT": "0"})

    _prepare_checkout(step, dest, url, ctx)

    res = run_command(
        ["git", "fetch", "--depth", "1", "origin", ref],
        cwd=dest, env=env, step=step.name, log_file=log,
    )
    if not res.ok:
        reason = classify_fetch_failure(res.output)
        if reason == "network":
            message = f"could not reach {url}"
        elif reason == "unavailable":
            message = f"ref {ref!r} not available from {url}"
        else:
            message = f"git fetch of {ref!r} failed"
        raise _fail(step, message, res, reason=reason, url=url, ref=ref)

    res = run_command(
        ["git", "checkout", "--force", "--detach", "FETCH_HEAD"],
        cwd=dest, env=env, step=step.name, log_file=log,
    )
    if not res.ok:
        raise _fail(step, f"checkout of {ref!r} failed", res, ref=ref)

    try:
        sha = head_sha(dest)
    except subprocess.CalledProcessError as e:
        raise _fail(step, "could not read HEAD after checkout", exit_code=e.returncode) from e

    if commit and sha != commit:
        raise _fail(
            step,
            f"ref {ref!r} resolved to {sha}, expected pinned commit {commit}",
            reason="commit_mismatch",
            expected=commit,
            actual=sha,
        )


def apply(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    """A stamped fetch only counts while its checkout is still on disk."""
    dest = ctx.resolve(step.data["dest"])
    if not is_repo(dest):
        raise _fail(step, f"checkout is gone: {dest}", reason="checkout_missing", dest=str(dest))

    commit = step.data.get("commit")
    if not commit:
        return
    try:
        sha = head_sha(dest)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise _fail(step, f"could not read HEAD of {dest}", reason="checkout_unreadable") from e
    if sha != commit:
        raise _fail(
            step,
            f"checkout at {dest} is at {sha}, expected pinned commit {commit}",
            reason="commit_mismatch",
            expected=commit,
            actual=sha,
        )


# ---------------------------------------------------------------------
# Dockerfile rendering
# ---------------------------------------------------------------------

def render(recipe: Recipe, step: Step) -> List[str]:
    dest = shlex.quote(str(recipe.resolve(step.data["dest"])))
    url = shlex.quote(step.data["url"])
    ref = shlex.quote(step.data["ref"])
    parts = [
        f"git init -q {dest}",
        f"cd {dest}",
        f"git remote add origin {url}",
        f"git fetch --depth 1 origin {ref}",
        "git checkout --detach FETCH_HEAD",
    ]
    commit = step.data.get("commit")
    if commit:
        parts.append(f'test "$(git rev-parse HEAD)" = {shlex.quote(commit)}')
    return ["RUN " + " \\\n    && ".join(parts)]
