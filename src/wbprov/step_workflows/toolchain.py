# step_workflows/toolchain.py
from __future__ import annotations

import hashlib
import shlex
import stat
import urllib.error
import urllib.request
from pathlib import Path
from typing import Dict, List
from urllib.parse import urlparse

from .. import settings
from ..context import StepContext
from ..errors import ChecksumMismatchError, ToolchainInstallError
from ..model import Recipe, Step
from ..shell import run_command

ALLOWED_SCHEMES = ("https", "file")
_CHUNK = 1024 * 1024


# ---------------------------------------------------------------------
# Download + verify
# ---------------------------------------------------------------------

def installer_name(url: str) -> str:
    return Path(urlparse(url).path).name or "installer"


def download(url: str, target: Path, *, step: str | None = None, timeout: int | None = None) -> str:
    """
    Stream `url` into `target` and return the sha256 hex digest of what was
    written. Nothing is executed here.
    """
    scheme = urlparse(url).scheme
    if scheme not in ALLOWED_SCHEMES:
        raise ToolchainInstallError(
            step=step,
            message=f"refusing to download installer over {scheme or 'unknown'}:// ({url})",
            details={"hint": "Use an https:// URL."},
        )

    target.parent.mkdir(parents=True, exist_ok=True)
    h = hashlib.sha256()
    try:
        with urllib.request.urlopen(url, timeout=timeout or settings.HTTP_TIMEOUT) as resp, target.open("wb") as f:
            while True:
                chunk = resp.read(_CHUNK)
                if not chunk:
                    break
                h.update(chunk)
                f.write(chunk)
    except urllib.error.HTTPError as e:
        target.unlink(missing_ok=True)
        raise ToolchainInstallError(
            step=step,
            message=f"installer download failed: HTTP {e.code} {e.reason}",
            details={"url": url},
        ) from e
    except (urllib.error.URLError, OSError) as e:
        target.unlink(missing_ok=True)
        reason = getattr(e, "reason", e)
        raise ToolchainInstallError(
            step=step,
            message=f"could not download installer: {reason}",
            details={"url": url},
        ) from e
    return h.hexdigest()


def verify(path: Path, expected: str, actual: str, *, step: str | None = None) -> None:
    if actual.lower() == expected.lower():
        return
    path.unlink(missing_ok=True)
    raise ChecksumMismatchError(
        step=step,
        message=f"installer checksum mismatch for {path.name}",
        details={
            "expected": expected,
            "actual": actual,
            "hint": "The pinned digest no longer matches the published installer; re-pin deliberately.",
        },
    )


# ---------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------

def homes(step: Step, ctx: StepContext) -> Dict[str, str]:
    return {k: str(ctx.resolve(v)) for k, v in (step.data.get("homes") or {}).items()}


def run_step(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    url = step.data["url"]
    expected = step.data.get("sha256")
    if not expected:
        raise ToolchainInstallError(
            step=step.name,
            message="toolchain installer has no pinned sha256",
            details={"hint": "Pin the installer digest in the recipe (e.g. WBPROV_RUSTUP_SHA256)."},
        )
    expected = str(expected)

    installer = ctx.state_dir / "downloads" / installer_name(url)
    actual = download(url, installer, step=step.name)
    verify(installer, expected, actual, step=step.name)

    installer.chmod(installer.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    try:
        env = ctx.env({**homes(step, ctx), **(step.data.get("env") or {})})
        result = run_command(
            [str(installer), *step.data.get("args", [])],
            env=env,
            step=step.name,
            log_file=ctx.log_file(step),
        )
    finally:
        installer.unlink(missing_ok=True)

    if not result.ok:
        raise ToolchainInstallError(
            step=step.name,
            message=f"installer exited with {result.returncode}",
            details={"exit_code": result.returncode, "version": step.data.get("version", "")},
            output=result.tail(),
        )

    bin_dir = ctx.resolve(step.data["bin_dir"])
    if not bin_dir.is_dir():
        raise ToolchainInstallError(
            step=step.name,
            message=f"installer finished but {bin_dir} does not exist",
            details={"bin_dir": str(bin_dir)},
            output=result.tail(),
        )


def apply(recipe: Recipe, step: Step, ctx: StepContext) -> None:
    """Expose the toolchain to every later step (also after a cached run)."""
    bin_path = ctx.resolve(step.data["bin_dir"])
    if not bin_path.is_dir():
        raise ToolchainInstallError(
            step=step.name,
            message=f"toolchain bin dir is gone: {bin_path}",
            details={"bin_dir": str(bin_path)},
        )
    bin_dir = str(bin_path)
    if bin_dir not in ctx.toolchain_dirs:
        ctx.toolchain_dirs.insert(0, bin_dir)
    ctx.toolchain_env.update(homes(step, ctx))


# ---------------------------------------------------------------------
# Dockerfile rendering
# ---------------------------------------------------------------------

def render(recipe: Recipe, step: Step) -> List[str]:
    url = step.data["url"]
    if urlparse(url).scheme != "https":
        raise ValueError(f"step {step.name!r}: only https installers can be rendered, got {url}")
    sha = step.data.get("sha256")
    if not sha:
        raise ValueError(f"step {step.name!r}: installer has no pinned sha256")

    tmp = f"/tmp/{installer_name(url)}"
    env_pairs = {k: str(recipe.resolve(v)) for k, v in (step.data.get("homes") or {}).items()}
    env_pairs.update(step.data.get("env") or {})
    prefix = " ".join(f"{k}={shlex.quote(v)}" for k, v in env_pairs.items())
    args = " ".join(shlex.quote(a) for a in step.data.get("args", []))
    run = " ".join(p for p in (prefix, tmp, args) if p)

    parts = [
        f"curl --proto '=https' --tlsv1.2 -sSfL -o {tmp} {shlex.quote(url)}",
        f'echo "{sha}  {tmp}" | sha256sum -c -',
        f"chmod +x {tmp}",
        run,
        f"rm -f {tmp}",
    ]
    lines = ["RUN " + " \\\n    && ".join(parts)]
    if env_pairs:
        lines.append("ENV " + " ".join(f'{k}="{v}"' for k, v in env_pairs.items()))
    bin_dir = recipe.resolve(step.data["bin_dir"])
    lines.append(f'ENV PATH="{bin_dir}:${{PATH}}"')
    return lines
