# dockerfile.py
from __future__ import annotations

from pathlib import Path
from typing import List

from . import settings
from .errors import ConversionError, ImageBuildError, tool_unavailable
from .model import Recipe
from .shell import run_command
from .step_workflows import apt, build, publish, shell_step, source, toolchain
from .step_workflows.apt import APT_ENV

RENDERERS = {
    "sh": shell_step.render,
    "apt_update": apt.render,
    "apt_install": apt.render,
    "source": source.render,
    "toolchain": toolchain.render,
    "build": build.render,
    "publish": publish.render,
}


# ---------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------

def render_dockerfile(recipe: Recipe) -> str:
    """
    Render a recipe as a container build recipe: one RUN per step, PATH
    exported right after the toolchain install and again after publish.
    """
    lines: List[str] = [
        f"# generated by wbprov from recipe {recipe.name!r}",
        f"FROM {recipe.base_image}",
    ]
    env = {**APT_ENV, **recipe.env}
    lines.append("ENV " + " ".join(f'{k}="{v}"' for k, v in env.items()))
    lines.append(f"WORKDIR {recipe.workdir}")

    for step in recipe.steps:
        lines.append("")
        lines.append(f"# {step.name}")
        lines.extend(RENDERERS[step.kind](recipe, step))

    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------
# Image build / conversion
# ---------------------------------------------------------------------

def normalize_tag(tag: str) -> str:
    """docker-daemon:// sources need an explicit tag; default to :latest."""
    last = tag.rsplit("/", 1)[-1]
    if ":" not in last and "@" not in last:
        return f"{tag}:latest"
    return tag


def _check_available(tool: str) -> None:
    # run_command itself raises ToolUnavailableError when the binary is missing
    if not run_command([tool, "--version"]).ok:
        raise tool_unavailable(tool)


def build_image(recipe: Recipe, tag: str, *, docker: str | None = None) -> str:
    """`docker build` the rendered recipe (no build context). Returns the tag."""
    docker = docker or settings.DOCKER
    tag = normalize_tag(tag)
    _check_available(docker)

    result = run_command([docker, "build", "-t", tag, "-"], input_text=render_dockerfile(recipe))
    if not result.ok:
        raise ImageBuildError(
            step=None,
            message=f"docker build of {tag} failed",
            details={"exit_code": result.returncode, "tag": tag},
            output=result.tail(),
        )
    return tag


def convert_image(tag: str, output: str | Path, *, singularity: str | None = None) -> Path:
    """
    Manual conversion of a local docker image into a Singularity image:
        singularity build <output>.sif docker-daemon://<tag>
    """
    singularity = singularity or settings.SINGULARITY
    tag = normalize_tag(tag)
    out = Path(output)
    if out.suffix != ".sif":
        out = out.with_name(out.name + ".sif")
    _check_available(singularity)

    result = run_command([singularity, "build", str(out), f"docker-daemon://{tag}"])
    if not result.ok:
        raise ConversionError(
            step=None,
            message=f"singularity build from {tag} failed",
            details={
                "exit_code": result.returncode,
                "hint": "docker-daemon sources usually need root (sudo).",
            },
            output=result.tail(),
        )
    return out
