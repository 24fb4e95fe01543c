# src/wbprov/dsl.py
from __future__ import annotations

import posixpath
import re
from typing import Dict, List, Optional, Sequence

from .model import Recipe, Step

_SHA256 = re.compile(r"^[0-9a-fA-F]{64}$")
_COMMIT = re.compile(r"^[0-9a-f]{40}$")

RUSTUP_ARCHIVE = "https://static.rust-lang.org/rustup/archive"
DEFAULT_RUSTUP_VERSION = "1.27.1"
DEFAULT_TARGET = "x86_64-unknown-linux-gnu"


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, error_kind: str | None = None) -> Step:
    """Create a shell step."""
    data = {"error_kind": error_kind} if error_kind else {}
    return Step(name=name, kind="sh", run=cmd, cwd=cwd, data=data)


def apt_update(name: str = "Refresh package index") -> Step:
    return Step(name=name, kind="apt_update")


def apt_install(*packages: str, name: str = "Install toolchain packages") -> Step:
    if not packages:
        raise ValueError(f"apt_install({name!r}) needs at least one package")
    return Step(name=name, kind="apt_install", data={"packages": list(packages)})


def source(
    url: str,
    *,
    ref: str,
    dest: str,
    commit: str | None = None,
    name: str = "Fetch source",
) -> Step:
    """
    Pinned source fetch. `ref` may be a tag, branch or commit; `commit`
    (full SHA) is checked against what `ref` resolved to.
    """
    if not ref or not ref.strip():
        raise ValueError(f"source({url!r}) needs a pinned ref (tag, branch or commit)")
    if commit is not None and not _COMMIT.match(commit):
        raise ValueError(f"source({url!r}): commit must be a full 40-character sha, got {commit!r}")
    data = {"url": url, "ref": ref.strip(), "dest": dest}
    if commit:
        data["commit"] = commit
    return Step(name=name, kind="source", data=data)


def toolchain(
    url: str,
    *,
    sha256: str | None,
    version: str,
    bin_dir: str,
    homes: Optional[Dict[str, str]] = None,
    args: Sequence[str] = (),
    env: Optional[Dict[str, str]] = None,
    name: str = "Install language toolchain",
) -> Step:
    """
    Checksum-verified installer download. An empty `sha256` is accepted at
    authoring time so plans can be rendered, but the step refuses to run.
    """
    if sha256 and not _SHA256.match(sha256):
        raise ValueError(f"toolchain({name!r}): sha256 must be 64 hex characters")
    return Step(
        name=name,
        kind="toolchain",
        data={
            "url": url,
            "sha256": (sha256 or "").lower(),
            "version": version,
            "bin_dir": bin_dir,
            "homes": dict(homes or {}),
            "args": list(args),
            "env": dict(env or {}),
        },
    )


def rustup(
    version: str,
    *,
    sha256: str | None,
    rustup_version: str = DEFAULT_RUSTUP_VERSION,
    target: str = DEFAULT_TARGET,
    home: str = ".",
    name: str = "Install Rust toolchain",
) -> Step:
    """rustup-init from the versioned archive, no shell profile edits."""
    url = f"{RUSTUP_ARCHIVE}/{rustup_version}/{target}/rustup-init"
    cargo_home = posixpath.join(home, ".cargo")
    return toolchain(
        url,
        sha256=sha256,
        version=version,
        bin_dir=posixpath.join(cargo_home, "bin"),
        homes={"CARGO_HOME": cargo_home, "RUSTUP_HOME": posixpath.join(home, ".rustup")},
        args=["-y", "--no-modify-path", "--profile", "minimal", "--default-toolchain", version],
        name=name,
    )


def cargo_build(
    src: str,
    *,
    binary: str,
    profile: str = "release",
    name: str = "Release build",
) -> Step:
    command = ["cargo", "build", "--release"] if profile == "release" else ["cargo", "build", "--profile", profile]
    out_dir = "debug" if profile == "dev" else profile
    return Step(
        name=name,
        kind="build",
        data={
            "src": src,
            "command": command,
            "binary": binary,
            "artifact": posixpath.join(src, "target", out_dir, binary),
            "output_dir": posixpath.join(src, "target", out_dir),
        },
    )


def publish_path(*dirs: str, name: str = "Publish search path") -> Step:
    if not dirs:
        raise ValueError(f"publish_path({name!r}) needs at least one directory")
    return Step(name=name, kind="publish", data={"dirs": list(dirs)})


# ---------------------------------------------------------------------
# Functional recipe helper
# ---------------------------------------------------------------------

def recipe(
    name: str,
    *steps: Step,
    steps_list: Optional[List[Step]] = None,
    base_image: str = "ubuntu:20.04",
    workdir: str = "/root",
    binary: str | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Recipe:
    steps_final: List[Step] = list(steps_list or []) + list(steps)
    if not steps_final:
        raise ValueError(f"recipe({name!r}) must have at least one step")
    return Recipe(
        name=name,
        steps=steps_final,
        base_image=base_image,
        workdir=workdir,
        binary=binary,
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class RecipeBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._base_image = "ubuntu:20.04"
        self._workdir = "/root"
        self._binary: str | None = None
        self._env: dict[str, str] = {}

    def from_image(self, image: str):
        self._base_image = image
        return self

    def in_dir(self, workdir: str):
        self._workdir = workdir
        return self

    def exposes(self, binary: str):
        self._binary = binary
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def step(self, *steps: Step):
        self._steps.extend(steps)
        return self

    def build(self) -> Recipe:
        if not self._steps:
            raise ValueError(f"Recipe '{self.name}' has no steps")
        return Recipe(
            name=self.name,
            steps=list(self._steps),
            base_image=self._base_image,
            workdir=self._workdir,
            binary=self._binary,
            env=dict(self._env),
        )


def build(name: str) -> RecipeBuilder:
    """Convenience: build('whitebox').step(apt_update()).build()"""
    return RecipeBuilder(name)
