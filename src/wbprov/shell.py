# shell.py
# Single place where provisioning steps spawn processes, so every step gets
# the same env merging, output capture and log persistence.

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from . import settings
from .errors import tool_unavailable


@dataclass
class CommandResult:
    argv: Union[str, List[str]]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout or "") + (self.stderr or "")

    def tail(self, limit: int | None = None) -> str:
        limit = settings.OUTPUT_TAIL if limit is None else limit
        return self.output[-limit:]

    def display(self) -> str:
        if isinstance(self.argv, str):
            return self.argv
        return " ".join(self.argv)


def build_env(base: Optional[Dict[str, str]] = None, extra: Optional[Dict[str, str]] = None,
              path: Optional[List[str]] = None) -> Dict[str, str]:
    """Merge os.environ + recipe env + step env; `path` replaces PATH when given."""
    env = dict(os.environ if base is None else base)
    env.update(extra or {})
    if path is not None:
        env["PATH"] = os.pathsep.join(path)
    return env


def run_command(
    argv: Union[str, Sequence[str]],
    *,
    cwd: str | Path | None = None,
    env: Optional[Dict[str, str]] = None,
    step: str | None = None,
    log_file: Path | None = None,
    input_text: str | None = None,
) -> CommandResult:
    """
    Run a command to completion and capture its output.

    A string argv runs through the shell; a sequence runs directly. A missing
    executable is reported as ToolUnavailableError instead of a bare OSError.
    """
    shell = isinstance(argv, str)
    cmd: Union[str, List[str]] = argv if shell else list(argv)

    if cwd is not None and not Path(cwd).exists():
        raise FileNotFoundError(f"step '{step}' cwd not found: {cwd}")

    try:
        proc = subprocess.run(
            cmd,
            shell=shell,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            text=True,
            capture_output=True,
            input=input_text,
        )
    except FileNotFoundError:
        tool = cmd.split()[0] if shell else cmd[0]
        raise tool_unavailable(tool, step=step)

    result = CommandResult(
        argv=cmd,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with log_file.open("a", encoding="utf-8") as f:
            f.write(f"$ {result.display()}\n")
            f.write(result.output)
            f.write(f"\n[exit={result.returncode}]\n")

    return result
