"""
Shared fixtures: a scripted stand-in for subprocess.run so no test touches
apt, git, cargo or docker on the host.
"""
import hashlib
import stat
import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from wbprov.ui.console import Console, set_console


class FakeRun:
    """Records every command and answers from the first matching rule."""

    def __init__(self):
        self.calls = []
        self.rules = []

    def on(self, match, returncode=0, stdout="", stderr="", effect=None):
        self.rules.append((match, returncode, stdout, stderr, effect))
        return self

    def _matches(self, match, argv):
        if callable(match):
            return match(argv)
        return argv[: len(match)] == list(match)

    def __call__(self, cmd, shell=False, cwd=None, env=None, text=True, capture_output=True, input=None):
        argv = cmd.split() if isinstance(cmd, str) else list(cmd)
        self.calls.append(SimpleNamespace(argv=argv, cmd=cmd, cwd=cwd, env=env, input=input))
        for match, rc, out, err, effect in self.rules:
            if self._matches(match, argv):
                if effect is not None:
                    effect(argv, cwd, env)
                return subprocess.CompletedProcess(cmd, rc, out, err)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def ran(self, prefix):
        return [c for c in self.calls if c.argv[: len(prefix)] == list(prefix)]


@pytest.fixture
def fake_run(monkeypatch):
    fr = FakeRun()
    monkeypatch.setattr("wbprov.shell.subprocess.run", fr)
    return fr


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))


def make_executable(path: Path, body: str = "#!/bin/sh\nexit 0\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def installer(tmp_path):
    """A local 'rustup-init' served over file:// plus its real digest."""
    p = make_executable(tmp_path / "dist" / "rustup-init", "#!/bin/sh\necho installing\n")
    digest = hashlib.sha256(p.read_bytes()).hexdigest()
    return SimpleNamespace(path=p, url=p.as_uri(), sha256=digest)


@pytest.fixture
def make_executable_fn():
    return make_executable

