"""
Step-level tests: output classification and the error each step raises.
"""
from pathlib import Path

import pytest

from wbprov.context import StepContext
from wbprov.dsl import apt_install, apt_update, cargo_build, publish_path, recipe, rustup, sh, source, toolchain
from wbprov.errors import (
    BuildError,
    ChecksumMismatchError,
    PackageIndexError,
    PackageInstallError,
    PathPublishError,
    SourceFetchError,
    ToolchainInstallError,
    ToolUnavailableError,
)
from wbprov.step_workflows import apt, build, publish, shell_step
from wbprov.step_workflows import source as source_step
from wbprov.step_workflows import toolchain as toolchain_step

OTHER_SHA = "f" * 40


def _ctx(tmp_path, *steps, binary=None):
    r = recipe("t", *steps, workdir=str(tmp_path / "root"), binary=binary)
    (tmp_path / "root").mkdir(exist_ok=True)
    return r, StepContext(recipe=r, workdir=tmp_path / "root", state_dir=tmp_path / "state", inherited_path=[])


# ---------------------------------------------------------------------------
# apt
# ---------------------------------------------------------------------------
class TestApt:

    def test_index_failures_detected(self):
        out = (
            "Hit:1 http://archive.ubuntu.com/ubuntu focal InRelease\n"
            "W: Failed to fetch http://archive.ubuntu.com/ubuntu/dists/focal/InRelease  Temporary failure resolving\n"
            "W: Some index files failed to download. They have been ignored, or old ones used instead.\n"
        )
        assert len(apt.index_failures(out)) == 2

    def test_missing_packages_parsed(self):
        out = "E: Unable to locate package nosuchpkg\nE: Package 'oldpkg' has no installation candidate\n"
        assert apt.missing_packages(out) == ["nosuchpkg", "oldpkg"]

    def test_update_with_failed_fetch_but_zero_exit(self, tmp_path, fake_run):
        fake_run.on(["apt-get", "update"], 0, "", "W: Failed to fetch http://mirror/InRelease  Could not resolve\n")
        r, ctx = _ctx(tmp_path, apt_update())
        with pytest.raises(PackageIndexError) as exc_info:
            apt.run_step(r, r.steps[0], ctx)
        assert exc_info.value.details["failed_fetches"] == 1
        assert exc_info.value.category == "network"

    def test_update_as_non_root_has_hint(self, tmp_path, fake_run):
        fake_run.on(["apt-get", "update"], 100, "", "E: Could not open lock file - open (13: Permission denied)\n")
        r, ctx = _ctx(tmp_path, apt_update())
        with pytest.raises(PackageIndexError) as exc_info:
            apt.run_step(r, r.steps[0], ctx)
        assert "root" in exc_info.value.hint

    def test_update_runs_noninteractive(self, tmp_path, fake_run):
        r, ctx = _ctx(tmp_path, apt_update())
        apt.run_step(r, r.steps[0], ctx)
        assert fake_run.calls[0].env["DEBIAN_FRONTEND"] == "noninteractive"

    def test_install_missing_package(self, tmp_path, fake_run):
        fake_run.on(["apt-get", "install"], 100, "", "E: Unable to locate package nosuchpkg\n")
        r, ctx = _ctx(tmp_path, apt_install("git", "nosuchpkg"))
        with pytest.raises(PackageInstallError) as exc_info:
            apt.run_step(r, r.steps[0], ctx)
        assert exc_info.value.details["missing"] == "nosuchpkg"
        assert fake_run.calls[0].argv == ["apt-get", "install", "-y", "--no-install-recommends", "git", "nosuchpkg"]

    def test_install_conflict(self, tmp_path, fake_run):
        fake_run.on(["apt-get", "install"], 100, "The following packages have unmet dependencies:\n", "")
        r, ctx = _ctx(tmp_path, apt_install("git"))
        with pytest.raises(PackageInstallError, match="dependency conflict"):
            apt.run_step(r, r.steps[0], ctx)

    def test_missing_apt_get(self, tmp_path, monkeypatch):
        def boom(*a, **kw):
            raise FileNotFoundError("apt-get")
        monkeypatch.setattr("wbprov.shell.subprocess.run", boom)
        r, ctx = _ctx(tmp_path, apt_update())
        with pytest.raises(ToolUnavailableError):
            apt.run_step(r, r.steps[0], ctx)


# ---------------------------------------------------------------------------
# source
# ---------------------------------------------------------------------------
class TestSource:

    @pytest.fixture(autouse=True)
    def no_real_git(self, monkeypatch):
        monkeypatch.setattr(source_step, "is_repo", lambda p: (Path(p) / ".git").is_dir())
        monkeypatch.setattr(source_step, "head_sha", lambda dest: OTHER_SHA)

    def test_classify(self):
        assert source_step.classify_fetch_failure("fatal: unable to access 'x': Could not resolve host: github.com") == "network"
        assert source_step.classify_fetch_failure("fatal: couldn't find remote ref v9.9.9") == "unavailable"
        assert source_step.classify_fetch_failure("boom") == "unknown"

    def test_fetches_pinned_ref(self, tmp_path, fake_run):
        r, ctx = _ctx(tmp_path, source("https://h/repo.git", ref="v2.4.0", dest="repo"))
        source_step.run_step(r, r.steps[0], ctx)

        argvs = [c.argv for c in fake_run.calls]
        assert ["git", "fetch", "--depth", "1", "origin", "v2.4.0"] in argvs
        assert ["git", "checkout", "--force", "--detach", "FETCH_HEAD"] in argvs
        assert (tmp_path / "root" / "repo").is_dir()
        assert fake_run.ran(["git", "fetch"])[0].env["GIT_TERMINAL_PROMPT"] == "0"

    def test_missing_ref_is_unavailable(self, tmp_path, fake_run):
        fake_run.on(["git", "fetch"], 128, "", "fatal: couldn't find remote ref v9.9.9\n")
        r, ctx = _ctx(tmp_path, source("https://h/repo.git", ref="v9.9.9", dest="repo"))
        with pytest.raises(SourceFetchError) as exc_info:
            source_step.run_step(r, r.steps[0], ctx)
        assert exc_info.value.details["reason"] == "unavailable"
        assert not fake_run.ran(["git", "checkout"])

    def test_commit_mismatch(self, tmp_path, fake_run):
        pinned = "a" * 40
        r, ctx = _ctx(tmp_path, source("https://h/repo.git", ref="v2.4.0", commit=pinned, dest="repo"))
        with pytest.raises(SourceFetchError) as exc_info:
            source_step.run_step(r, r.steps[0], ctx)
        assert exc_info.value.details["reason"] == "commit_mismatch"
        assert exc_info.value.details["actual"] == OTHER_SHA

    def test_refuses_non_repo_destination(self, tmp_path, fake_run):
        r, ctx = _ctx(tmp_path, source("https://h/repo.git", ref="v1", dest="repo"))
        (tmp_path / "root" / "repo").mkdir()
        (tmp_path / "root" / "repo" / "stray.txt").write_text("x")
        with pytest.raises(SourceFetchError, match="not a git checkout"):
            source_step.run_step(r, r.steps[0], ctx)
        assert fake_run.calls == []

    def test_reuses_existing_checkout(self, tmp_path, fake_run):
        r, ctx = _ctx(tmp_path, source("https://h/repo.git", ref="v1", dest="repo"))
        (tmp_path / "root" / "repo" / ".git").mkdir(parents=True)
        source_step.run_step(r, r.steps[0], ctx)
        assert not fake_run.ran(["git", "init"])
        assert fake_run.ran(["git", "remote", "set-url", "origin", "https://h/repo.git"])

    def test_cached_checkout_must_exist(self, tmp_path):
        r, ctx = _ctx(tmp_path, source("https://h/repo.git", ref="v1", dest="repo"))
        with pytest.raises(SourceFetchError) as exc_info:
            source_step.apply(r, r.steps[0], ctx)
        assert exc_info.value.details["reason"] == "checkout_missing"

        (tmp_path / "root" / "repo" / ".git").mkdir(parents=True)
        source_step.apply(r, r.steps[0], ctx)

    def test_cached_checkout_must_match_pinned_commit(self, tmp_path):
        r, ctx = _ctx(tmp_path, source("https://h/repo.git", ref="v1", commit="a" * 40, dest="repo"))
        (tmp_path / "root" / "repo" / ".git").mkdir(parents=True)
        with pytest.raises(SourceFetchError) as exc_info:
            source_step.apply(r, r.steps[0], ctx)
        assert exc_info.value.details["reason"] == "commit_mismatch"
        assert exc_info.value.details["actual"] == OTHER_SHA


# ---------------------------------------------------------------------------
# toolchain
# ---------------------------------------------------------------------------
class TestToolchain:

    def test_checksum_mismatch_never_executes(self, tmp_path, fake_run, installer):
        step = toolchain(installer.url, sha256="0" * 64, version="1.77.2", bin_dir=".cargo/bin")
        r, ctx = _ctx(tmp_path, step)
        with pytest.raises(ChecksumMismatchError) as exc_info:
            toolchain_step.run_step(r, r.steps[0], ctx)

        err = exc_info.value
        assert isinstance(err, ToolchainInstallError)
        assert err.category == "integrity"
        assert err.details["actual"] == installer.sha256
        assert fake_run.calls == []
        assert not (tmp_path / "state" / "downloads" / "rustup-init").exists()

    def test_missing_checksum_refused(self, tmp_path, fake_run, installer):
        step = toolchain(installer.url, sha256=None, version="1", bin_dir=".cargo/bin")
        r, ctx = _ctx(tmp_path, step)
        with pytest.raises(ToolchainInstallError, match="no pinned sha256"):
            toolchain_step.run_step(r, r.steps[0], ctx)

    def test_plain_http_refused(self, tmp_path):
        with pytest.raises(ToolchainInstallError, match="refusing"):
            toolchain_step.download("http://example.invalid/rustup-init", tmp_path / "x")

    def test_unreachable_download(self, tmp_path):
        missing = (tmp_path / "nope" / "rustup-init").as_uri()
        with pytest.raises(ToolchainInstallError, match="could not download"):
            toolchain_step.download(missing, tmp_path / "dl" / "rustup-init")

    def test_runs_verified_installer_with_homes(self, tmp_path, fake_run, installer, make_executable_fn):
        fake_run.on(
            lambda argv: argv[0].endswith("rustup-init"),
            effect=lambda argv, cwd, env: make_executable_fn(tmp_path / "root" / ".cargo" / "bin" / "cargo"),
        )
        step = rustup("1.77.2", sha256=installer.sha256)
        step.data["url"] = installer.url
        r, ctx = _ctx(tmp_path, step)

        toolchain_step.run_step(r, r.steps[0], ctx)
        toolchain_step.apply(r, r.steps[0], ctx)

        call = fake_run.calls[0]
        assert call.argv[1:] == ["-y", "--no-modify-path", "--profile", "minimal", "--default-toolchain", "1.77.2"]
        assert call.env["CARGO_HOME"] == str(tmp_path / "root" / ".cargo")
        assert call.env["RUSTUP_HOME"] == str(tmp_path / "root" / ".rustup")
        assert ctx.toolchain_dirs == [str(tmp_path / "root" / ".cargo" / "bin")]
        assert not Path(call.argv[0]).exists()

    def test_apply_requires_bin_dir(self, tmp_path, make_executable_fn):
        step = toolchain("https://h/i", sha256="b" * 64, version="1", bin_dir=".cargo/bin")
        r, ctx = _ctx(tmp_path, step)
        with pytest.raises(ToolchainInstallError, match="bin dir is gone"):
            toolchain_step.apply(r, r.steps[0], ctx)
        assert ctx.toolchain_dirs == []

        make_executable_fn(tmp_path / "root" / ".cargo" / "bin" / "cargo")
        toolchain_step.apply(r, r.steps[0], ctx)
        assert ctx.toolchain_dirs == [str(tmp_path / "root" / ".cargo" / "bin")]

    def test_installer_failure(self, tmp_path, fake_run, installer):
        fake_run.on(lambda argv: argv[0].endswith("rustup-init"), 1, "", "error: could not download toolchain\n")
        step = toolchain(installer.url, sha256=installer.sha256, version="1", bin_dir=".cargo/bin")
        r, ctx = _ctx(tmp_path, step)
        with pytest.raises(ToolchainInstallError, match="exited with 1"):
            toolchain_step.run_step(r, r.steps[0], ctx)


# ---------------------------------------------------------------------------
# build / publish / sh
# ---------------------------------------------------------------------------
class TestBuildAndPublish:

    def test_build_without_cargo_on_path(self, tmp_path, fake_run):
        r, ctx = _ctx(tmp_path, cargo_build("src", binary="tool"))
        (tmp_path / "root" / "src").mkdir()
        with pytest.raises(ToolUnavailableError):
            build.run_step(r, r.steps[0], ctx)
        assert fake_run.calls == []

    def test_build_without_source_tree(self, tmp_path):
        r, ctx = _ctx(tmp_path, cargo_build("src", binary="tool"))
        with pytest.raises(BuildError, match="source tree not found"):
            build.run_step(r, r.steps[0], ctx)

    def test_build_succeeds_but_artifact_missing(self, tmp_path, fake_run, make_executable_fn):
        r, ctx = _ctx(tmp_path, cargo_build("src", binary="tool"))
        (tmp_path / "root" / "src").mkdir()
        make_executable_fn(tmp_path / "bin" / "cargo")
        ctx.toolchain_dirs.append(str(tmp_path / "bin"))
        with pytest.raises(BuildError, match="artifact is missing"):
            build.run_step(r, r.steps[0], ctx)

    def test_artifact_not_executable(self, tmp_path):
        f = tmp_path / "tool"
        f.write_text("data")
        f.chmod(0o644)
        with pytest.raises(BuildError, match="not executable"):
            build.check_artifact(cargo_build("src", binary="tool"), f)

    def test_publish_rejects_shadowed_binary(self, tmp_path, make_executable_fn):
        old = make_executable_fn(tmp_path / "old" / "tool")
        fresh = make_executable_fn(tmp_path / "root" / "src" / "target" / "release" / "tool")
        (tmp_path / "root" / "elsewhere").mkdir()
        r, ctx = _ctx(tmp_path, publish_path("elsewhere"), binary="tool")
        ctx.inherited_path = [str(old.parent)]
        ctx.artifacts.append(fresh)

        with pytest.raises(PathPublishError) as exc_info:
            publish.run_step(r, r.steps[0], ctx)
        assert exc_info.value.details["resolved"] == str(old)
        assert not (tmp_path / "state" / "env.sh").exists()

    def test_publish_missing_directory(self, tmp_path):
        r, ctx = _ctx(tmp_path, publish_path("nope"))
        with pytest.raises(PathPublishError, match="missing directory"):
            publish.run_step(r, r.steps[0], ctx)

    def test_publish_puts_output_dir_first(self, tmp_path, make_executable_fn):
        fresh = make_executable_fn(tmp_path / "root" / "out" / "tool")
        r, ctx = _ctx(tmp_path, publish_path("out"), binary="tool")
        ctx.inherited_path = ["/usr/bin"]
        ctx.toolchain_dirs.append("/opt/cargo/bin")
        ctx.artifacts.append(fresh)

        publish.run_step(r, r.steps[0], ctx)

        assert ctx.search_path == [str(fresh.parent), "/opt/cargo/bin", "/usr/bin"]
        assert (tmp_path / "state" / "env.sh").exists()

    def test_sh_step_error_kind(self, tmp_path, fake_run):
        fake_run.on(lambda argv: True, 2, "", "nope\n")
        r, ctx = _ctx(tmp_path, sh("Fetch", "curl -sSf https://x", error_kind="source_fetch"))
        with pytest.raises(SourceFetchError):
            shell_step.run_step(r, r.steps[0], ctx)

    def test_sh_step_defaults_to_build_error(self, tmp_path, fake_run):
        fake_run.on(lambda argv: True, 2)
        r, ctx = _ctx(tmp_path, sh("Make", "make all"))
        with pytest.raises(BuildError):
            shell_step.run_step(r, r.steps[0], ctx)
        assert fake_run.calls[0].cmd == "make all"
