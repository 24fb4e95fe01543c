# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar


TOOL_HINTS = {
    "apt-get": "Run on a Debian/Ubuntu host or inside the recipe's base image.",
    "git": "Install git (e.g., apt-get install git) or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "singularity": "Install Singularity/Apptainer; conversion needs root (sudo).",
    "cargo": "The toolchain step must run before the build step.",
}


@dataclass(eq=False)
class ProvisionError(Exception):
    """
    Structured provisioning error with enough context for:
      - clean CLI output
      - telling network, dependency and compilation failures apart
      - debugging without full tracebacks
    """
    step: str | None
    message: str
    details: dict = field(default_factory=dict)
    output: str = ""

    kind: ClassVar[str] = "step_crashed"
    category: ClassVar[str] = "environment"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    @property
    def hint(self) -> str | None:
        return self.details.get("hint")


class PackageIndexError(ProvisionError):
    kind = "package_index"
    category = "network"


class PackageInstallError(ProvisionError):
    kind = "package_install"
    category = "dependency"


class SourceFetchError(ProvisionError):
    kind = "source_fetch"
    category = "network"


class ToolchainInstallError(ProvisionError):
    kind = "toolchain_install"
    category = "network"


class ChecksumMismatchError(ToolchainInstallError):
    kind = "checksum_mismatch"
    category = "integrity"


class BuildError(ProvisionError):
    kind = "build"
    category = "compilation"


class PathPublishError(ProvisionError):
    kind = "path_publish"
    category = "configuration"


class ToolUnavailableError(ProvisionError):
    kind = "tool_unavailable"
    category = "environment"


class ImageBuildError(ProvisionError):
    kind = "image_build"
    category = "compilation"


class ConversionError(ProvisionError):
    kind = "conversion"
    category = "environment"


ERRORS_BY_KIND: dict[str, type[ProvisionError]] = {
    cls.kind: cls
    for cls in (
        ProvisionError,
        PackageIndexError,
        PackageInstallError,
        SourceFetchError,
        ToolchainInstallError,
        ChecksumMismatchError,
        BuildError,
        PathPublishError,
        ToolUnavailableError,
        ImageBuildError,
        ConversionError,
    )
}


def tool_unavailable(tool: str, step: str | None = None) -> ToolUnavailableError:
    hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
    return ToolUnavailableError(
        step=step,
        message=f"{tool} is not available",
        details={"tool": tool, "hint": hint},
    )
