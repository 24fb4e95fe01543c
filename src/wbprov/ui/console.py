"""Console output for provisioning runs.

Progress goes to stdout, errors to stderr. Raw tool output and stack traces
are only shown with --debug; the per-step log files always have them.
"""

from __future__ import annotations

import sys
from collections import Counter
from typing import Optional

from ..errors import ProvisionError

_STATUS_LABELS = {
    "ok": "OK",
    "cached": "CACHED",
    "failed": "FAILED",
    "not_run": "NOT RUN",
    "planned": "PLANNED",
}


class Console:
    """Formats everything a provisioning run shows the user."""

    def __init__(self, debug: bool = False):
        """
        Args:
            debug: also print failure details, tool output tails and
                   tracebacks
        """
        self.debug = debug

    def _err(self, line: str = "") -> None:
        print(line, file=sys.stderr)

    # ------------------------------------------------------------------
    # progress
    # ------------------------------------------------------------------

    def print_header(self, title: str) -> None:
        print(f"\n== {title} ==")

    def print_run_started(self, recipe: str, step_count: int, workdir: str) -> None:
        print(f"\nprovisioning '{recipe}': {step_count} step(s) in {workdir}\n")

    def print_step(self, name: str) -> None:
        print(f"-> {name}")

    def print_step_status(self, name: str, status: str, reason: Optional[str] = None) -> None:
        label = _STATUS_LABELS.get(status, status.upper())
        print(f"   {label}" + (f" ({reason})" if reason else ""))

    def print_plan_step(self, name: str, kind: str) -> None:
        print(f"  {name} [{kind}]")

    def print_failure(self, error: ProvisionError) -> None:
        """
        Show which step failed and why.

        Only the first line of the message is printed; details other than the
        exit code and hint, plus the tool output tail, need debug mode.
        """
        first_line = error.message.splitlines()[0] if error.message else "unknown error"
        print(f"\nSTEP FAILED: {error.step or '?'}")
        print(f"  {error.kind} ({error.category}): {first_line}")
        if error.details.get("exit_code") is not None:
            print(f"  exit code: {error.details['exit_code']}")
        if error.hint:
            print(f"  hint: {error.hint}")
        if not self.debug:
            return
        for k, v in error.details.items():
            if k not in ("exit_code", "hint"):
                print(f"  {k}={v}")
        if error.output:
            print("  --- output (tail) ---")
            print(error.output.rstrip())
            print("  ---------------------")

    def print_results(self, results: dict[str, str]) -> None:
        width = max((len(name) for name in results), default=0)
        print("\nRESULTS")
        for name, status in results.items():
            print(f"  {name.ljust(width)}  {_STATUS_LABELS.get(status, status.upper())}")
        counts = Counter(results.values())
        print("  " + ", ".join(f"{n} {status}" for status, n in counts.items()))

    def print_search_path(self, binary: Optional[str], artifact: Optional[str], env_file: Optional[str]) -> None:
        if binary and artifact:
            print(f"\n{binary} -> {artifact}")
        if env_file:
            print(f"Activate with: . {env_file}")

    # ------------------------------------------------------------------
    # errors and diagnostics
    # ------------------------------------------------------------------

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print a user-facing error that is not tied to a step.

        Args:
            title: short headline
            message: what went wrong
            details: extra lines, printed indented
            suggestion: what to try next
        """
        self._err(f"\nERROR: {title}")
        self._err(message)
        for line in details or []:
            self._err(f"  {line}")
        if suggestion:
            self._err(f"\n{suggestion}")

    def print_exception(self, exc: Exception) -> None:
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
            return
        self._err(f"Error: {type(exc).__name__}: {exc}")

    def print_info(self, message: str) -> None:
        print(message)

    def print_debug(self, message: str) -> None:
        if self.debug:
            self._err(f"[debug] {message}")


_console: Optional[Console] = None


def get_console() -> Console:
    """Return the process-wide console, creating a non-debug one on first use."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
