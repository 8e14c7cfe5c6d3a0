"""Subprocess helpers for invoking Windows command-line tools."""

import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)

# Keep console windows from flashing up when run from a scheduled task
_CREATION_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == "win32" else 0

DEFAULT_TIMEOUT = 60


@dataclass
class CommandResult:
    """Outcome of an external command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def message(self) -> str:
        """Best single-line description of the output, for logging."""
        text = self.stderr.strip() or self.stdout.strip()
        return text.splitlines()[0] if text else f"exit code {self.returncode}"

    def lines(self) -> list[str]:
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


def run_command(args: Sequence[str], timeout: int = DEFAULT_TIMEOUT) -> CommandResult:
    """Run a command and capture its output.

    Timeouts and missing executables are reported as failed results rather
    than raised, so callers can log them and move on.
    """
    logger.debug("Running: %s", " ".join(args))
    try:
        result = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            creationflags=_CREATION_FLAGS,
        )
        return CommandResult(result.returncode, result.stdout or "", result.stderr or "")
    except subprocess.TimeoutExpired:
        return CommandResult(-1, "", f"{args[0]} timed out after {timeout}s")
    except OSError as e:
        return CommandResult(-1, "", f"{args[0]} could not be started: {e}")


def run_powershell(script: str, timeout: int = DEFAULT_TIMEOUT) -> CommandResult:
    """Run a PowerShell snippet without profile or prompts."""
    return run_command(
        [
            "powershell.exe",
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", script,
        ],
        timeout=timeout,
    )
