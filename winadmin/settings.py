"""Fixed locations shared by the tools.

Everything lives under %ProgramData%\\WinAdminTools unless WINADMIN_HOME
points somewhere else.
"""

import os
import tempfile
from pathlib import Path

APP_NAME = "WinAdminTools"

# Registry key holding per-machine tracking metadata (HKLM)
TRACKING_KEY = r"SOFTWARE\WinAdminTools"


def base_dir() -> Path:
    override = os.environ.get("WINADMIN_HOME")
    if override:
        return Path(override)
    program_data = os.environ.get("ProgramData")
    if program_data:
        return Path(program_data) / APP_NAME
    return Path(tempfile.gettempdir()) / APP_NAME


def log_dir() -> Path:
    return base_dir() / "Logs"


def log_path(tool: str) -> Path:
    return log_dir() / f"{tool}.log"


def vpn_backup_dir() -> Path:
    return base_dir() / "VpnBackups"
