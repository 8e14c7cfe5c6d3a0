"""
OneDrive Removal.

Stops and uninstalls the OneDrive sync client, then clears what it leaves
behind: Run entries, the Explorer navigation pane entry, scheduled tasks and
program folders. A policy value keeps it from being reinstalled per user.
Users' synced files are never deleted; their OneDrive folder is removed only
when it is empty.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import psutil

from winadmin.services.results import OperationResult
from winadmin.services.user_profiles import UserContext, get_user_contexts
from winadmin.utils import default_registry
from winadmin.utils.commands import CommandResult, run_command

logger = logging.getLogger(__name__)

PROCESS_NAME = "onedrive.exe"
RUN_KEY = r"Software\Microsoft\Windows\CurrentVersion\Run"
RUN_VALUE = "OneDrive"
NAMESPACE_CLSID = "{018D5C66-4533-4307-9B53-224DE2ED1FE6}"
NAMESPACE_KEYS = (
    rf"Software\Classes\CLSID\{NAMESPACE_CLSID}",
    rf"Software\Classes\Wow6432Node\CLSID\{NAMESPACE_CLSID}",
)
NAMESPACE_PIN_VALUE = "System.IsPinnedToNameSpaceTree"
POLICY_KEY = r"SOFTWARE\Policies\Microsoft\Windows\OneDrive"
POLICY_VALUE = "DisableFileSyncNGSC"
TASK_PREFIX = "OneDrive"
UNINSTALL_TIMEOUT = 300


class OneDriveRemover:
    """Remove the OneDrive client for the machine and every loaded user."""

    def __init__(
        self,
        registry=None,
        users: Optional[Callable[[], List[UserContext]]] = None,
        run: Callable[..., CommandResult] = run_command,
        scheduler=None,
        process_iter: Callable[..., Iterable] = psutil.process_iter,
        system_root: Optional[str] = None,
        program_data: Optional[str] = None,
    ):
        self.registry = registry or default_registry()
        self._users = users or (lambda: get_user_contexts(self.registry))
        self._run = run
        self._scheduler = scheduler
        self._process_iter = process_iter
        self.system_root = system_root or os.environ.get("SystemRoot", r"C:\Windows")
        self.program_data = program_data or os.environ.get("ProgramData", r"C:\ProgramData")

    @property
    def scheduler(self):
        if self._scheduler is None:
            from winadmin.services.task_scheduler_info import get_task_scheduler_info
            self._scheduler = get_task_scheduler_info()
        return self._scheduler

    def uninstaller_candidates(self) -> List[Path]:
        return [
            Path(self.system_root) / "System32" / "OneDriveSetup.exe",
            Path(self.system_root) / "SysWOW64" / "OneDriveSetup.exe",
        ]

    def stop_processes(self) -> int:
        """Kill running OneDrive.exe processes; returns how many were stopped."""
        stopped = 0
        for proc in self._process_iter(["name"]):
            try:
                if (proc.info.get("name") or "").lower() == PROCESS_NAME:
                    proc.kill()
                    stopped += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                logger.warning("Could not stop OneDrive process: %s", e)
        return stopped

    def run_uninstaller(self) -> tuple[bool, str]:
        for setup in self.uninstaller_candidates():
            if setup.is_file():
                result = self._run([str(setup), "/uninstall"], timeout=UNINSTALL_TIMEOUT)
                return result.ok, str(setup) if result.ok else result.message
        return True, "uninstaller not present"

    def clean_user(self, user: UserContext, result: OperationResult) -> None:
        """Per-user registry cleanup and leftover folders."""
        result.record(
            f"{user.label}: remove Run entry",
            self.registry.delete_value(user.hive, user.key(RUN_KEY), RUN_VALUE),
        )
        for key in NAMESPACE_KEYS:
            if self.registry.key_exists(user.hive, user.key(key)):
                result.record(
                    f"{user.label}: unpin Explorer entry",
                    self.registry.write_value(user.hive, user.key(key), NAMESPACE_PIN_VALUE, 0, "REG_DWORD"),
                )

        if user.local_appdata is not None:
            self._remove_tree(Path(user.local_appdata) / "Microsoft" / "OneDrive", result)
        if user.profile_path:
            self._remove_if_empty(Path(user.profile_path) / "OneDrive", result)

    def _remove_tree(self, path: Path, result: OperationResult) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
            result.record(f"Delete {path}", True)
        except OSError as e:
            result.record(f"Delete {path}", False, str(e))

    def _remove_if_empty(self, path: Path, result: OperationResult) -> None:
        if not path.is_dir():
            return
        if any(path.iterdir()):
            logger.info("Keeping %s: it still contains files", path)
            return
        try:
            path.rmdir()
            result.record(f"Delete empty {path}", True)
        except OSError as e:
            result.record(f"Delete empty {path}", False, str(e))

    def remove(self) -> OperationResult:
        result = OperationResult()

        try:
            result.record("Stop OneDrive", True, f"{self.stop_processes()} process(es) stopped")
        except Exception as e:
            result.record("Stop OneDrive", False, str(e))

        result.record("Run uninstaller", *self.run_uninstaller())

        for user in self._users():
            try:
                self.clean_user(user, result)
            except Exception as e:
                result.record(f"{user.label}: cleanup", False, str(e))

        try:
            deleted = self.scheduler.delete_tasks_matching(TASK_PREFIX)
            result.record("Delete scheduled tasks", True, f"{len(deleted)} removed")
        except Exception as e:
            result.record("Delete scheduled tasks", False, str(e))

        result.record(
            "Disable OneDrive sync policy",
            self.registry.write_value("HKLM", POLICY_KEY, POLICY_VALUE, 1, "REG_DWORD"),
        )

        self._remove_tree(Path(self.program_data) / "Microsoft OneDrive", result)
        return result

