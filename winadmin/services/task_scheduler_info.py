"""Task Scheduler Service - Interface to Windows Task Scheduler via COM and schtasks."""

import logging
from typing import List, Dict, Optional

import pythoncom
import win32com.client

from winadmin.utils.commands import run_command

logger = logging.getLogger(__name__)

SCHEDULE_TYPES = ("ONLOGON", "ONSTART", "ONIDLE", "ONCE", "DAILY", "WEEKLY", "MONTHLY")


def _split_task_path(task_path: str) -> tuple[str, str]:
    """Split '\\Folder\\Name' into ('\\Folder', 'Name')."""
    if "\\" in task_path:
        folder, name = task_path.rsplit("\\", 1)
        return folder or "\\", name
    return "\\", task_path


class TaskSchedulerInfo:
    """Interface to Windows Task Scheduler using COM (Schedule.Service)."""

    def _connect(self) -> win32com.client.CDispatch:
        """Connect to the Task Scheduler service."""
        pythoncom.CoInitialize()
        scheduler = win32com.client.Dispatch("Schedule.Service")
        scheduler.Connect()
        return scheduler

    def get_all_tasks(self) -> List[Dict]:
        """Get all scheduled tasks via COM."""
        tasks = []
        try:
            scheduler = self._connect()
            root = scheduler.GetFolder("\\")
            self._enumerate_folder(root, tasks)
        except Exception as e:
            logger.warning("Failed to enumerate tasks: %s", e)
        return tasks

    def _enumerate_folder(self, folder: win32com.client.CDispatch, tasks: List[Dict]) -> None:
        """Recursively enumerate tasks in a folder."""
        try:
            for task in folder.GetTasks(0):  # 0 = include hidden tasks
                try:
                    _, short_name = _split_task_path(task.Path)
                    if short_name:
                        tasks.append({
                            "name": task.Path,
                            "short_name": short_name,
                        })
                except Exception:
                    continue

            for subfolder in folder.GetFolders(0):
                self._enumerate_folder(subfolder, tasks)
        except Exception as e:
            logger.debug("Error enumerating folder: %s", e)

    def delete_task(self, task_path: str) -> bool:
        """Delete a scheduled task."""
        try:
            scheduler = self._connect()
            folder_path, task_name = _split_task_path(task_path)
            folder = scheduler.GetFolder(folder_path)
            folder.DeleteTask(task_name, 0)
            return True
        except Exception as e:
            logger.warning("Failed to delete task '%s': %s", task_path, e)
            return False

    def delete_tasks_matching(self, prefix: str) -> List[str]:
        """Delete every task whose short name starts with prefix (case-insensitive).

        Returns:
            Full paths of the tasks that were deleted
        """
        deleted = []
        for task in self.get_all_tasks():
            if task["short_name"].lower().startswith(prefix.lower()):
                if self.delete_task(task["name"]):
                    logger.info("Deleted scheduled task %s", task["name"])
                    deleted.append(task["name"])
        return deleted

    def task_exists(self, task_path: str) -> bool:
        try:
            scheduler = self._connect()
            folder_path, task_name = _split_task_path(task_path)
            scheduler.GetFolder(folder_path).GetTask(task_name)
            return True
        except Exception:
            return False

    def create_task(
        self,
        task_name: str,
        program: str,
        schedule_type: str,
        arguments: Optional[str] = None,
        start_time: Optional[str] = None,
        run_as_system: bool = False,
        interval: int = 1,
    ) -> tuple[bool, str]:
        """Create (or replace) a scheduled task using schtasks."""
        if schedule_type not in SCHEDULE_TYPES:
            return False, f"Unsupported schedule type: {schedule_type}"

        command = f'"{program}"'
        if arguments:
            command = f'{command} {arguments}'

        cmd = [
            'schtasks', '/create',
            '/tn', task_name,
            '/tr', command,
            '/sc', schedule_type,
            '/f'
        ]

        if schedule_type in ('DAILY', 'WEEKLY', 'MONTHLY', 'ONCE') and start_time:
            cmd.extend(['/st', start_time])

        if schedule_type in ('DAILY', 'WEEKLY', 'MONTHLY') and interval > 1:
            cmd.extend(['/mo', str(interval)])

        if run_as_system:
            cmd.extend(['/ru', 'SYSTEM', '/rl', 'HIGHEST'])

        result = run_command(cmd, timeout=15)
        if result.ok:
            return True, ""
        return False, result.message


_task_scheduler_info: Optional[TaskSchedulerInfo] = None


def get_task_scheduler_info() -> TaskSchedulerInfo:
    """Get the global TaskSchedulerInfo instance."""
    global _task_scheduler_info
    if _task_scheduler_info is None:
        _task_scheduler_info = TaskSchedulerInfo()
    return _task_scheduler_info
