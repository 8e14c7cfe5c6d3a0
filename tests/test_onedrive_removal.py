"""Tests for OneDrive removal."""
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import psutil

from fakes import FakeRegistry, FakeRunner, make_user
from winadmin.services.onedrive_removal import (
    NAMESPACE_KEYS,
    NAMESPACE_PIN_VALUE,
    POLICY_KEY,
    POLICY_VALUE,
    RUN_KEY,
    RUN_VALUE,
    TASK_PREFIX,
    OneDriveRemover,
)
from winadmin.utils.commands import CommandResult

SID = "S-1-5-21-1000"


class FakeProcess:
    def __init__(self, name, error=None):
        self.info = {"name": name}
        self.killed = False
        self._error = error

    def kill(self):
        if self._error:
            raise self._error
        self.killed = True


class TestOneDriveRemover(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.system_root = root / "Windows"
        self.program_data = root / "ProgramData"
        self.profile = root / "Users" / "ann"
        (self.profile / "AppData" / "Local" / "Microsoft" / "OneDrive" / "logs").mkdir(parents=True)

        self.registry = FakeRegistry()
        self.user = make_user(self.profile, sid=SID)
        self.runner = FakeRunner()
        self.scheduler = mock.Mock()
        self.scheduler.delete_tasks_matching.return_value = [r"\OneDrive Standalone Update Task-S-1-5-21-1000"]
        self.processes = [FakeProcess("OneDrive.exe"), FakeProcess("explorer.exe")]
        self.remover = OneDriveRemover(
            registry=self.registry,
            users=lambda: [self.user],
            run=self.runner,
            scheduler=self.scheduler,
            process_iter=lambda attrs: iter(self.processes),
            system_root=str(self.system_root),
            program_data=str(self.program_data),
        )

    def tearDown(self):
        self._tmp.cleanup()

    def install_setup(self) -> Path:
        setup = self.system_root / "System32" / "OneDriveSetup.exe"
        setup.parent.mkdir(parents=True)
        setup.write_bytes(b"MZ")
        return setup

    def test_stop_processes_only_kills_onedrive(self):
        self.assertEqual(self.remover.stop_processes(), 1)
        self.assertTrue(self.processes[0].killed)
        self.assertFalse(self.processes[1].killed)

    def test_stop_processes_tolerates_exited_process(self):
        self.processes.append(FakeProcess("onedrive.exe", psutil.NoSuchProcess(1234)))
        self.assertEqual(self.remover.stop_processes(), 1)

    def test_uninstaller_runs_when_present(self):
        setup = self.install_setup()
        ok, message = self.remover.run_uninstaller()
        self.assertTrue(ok)
        self.assertEqual(self.runner.calls, [[str(setup), "/uninstall"]])

    def test_uninstaller_failure(self):
        self.install_setup()
        self.runner.default = CommandResult(1, "", "uninstall failed")
        self.assertEqual(self.remover.run_uninstaller(), (False, "uninstall failed"))

    def test_uninstaller_absent(self):
        self.assertEqual(self.remover.run_uninstaller(), (True, "uninstaller not present"))
        self.assertEqual(self.runner.calls, [])

    def test_full_removal(self):
        self.install_setup()
        run_key = SID + "\\" + RUN_KEY
        self.registry.set("HKU", run_key, RUN_VALUE, "OneDrive.exe /background")
        self.registry.add_key("HKU", SID + "\\" + NAMESPACE_KEYS[0])
        (self.program_data / "Microsoft OneDrive").mkdir(parents=True)
        (self.profile / "OneDrive").mkdir()

        result = self.remover.remove()

        self.assertTrue(result.ok, result.failures)
        self.assertIsNone(self.registry.read_value("HKU", run_key, RUN_VALUE))
        self.assertEqual(self.registry.read_value("HKU", SID + "\\" + NAMESPACE_KEYS[0], NAMESPACE_PIN_VALUE), 0)
        self.assertFalse(self.registry.key_exists("HKU", SID + "\\" + NAMESPACE_KEYS[1]))
        self.assertEqual(self.registry.read_value("HKLM", POLICY_KEY, POLICY_VALUE), 1)
        self.scheduler.delete_tasks_matching.assert_called_once_with(TASK_PREFIX)
        self.assertFalse((self.profile / "AppData" / "Local" / "Microsoft" / "OneDrive").exists())
        self.assertFalse((self.profile / "OneDrive").exists())
        self.assertFalse((self.program_data / "Microsoft OneDrive").exists())

        names = [step.name for step in result.steps]
        self.assertEqual(names[:2], ["Stop OneDrive", "Run uninstaller"])
        self.assertIn("Delete scheduled tasks", names)
        self.assertIn("Disable OneDrive sync policy", names)

    def test_user_files_are_kept(self):
        synced = self.profile / "OneDrive" / "Documents" / "report.docx"
        synced.parent.mkdir(parents=True)
        synced.write_text("data", encoding="utf-8")

        self.remover.remove()

        self.assertTrue(synced.exists())

    def test_failures_do_not_stop_later_steps(self):
        self.scheduler.delete_tasks_matching.side_effect = RuntimeError("Task Scheduler unavailable")
        self.registry.fail_writes = True

        result = self.remover.remove()

        failed = [step.name for step in result.failures]
        self.assertEqual(failed, ["Delete scheduled tasks", "Disable OneDrive sync policy"])
        self.assertFalse((self.profile / "AppData" / "Local" / "Microsoft" / "OneDrive").exists())

    def test_user_cleanup_error_recorded(self):
        broken = mock.Mock(wraps=self.registry)
        broken.delete_value.side_effect = OSError("access denied")
        self.remover.registry = broken

        result = self.remover.remove()

        self.assertIn(f"{self.user.label}: cleanup", [step.name for step in result.failures])


if __name__ == "__main__":
    unittest.main()
