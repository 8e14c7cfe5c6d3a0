"""Tests for log file setup and data locations."""
import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from winadmin import settings
from winadmin.utils.logging_utils import configure_logging


class TestSettings(unittest.TestCase):
    def test_home_override(self):
        with mock.patch.dict("os.environ", {"WINADMIN_HOME": "/srv/winadmin"}):
            self.assertEqual(settings.base_dir(), Path("/srv/winadmin"))
            self.assertEqual(settings.log_path("DnsUpdater"), Path("/srv/winadmin") / "Logs" / "DnsUpdater.log")
            self.assertEqual(settings.vpn_backup_dir(), Path("/srv/winadmin") / "VpnBackups")

    def test_program_data(self):
        with mock.patch.dict("os.environ", {"ProgramData": "/programdata"}, clear=True):
            self.assertEqual(settings.base_dir(), Path("/programdata") / settings.APP_NAME)


class TestConfigureLogging(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.home = Path(self._tmp.name)
        patcher = mock.patch.dict("os.environ", {"WINADMIN_HOME": str(self.home)})
        patcher.start()
        self.addCleanup(patcher.stop)
        root = logging.getLogger()
        self.addCleanup(self._restore, root, list(root.handlers), root.level)

    @staticmethod
    def _restore(root, handlers, level):
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)

    def test_file_and_console(self):
        path = configure_logging("VpnTroubleshooter")
        self.assertEqual(path, str(self.home / "Logs" / "VpnTroubleshooter.log"))

        logging.getLogger("winadmin.test").info("hello log")
        for handler in logging.getLogger().handlers:
            handler.flush()

        text = Path(path).read_text(encoding="utf-8")
        self.assertIn("winadmin.test INFO: hello log", text)
        kinds = {type(h) for h in logging.getLogger().handlers}
        self.assertEqual(kinds, {logging.StreamHandler, logging.FileHandler})

    def test_appends_across_runs(self):
        configure_logging("DnsUpdater")
        logging.getLogger("winadmin.test").info("first")
        path = configure_logging("DnsUpdater")
        logging.getLogger("winadmin.test").info("second")
        for handler in logging.getLogger().handlers:
            handler.flush()
        text = Path(path).read_text(encoding="utf-8")
        self.assertIn("first", text)
        self.assertIn("second", text)

    def test_file_only_option(self):
        configure_logging("NetworkWatchdog", console=False)
        handlers = logging.getLogger().handlers
        self.assertEqual([type(h) for h in handlers], [logging.FileHandler])

    def test_verbose_level(self):
        configure_logging("DnsUpdater", verbose=True)
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_unwritable_log_dir_falls_back_to_console(self):
        blocker = self.home / "file"
        blocker.write_text("", encoding="utf-8")
        with mock.patch.dict(os.environ, {"WINADMIN_HOME": str(blocker)}):
            path = configure_logging("DnsUpdater")
        self.assertIsNone(path)
        kinds = [type(h) for h in logging.getLogger().handlers]
        self.assertEqual(kinds, [logging.StreamHandler])


if __name__ == "__main__":
    unittest.main()
