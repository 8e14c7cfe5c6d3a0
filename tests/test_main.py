"""Tests for the command-line entry point."""
import contextlib
import io
import unittest
from unittest import mock

from winadmin import main as cli
from winadmin.services.dns_updater import AdapterUpdate
from winadmin.services.results import OperationResult
from winadmin.services.timezone_config import TimezoneRunResult
from winadmin.services.vpn_connections import VpnDiscovery


def run_main(*argv):
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
        code = cli.main(list(argv))
    return code, out.getvalue()


class TestParser(unittest.TestCase):
    def parse_error(self, *argv):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                cli.main(list(argv))
        return ctx.exception.code

    def test_watchdog_defaults(self):
        args = cli.build_parser().parse_args(["watchdog"])
        self.assertEqual((args.adapter_pattern, args.failure_threshold, args.test_interval), ("*", 3, 30))

    def test_watchdog_rejects_non_positive(self):
        self.assertEqual(self.parse_error("watchdog", "--failure-threshold", "0"), 2)
        self.assertEqual(self.parse_error("watchdog", "--test-interval", "soon"), 2)

    def test_unknown_provider(self):
        self.assertEqual(self.parse_error("cloud-storage", "--provider", "iCloud"), 2)

    def test_invalid_dns_server(self):
        self.assertEqual(self.parse_error("dns", "set", "1.1.1.1", "not-an-ip"), 2)

    def test_subcommand_required(self):
        self.assertEqual(self.parse_error(), 2)
        self.assertEqual(self.parse_error("vpn"), 2)

    def test_version(self):
        with contextlib.redirect_stdout(io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                cli.main(["--version"])
        self.assertEqual(ctx.exception.code, 0)


@mock.patch("winadmin.main.configure_logging")
class TestCommands(unittest.TestCase):
    @mock.patch("winadmin.services.dns_updater.DnsUpdater")
    def test_dns_set(self, updater_cls, _logging):
        updater_cls.return_value.update_dns.return_value = [AdapterUpdate("Ethernet", True, "1.1.1.1")]
        code, out = run_main("dns", "set", "1.1.1.1", "--adapter-pattern", "Eth*")

        self.assertEqual(code, 0)
        updater_cls.return_value.update_dns.assert_called_once_with(["1.1.1.1"], "Eth*")
        self.assertIn("[OK  ] Ethernet", out)

    @mock.patch("winadmin.services.dns_updater.DnsUpdater")
    def test_dns_reset_failure(self, updater_cls, _logging):
        updater_cls.return_value.reset_dns.return_value = [AdapterUpdate("Wi-Fi", False, "denied")]
        code, _ = run_main("dns", "reset")
        self.assertEqual(code, 1)

    @mock.patch("winadmin.services.vpn_troubleshooter.VpnTroubleshooter")
    def test_vpn_list(self, troubleshooter_cls, _logging):
        troubleshooter_cls.return_value.enumerator.discover.return_value = VpnDiscovery(names=["Home", "Office"])
        code, out = run_main("vpn", "list")
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ["Home", "Office"])

    @mock.patch("winadmin.services.vpn_troubleshooter.VpnTroubleshooter")
    def test_vpn_list_empty(self, troubleshooter_cls, _logging):
        troubleshooter_cls.return_value.enumerator.discover.return_value = VpnDiscovery()
        _, out = run_main("vpn", "list")
        self.assertEqual(out.strip(), "no VPN connections found")

    @mock.patch("winadmin.services.vpn_troubleshooter.VpnTroubleshooter")
    def test_vpn_repair(self, troubleshooter_cls, _logging):
        result = OperationResult()
        result.record("Backup", True)
        result.record("Flush DNS cache", False, "denied")
        troubleshooter_cls.return_value.repair.return_value = result

        code, out = run_main("vpn", "repair", "--name", "Office")

        self.assertEqual(code, 1)
        troubleshooter_cls.return_value.repair.assert_called_once_with("Office")
        self.assertIn("[FAIL] Flush DNS cache - denied", out)

    @mock.patch("winadmin.services.cloud_storage.CloudStorageManager")
    def test_cloud_storage(self, manager_cls, _logging):
        result = OperationResult()
        result.record("entry", True)
        manager_cls.return_value.configure.return_value = result

        code, _ = run_main("cloud-storage", "--provider", "Dropbox", "--set-as-default")

        self.assertEqual(code, 0)
        manager_cls.return_value.configure.assert_called_once_with(
            "Dropbox", remove_onedrive=False, set_as_default=True
        )

    @mock.patch("winadmin.services.timezone_config.TimezoneConfigurator")
    def test_timezone_run(self, configurator_cls, _logging):
        configurator_cls.return_value.run.return_value = TimezoneRunResult(True, "Timezone already UTC")
        code, out = run_main("timezone", "run")
        self.assertEqual(code, 0)
        self.assertIn("Timezone already UTC", out)

    @mock.patch("winadmin.services.dropbox_save_location.DropboxSaveLocation")
    def test_dropbox_exit_codes(self, tool_cls, _logging):
        tool_cls.return_value.detect.return_value = False
        tool_cls.return_value.remediate.return_value = True
        self.assertEqual(run_main("dropbox-save", "detect")[0], 1)
        self.assertEqual(run_main("dropbox-save", "remediate")[0], 0)

    @mock.patch("winadmin.services.dropbox_save_location.DropboxSaveLocation")
    def test_dropbox_unexpected_error_propagates(self, tool_cls, _logging):
        tool_cls.return_value.detect.side_effect = RuntimeError("registry unavailable")
        with self.assertRaises(RuntimeError):
            run_main("dropbox-save", "detect")

    @mock.patch("winadmin.services.network_watchdog.NetworkWatchdog")
    def test_watchdog_stops_on_ctrl_c(self, watchdog_cls, logging_mock):
        watchdog_cls.return_value.run.side_effect = KeyboardInterrupt
        code, _ = run_main("watchdog", "--adapter-pattern", "Wi-Fi*", "--failure-threshold", "2")

        self.assertEqual(code, 0)
        config = watchdog_cls.call_args[0][0]
        self.assertEqual((config.adapter_pattern, config.failure_threshold), ("Wi-Fi*", 2))
        logging_mock.assert_called_once_with("NetworkWatchdog", False, console=False)


if __name__ == "__main__":
    unittest.main()
