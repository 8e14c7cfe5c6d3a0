"""Tests for DNS server validation and netsh updates."""
import unittest
from collections import namedtuple

from fakes import FakeRunner
from winadmin.services.dns_updater import DnsUpdater, validate_servers
from winadmin.utils.commands import CommandResult

Stat = namedtuple("Stat", "isup")

SHOW_OUTPUT = """
Configuration for interface "Ethernet"
    Statically Configured DNS Servers:    1.1.1.1
                                          8.8.8.8
    Register with which suffix:           Primary only
"""


def adapters():
    return {
        "Ethernet": Stat(True),
        "Ethernet 2": Stat(False),
        "Wi-Fi": Stat(True),
        "Loopback Pseudo-Interface 1": Stat(True),
    }


class TestValidateServers(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(validate_servers([" 1.1.1.1", "8.8.8.8"]), ["1.1.1.1", "8.8.8.8"])

    def test_invalid(self):
        for servers in (["999.1.1.1"], ["dns.google"], ["::1"], []):
            with self.subTest(servers=servers):
                with self.assertRaises(ValueError):
                    validate_servers(servers)


class TestDnsUpdater(unittest.TestCase):
    def setUp(self):
        self.runner = FakeRunner()
        self.updater = DnsUpdater(run=self.runner, adapter_stats=adapters)

    def test_matching_adapters(self):
        self.assertEqual(self.updater.matching_adapters("*"), ["Ethernet", "Wi-Fi"])
        self.assertEqual(self.updater.matching_adapters("ETHERNET*"), ["Ethernet"])

    def test_update_sets_primary_then_adds_secondary(self):
        results = self.updater.update_dns(["1.1.1.1", "8.8.8.8"], "Ethernet")

        self.assertEqual([(r.adapter, r.ok) for r in results], [("Ethernet", True)])
        self.assertEqual(
            self.runner.calls,
            [
                ["netsh", "interface", "ipv4", "set", "dnsservers", "name=Ethernet", "source=static",
                 "address=1.1.1.1", "register=primary", "validate=no"],
                ["netsh", "interface", "ipv4", "add", "dnsservers", "name=Ethernet",
                 "address=8.8.8.8", "index=2", "validate=no"],
                ["ipconfig", "/flushdns"],
            ],
        )

    def test_update_rejects_invalid_before_running(self):
        with self.assertRaises(ValueError):
            self.updater.update_dns(["1.1.1.1", "bogus"])
        self.assertEqual(self.runner.calls, [])

    def test_failure_on_one_adapter_does_not_stop_others(self):
        self.runner.responses = [
            (("netsh", "interface", "ipv4", "set", "dnsservers", "name=Ethernet"),
             CommandResult(1, "", "The requested operation requires elevation.")),
        ]
        results = self.updater.update_dns(["9.9.9.9"])
        self.assertEqual([(r.adapter, r.ok) for r in results], [("Ethernet", False), ("Wi-Fi", True)])
        self.assertEqual(results[0].message, "The requested operation requires elevation.")

    def test_no_matching_adapter(self):
        self.assertEqual(self.updater.update_dns(["9.9.9.9"], "nothing"), [])
        self.assertTrue(self.runner.called_with("ipconfig", "/flushdns"))

    def test_reset_to_dhcp(self):
        results = self.updater.reset_dns("wi-fi")
        self.assertEqual([(r.adapter, r.message) for r in results], [("Wi-Fi", "DHCP")])
        self.assertTrue(self.runner.called_with(
            "netsh", "interface", "ipv4", "set", "dnsservers", "name=Wi-Fi", "source=dhcp"))

    def test_get_dns_servers(self):
        self.runner.default = CommandResult(0, SHOW_OUTPUT)
        self.assertEqual(self.updater.get_dns_servers("Ethernet"), ["1.1.1.1", "8.8.8.8"])

    def test_get_dns_servers_failure(self):
        self.runner.default = CommandResult(1, "", "Element not found.")
        self.assertEqual(self.updater.get_dns_servers("Nope"), [])


if __name__ == "__main__":
    unittest.main()
