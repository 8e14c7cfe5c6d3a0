"""Tests for VPN connection discovery and merging."""
import tempfile
import unittest
from pathlib import Path

from fakes import FakePowerShell, FakeRegistry
from winadmin.services.vpn_connections import (
    NO_CONNECTIONS_MESSAGE,
    REGISTRY_SOURCES,
    VpnConnectionEnumerator,
    merge_connection_names,
    parse_phonebook,
    read_phonebook,
)
from winadmin.utils.commands import CommandResult

PHONEBOOK = """[Version]
Version=6

[Office]
Encoding=1
PhoneNumber=vpn.example.com
Type=2

[Home Lab]
PhoneNumber=203.0.113.10
"""

USER_QUERY = "Get-VpnConnection -ErrorAction"
ALL_USERS_QUERY = "Get-VpnConnection -AllUserConnection -ErrorAction"


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


class TestMergeConnectionNames(unittest.TestCase):
    def test_example_merge(self):
        """Per-user {Office}, registry {Office, Home}, empty phonebook -> [Home, Office]."""
        self.assertEqual(merge_connection_names(["Office"], ["Office", "Home"], []), ["Home", "Office"])

    def test_no_duplicates(self):
        merged = merge_connection_names(["A", "B", "A"], ["B", "C"], ["C", "A"])
        self.assertEqual(len(merged), len(set(merged)))

    def test_case_sensitive_ordinal_sort(self):
        self.assertEqual(merge_connection_names(["beta", "Alpha", "alpha", "Beta"]), ["Alpha", "Beta", "alpha", "beta"])

    def test_blank_names_dropped(self):
        self.assertEqual(merge_connection_names(["", "  ", "Office"]), ["Office"])

    def test_names_kept_verbatim(self):
        self.assertEqual(merge_connection_names(["Office"], ["Office "]), ["Office", "Office "])

    def test_empty(self):
        self.assertEqual(merge_connection_names(), [])


class TestPhonebook(unittest.TestCase):
    def test_version_section_excluded(self):
        names = [e.name for e in parse_phonebook(PHONEBOOK)]
        self.assertEqual(names, ["Office", "Home Lab"])
        self.assertNotIn("Version", names)

    def test_server_read_from_phone_number(self):
        entries = {e.name: e.server for e in parse_phonebook(PHONEBOOK)}
        self.assertEqual(entries["Office"], "vpn.example.com")
        self.assertEqual(entries["Home Lab"], "203.0.113.10")

    def test_missing_file(self):
        self.assertEqual(read_phonebook(Path(tempfile.gettempdir()) / "does-not-exist-12345.pbk"), [])

    def test_utf16_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "rasphone.pbk"
            path.write_bytes(PHONEBOOK.encode("utf-16"))
            self.assertEqual([e.name for e in read_phonebook(path)], ["Office", "Home Lab"])

    def test_truncated_utf16_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "rasphone.pbk"
            path.write_bytes(b"\xff\xfe" + "[Office]\r\n".encode("utf-16-le") + b"x")
            self.assertIn("Office", [e.name for e in read_phonebook(path)])


class TestVpnConnectionEnumerator(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.registry = FakeRegistry()
        self.powershell = FakePowerShell()

    def tearDown(self):
        self._tmp.cleanup()

    def enumerator(self, phonebooks=()):
        return VpnConnectionEnumerator(
            registry=self.registry,
            powershell=self.powershell,
            phonebook_paths=list(phonebooks),
        )

    def write_phonebook(self, text: str) -> Path:
        path = self.tmp / "rasphone.pbk"
        path.write_text(text, encoding="utf-8")
        return path

    def test_all_sources_empty(self):
        discovery = self.enumerator().discover()
        self.assertEqual(discovery.names, [])
        self.assertEqual(discovery.errors, [])
        self.assertEqual(discovery.summary, NO_CONNECTIONS_MESSAGE)

    def test_office_and_home_properties(self):
        self.powershell.responses = [(USER_QUERY, ok("Office\r\n"))]
        hive, path = REGISTRY_SOURCES[0]
        self.registry.add_key(hive, path + r"\Office")
        self.registry.add_key(hive, path + r"\Home")
        self.assertEqual(self.enumerator().list_connections(), ["Home", "Office"])

    def test_same_name_in_every_source_appears_once(self):
        self.powershell.responses = [
            (ALL_USERS_QUERY, ok("Office\n")),
            (USER_QUERY, ok("Office\n")),
        ]
        for hive, path in REGISTRY_SOURCES:
            self.registry.add_key(hive, path + r"\Office")
        names = self.enumerator([self.write_phonebook("[Office]\n")]).list_connections()
        self.assertEqual(names, ["Office"])

    def test_all_user_connections_merged(self):
        self.powershell.responses = [
            (ALL_USERS_QUERY, ok("Shared VPN\n")),
            (USER_QUERY, ok("Personal VPN\n")),
        ]
        discovery = self.enumerator().discover()
        self.assertEqual(discovery.names, ["Personal VPN", "Shared VPN"])
        self.assertEqual(discovery.by_source["all-users"], ["Shared VPN"])

    def test_failing_source_keeps_others(self):
        self.powershell.responses = [
            (ALL_USERS_QUERY, CommandResult(1, "", "Access is denied")),
            (USER_QUERY, RuntimeError("powershell missing")),
        ]
        hive, path = REGISTRY_SOURCES[-1]
        self.registry.add_key(hive, path + r"\Branch")
        discovery = self.enumerator([self.write_phonebook(PHONEBOOK)]).discover()
        self.assertEqual(discovery.names, ["Branch", "Home Lab", "Office"])
        self.assertEqual(len(discovery.errors), 2)
        self.assertTrue(any("Access is denied" in e for e in discovery.errors))

    def test_corrupt_phonebook_keeps_sibling_entries(self):
        corrupt = self.tmp / "user.pbk"
        corrupt.write_bytes(b"\xff\xfe" + "[Home Lab]\r\n".encode("utf-16-le") + b"x")
        shared = self.tmp / "shared.pbk"
        shared.write_text("[Shared]\nPhoneNumber=vpn.shared.example\n", encoding="utf-8")
        self.powershell.responses = [("-Name 'Shared'", CommandResult(1, "", "not found"))]

        enumerator = self.enumerator([corrupt, shared])
        discovery = enumerator.discover()

        self.assertIn("Shared", discovery.names)
        self.assertEqual(discovery.errors, [])
        self.assertEqual(enumerator.find_server_address("Shared"), "vpn.shared.example")

    def test_missing_registry_paths_skipped(self):
        self.powershell.responses = [(USER_QUERY, ok("Office\n"))]
        self.assertEqual(self.enumerator().registry_connections(), [])
        self.assertEqual(self.enumerator().list_connections(), ["Office"])

    def test_deterministic_across_runs(self):
        self.powershell.responses = [(USER_QUERY, ok("Zeta\nAlpha\n"))]
        enumerator = self.enumerator([self.write_phonebook(PHONEBOOK)])
        self.assertEqual(enumerator.list_connections(), enumerator.list_connections())

    def test_server_address_from_api(self):
        self.powershell.responses = [("-Name 'Office'", ok("vpn.corp.example\n"))]
        self.assertEqual(self.enumerator().find_server_address("Office"), "vpn.corp.example")

    def test_server_address_falls_back_to_phonebook(self):
        self.powershell.responses = [("-Name 'Office'", CommandResult(1, "", "not found"))]
        enumerator = self.enumerator([self.write_phonebook(PHONEBOOK)])
        self.assertEqual(enumerator.find_server_address("Office"), "vpn.example.com")
        self.assertIsNone(enumerator.find_server_address("Unknown"))

    def test_quotes_escaped_in_name(self):
        self.enumerator().find_server_address("Bob's VPN")
        self.assertIn("'Bob''s VPN'", self.powershell.scripts[0])


if __name__ == "__main__":
    unittest.main()
