"""
VPN Connection Discovery.

Collects VPN connection names from every place Windows keeps them: the
VpnClient cmdlets (per-user and all-users), the RAS phonebook files, and a
few registry subtrees. Each source is queried independently and the names
are merged into one sorted, duplicate-free list.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from winadmin.utils import default_registry
from winadmin.utils.commands import CommandResult, run_powershell

logger = logging.getLogger(__name__)

NO_CONNECTIONS_MESSAGE = "no VPN connections found"

# Phonebook section that holds file metadata rather than a connection
_VERSION_SECTION = "Version"

_SECTION_RE = re.compile(r"^\s*\[(?P<name>[^\]]+)\]\s*$")

# Registry subtrees whose child key names are connection names
REGISTRY_SOURCES: Tuple[Tuple[str, str], ...] = (
    ("HKCU", r"Software\Microsoft\RAS Phonebook"),
    ("HKLM", r"SOFTWARE\Microsoft\RAS Phonebook"),
    ("HKLM", r"SYSTEM\CurrentControlSet\Services\RasMan\Config\Connections"),
)


def default_phonebook_paths() -> List[Path]:
    """The per-user and all-users rasphone.pbk locations."""
    paths = []
    for env in ("APPDATA", "ProgramData"):
        base = os.environ.get(env)
        if base:
            paths.append(Path(base) / "Microsoft" / "Network" / "Connections" / "Pbk" / "rasphone.pbk")
    return paths


@dataclass
class PhonebookEntry:
    """One connection section of a RAS phonebook."""
    name: str
    server: Optional[str] = None
    source: Optional[str] = None


@dataclass
class VpnDiscovery:
    """Merged discovery result plus what each source contributed."""
    names: List[str] = field(default_factory=list)
    by_source: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if not self.names:
            return NO_CONNECTIONS_MESSAGE
        return f"{len(self.names)} VPN connection(s) found: {', '.join(self.names)}"


def merge_connection_names(*groups: Iterable[str]) -> List[str]:
    """Union of all names, blank entries dropped, sorted by ordinal value.

    Names are kept verbatim; only exact duplicates collapse.
    """
    merged = set()
    for group in groups:
        for name in group:
            if name and name.strip():
                merged.add(name)
    return sorted(merged)


def parse_phonebook(text: str, source: Optional[str] = None) -> List[PhonebookEntry]:
    """Parse rasphone.pbk text into entries, skipping the [Version] section."""
    entries: List[PhonebookEntry] = []
    current: Optional[PhonebookEntry] = None
    for line in text.splitlines():
        match = _SECTION_RE.match(line)
        if match:
            name = match.group("name").strip()
            if name == _VERSION_SECTION:
                current = None
                continue
            current = PhonebookEntry(name=name, source=source)
            entries.append(current)
            continue
        if current is not None and current.server is None:
            key, sep, value = line.partition("=")
            if sep and key.strip() == "PhoneNumber" and value.strip():
                current.server = value.strip()
    return entries


def read_phonebook(path: Path) -> List[PhonebookEntry]:
    """Read a phonebook file. A missing file yields no entries."""
    if not path.is_file():
        logger.debug("Phonebook %s not present", path)
        return []
    raw = path.read_bytes()
    if raw.startswith(b"\xff\xfe") or raw.startswith(b"\xfe\xff"):
        text = raw.decode("utf-16", errors="replace")
    else:
        text = raw.decode("utf-8-sig", errors="replace")
    return parse_phonebook(text, source=str(path))


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class VpnConnectionEnumerator:
    """Discover VPN connections across the API, phonebook and registry sources."""

    def __init__(
        self,
        registry=None,
        powershell: Callable[[str], CommandResult] = run_powershell,
        phonebook_paths: Optional[Sequence[Path]] = None,
        registry_sources: Sequence[Tuple[str, str]] = REGISTRY_SOURCES,
    ):
        self._registry = registry
        self._powershell = powershell
        self._phonebook_paths = phonebook_paths
        self.registry_sources = tuple(registry_sources)

    @property
    def registry(self):
        if self._registry is None:
            self._registry = default_registry()
        return self._registry

    @property
    def phonebook_paths(self) -> List[Path]:
        if self._phonebook_paths is None:
            return default_phonebook_paths()
        return list(self._phonebook_paths)

    def _query_api(self, all_users: bool) -> List[str]:
        scope = " -AllUserConnection" if all_users else ""
        result = self._powershell(
            f"Get-VpnConnection{scope} -ErrorAction Stop | ForEach-Object {{ $_.Name }}"
        )
        if not result.ok:
            raise RuntimeError(result.message)
        return result.lines()

    def user_connections(self) -> List[str]:
        return self._query_api(all_users=False)

    def all_user_connections(self) -> List[str]:
        return self._query_api(all_users=True)

    def phonebook_entries(self) -> List[PhonebookEntry]:
        """Entries from every phonebook file; unreadable files are logged and skipped."""
        entries = []
        for path in self.phonebook_paths:
            try:
                entries.extend(read_phonebook(path))
            except (OSError, UnicodeError) as e:
                logger.warning("Failed to read phonebook %s: %s", path, e)
        return entries

    def phonebook_connections(self) -> List[str]:
        return [entry.name for entry in self.phonebook_entries()]

    def registry_connections(self) -> List[str]:
        names = []
        for hive, path in self.registry_sources:
            try:
                names.extend(self.registry.enumerate_subkeys(hive, path))
            except Exception as e:
                logger.warning("Failed to read %s\\%s: %s", hive, path, e)
        return names

    def sources(self) -> List[Tuple[str, Callable[[], List[str]]]]:
        return [
            ("user", self.user_connections),
            ("all-users", self.all_user_connections),
            ("phonebook", self.phonebook_connections),
            ("registry", self.registry_connections),
        ]

    def discover(self) -> VpnDiscovery:
        """Query every source; a failing source contributes nothing but never blocks the others."""
        discovery = VpnDiscovery()
        for label, query in self.sources():
            try:
                names = list(query())
            except Exception as e:
                logger.warning("VPN source '%s' failed: %s", label, e)
                discovery.errors.append(f"{label}: {e}")
                names = []
            discovery.by_source[label] = names
        discovery.names = merge_connection_names(*discovery.by_source.values())
        logger.info("VPN discovery: %s", discovery.summary)
        return discovery

    def list_connections(self) -> List[str]:
        return self.discover().names

    def find_server_address(self, name: str) -> Optional[str]:
        """Server of a connection: VpnClient API first, phonebook PhoneNumber second."""
        for scope in ("", " -AllUserConnection"):
            try:
                result = self._powershell(
                    f"(Get-VpnConnection -Name {_ps_quote(name)}{scope} -ErrorAction Stop).ServerAddress"
                )
            except Exception as e:
                logger.debug("Server lookup for '%s' failed: %s", name, e)
                continue
            if result.ok and result.lines():
                return result.lines()[0]
        for entry in self.phonebook_entries():
            if entry.name == name and entry.server:
                return entry.server
        return None
