"""
DNS Server Updater.

Sets static IPv4 DNS servers on the network adapters matching a name
pattern, or returns them to DHCP-assigned DNS, then flushes the resolver
cache.
"""

import fnmatch
import ipaddress
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

import psutil

from winadmin.utils.commands import CommandResult, run_command

logger = logging.getLogger(__name__)


@dataclass
class AdapterUpdate:
    adapter: str
    ok: bool
    message: str = ""


def validate_servers(servers: Sequence[str]) -> List[str]:
    """Normalise IPv4 server addresses; raises ValueError on the first invalid one."""
    if not servers:
        raise ValueError("at least one DNS server is required")
    validated = []
    for server in servers:
        try:
            validated.append(str(ipaddress.IPv4Address(server.strip())))
        except ValueError:
            raise ValueError(f"not a valid IPv4 address: {server!r}") from None
    return validated


class DnsUpdater:
    """Apply DNS server settings through netsh."""

    def __init__(
        self,
        run: Callable[..., CommandResult] = run_command,
        adapter_stats: Callable[[], Dict] = psutil.net_if_stats,
    ):
        self._run = run
        self._adapter_stats = adapter_stats

    def matching_adapters(self, pattern: str) -> List[str]:
        """Names of adapters that are up and match the wildcard pattern (case-insensitive)."""
        stats = self._adapter_stats()
        return [
            name for name, stat in sorted(stats.items())
            if getattr(stat, "isup", False)
            and fnmatch.fnmatchcase(name.lower(), pattern.lower())
            and not name.lower().startswith("loopback")
        ]

    def _apply(self, adapter: str, servers: List[str]) -> AdapterUpdate:
        primary = self._run([
            "netsh", "interface", "ipv4", "set", "dnsservers",
            f"name={adapter}", "source=static", f"address={servers[0]}",
            "register=primary", "validate=no",
        ])
        if not primary.ok:
            return AdapterUpdate(adapter, False, primary.message)
        for index, server in enumerate(servers[1:], start=2):
            extra = self._run([
                "netsh", "interface", "ipv4", "add", "dnsservers",
                f"name={adapter}", f"address={server}", f"index={index}", "validate=no",
            ])
            if not extra.ok:
                return AdapterUpdate(adapter, False, f"{server}: {extra.message}")
        return AdapterUpdate(adapter, True, ", ".join(servers))

    def _flush(self) -> None:
        result = self._run(["ipconfig", "/flushdns"])
        if not result.ok:
            logger.warning("Failed to flush DNS cache: %s", result.message)

    def update_dns(self, servers: Sequence[str], adapter_pattern: str = "*") -> List[AdapterUpdate]:
        """Set servers (first is primary) on every matching adapter."""
        validated = validate_servers(servers)
        results = []
        for adapter in self.matching_adapters(adapter_pattern):
            update = self._apply(adapter, validated)
            (logger.info if update.ok else logger.warning)(
                "DNS on %s: %s", adapter, update.message if update.ok else f"FAILED ({update.message})"
            )
            results.append(update)
        if not results:
            logger.warning("No connected adapter matches '%s'", adapter_pattern)
        self._flush()
        return results

    def reset_dns(self, adapter_pattern: str = "*") -> List[AdapterUpdate]:
        """Return matching adapters to DHCP-assigned DNS servers."""
        results = []
        for adapter in self.matching_adapters(adapter_pattern):
            result = self._run([
                "netsh", "interface", "ipv4", "set", "dnsservers",
                f"name={adapter}", "source=dhcp",
            ])
            update = AdapterUpdate(adapter, result.ok, "DHCP" if result.ok else result.message)
            (logger.info if update.ok else logger.warning)("DNS reset on %s: %s", adapter, update.message)
            results.append(update)
        self._flush()
        return results

    def get_dns_servers(self, adapter: str) -> List[str]:
        """Currently configured DNS servers of one adapter, from netsh output."""
        result = self._run(["netsh", "interface", "ipv4", "show", "dnsservers", f"name={adapter}"])
        if not result.ok:
            logger.warning("Failed to read DNS servers of %s: %s", adapter, result.message)
            return []
        servers = []
        for line in result.lines():
            candidate = line.split(":")[-1].strip()
            try:
                servers.append(str(ipaddress.ip_address(candidate)))
            except ValueError:
                continue
        return servers
