"""
Network Watchdog.

Every cycle pings a set of hosts and resolves test names against explicit
DNS servers, all concurrently. After enough consecutive failed cycles the
network adapters matching a name pattern are disabled and re-enabled. The
state of the last cycle is drawn as a console dashboard.
"""

import fnmatch
import functools
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, TextIO, Tuple

import dns.exception
import dns.resolver
import psutil

from winadmin.utils.commands import CommandResult, run_command
from winadmin.utils.thread_utils import run_concurrently

logger = logging.getLogger(__name__)

DEFAULT_PING_TARGETS = ("8.8.8.8", "1.1.1.1", "208.67.222.222")
DEFAULT_DNS_CHECKS = (
    ("www.microsoft.com", "8.8.8.8"),
    ("www.google.com", "1.1.1.1"),
)
PING_TIMEOUT_MS = 1000
DNS_TIMEOUT = 2.0
# Pause between disabling and re-enabling an adapter (seconds)
ADAPTER_RESET_PAUSE = 3


def ping_host(
    host: str,
    timeout_ms: int = PING_TIMEOUT_MS,
    run: Callable[..., CommandResult] = run_command,
) -> bool:
    """Send one echo request.

    Windows ping can exit 0 for "Destination host unreachable", so a reply
    only counts when it carries a TTL.
    """
    result = run(["ping", "-n", "1", "-w", str(timeout_ms), host], timeout=max(5, timeout_ms // 1000 + 5))
    return result.ok and "ttl=" in result.stdout.lower()


def check_dns(name: str, server: str, timeout: float = DNS_TIMEOUT) -> bool:
    """Resolve name through one specific DNS server."""
    resolver = dns.resolver.Resolver(configure=False)
    resolver.nameservers = [server]
    resolver.lifetime = timeout
    try:
        answer = resolver.resolve(name, "A")
    except dns.exception.DNSException as e:
        logger.debug("DNS check %s via %s failed: %s", name, server, e)
        return False
    return len(answer) > 0


@dataclass
class WatchdogConfig:
    adapter_pattern: str = "*"
    failure_threshold: int = 3
    test_interval: int = 30
    ping_targets: Sequence[str] = DEFAULT_PING_TARGETS
    dns_checks: Sequence[Tuple[str, str]] = DEFAULT_DNS_CHECKS

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure threshold must be at least 1")
        if self.test_interval < 1:
            raise ValueError("test interval must be at least 1 second")
        if not self.adapter_pattern:
            raise ValueError("adapter pattern must not be empty")


@dataclass
class CheckResult:
    kind: str  # "ping" or "dns"
    target: str
    ok: bool
    detail: str = ""


@dataclass
class CycleResult:
    number: int
    started: datetime
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        """At least one ping and one DNS check must pass."""
        kinds = {check.kind for check in self.checks}
        return all(
            any(check.ok for check in self.checks if check.kind == kind) for kind in kinds
        ) and bool(kinds)


class NetworkWatchdog:
    """Monitor connectivity and reset adapters after repeated failures."""

    def __init__(
        self,
        config: Optional[WatchdogConfig] = None,
        run: Callable[..., CommandResult] = run_command,
        ping: Optional[Callable[[str], bool]] = None,
        dns_check: Callable[[str, str], bool] = check_dns,
        adapter_stats: Callable[[], Dict] = psutil.net_if_stats,
        sleep: Callable[[float], None] = time.sleep,
        output: TextIO = sys.stdout,
    ):
        self.config = config or WatchdogConfig()
        self._run = run
        self._ping = ping or functools.partial(ping_host, run=run)
        self._dns_check = dns_check
        self._adapter_stats = adapter_stats
        self._sleep = sleep
        self.output = output

        self.cycles = 0
        self.failed_cycles = 0
        self.consecutive_failures = 0
        self.resets = 0
        self.last_reset: Optional[datetime] = None

    def matching_adapters(self) -> Dict[str, bool]:
        """Adapter name -> is up, for adapters matching the pattern (case-insensitive)."""
        pattern = self.config.adapter_pattern.lower()
        try:
            stats = self._adapter_stats()
        except Exception as e:
            logger.warning("Failed to read adapter state: %s", e)
            return {}
        return {
            name: bool(getattr(stat, "isup", False))
            for name, stat in sorted(stats.items())
            if fnmatch.fnmatchcase(name.lower(), pattern)
        }

    def run_cycle(self) -> CycleResult:
        """Run every check concurrently and wait for all of them."""
        self.cycles += 1
        cycle = CycleResult(number=self.cycles, started=datetime.now())

        labels: List[Tuple[str, str]] = []
        funcs = []
        for host in self.config.ping_targets:
            labels.append(("ping", host))
            funcs.append(functools.partial(self._ping, host))
        for name, server in self.config.dns_checks:
            labels.append(("dns", f"{name} @ {server}"))
            funcs.append(functools.partial(self._dns_check, name, server))

        timeout_ms = max(PING_TIMEOUT_MS, int(DNS_TIMEOUT * 1000)) + 10_000
        workers = run_concurrently(funcs, timeout_ms)
        for (kind, target), worker in zip(labels, workers):
            if worker.error:
                cycle.checks.append(CheckResult(kind, target, False, worker.error))
            else:
                ok = bool(worker.result)
                cycle.checks.append(CheckResult(kind, target, ok, "ok" if ok else "failed"))
        return cycle

    def reset_adapters(self) -> List[str]:
        """Disable and re-enable every matching adapter. Returns the ones reset."""
        reset = []
        for name in self.matching_adapters():
            disabled = self._run(["netsh", "interface", "set", "interface", f"name={name}", "admin=disabled"])
            if not disabled.ok:
                logger.warning("Failed to disable adapter %s: %s", name, disabled.message)
                continue
            self._sleep(ADAPTER_RESET_PAUSE)
            enabled = self._run(["netsh", "interface", "set", "interface", f"name={name}", "admin=enabled"])
            if enabled.ok:
                logger.info("Adapter %s reset", name)
                reset.append(name)
            else:
                logger.error("Adapter %s was disabled but could not be re-enabled: %s", name, enabled.message)
        return reset

    def record(self, cycle: CycleResult) -> Optional[List[str]]:
        """Update the failure counters; returns the adapters reset, if a reset happened."""
        if cycle.healthy:
            self.consecutive_failures = 0
            return None

        self.failed_cycles += 1
        self.consecutive_failures += 1
        failed = ", ".join(c.target for c in cycle.checks if not c.ok)
        logger.warning(
            "Cycle %d failed (%d/%d): %s",
            cycle.number, self.consecutive_failures, self.config.failure_threshold, failed,
        )
        if self.consecutive_failures < self.config.failure_threshold:
            return None

        logger.warning("Failure threshold reached; resetting adapters matching '%s'", self.config.adapter_pattern)
        reset = self.reset_adapters()
        self.resets += 1
        self.last_reset = datetime.now()
        self.consecutive_failures = 0
        return reset

    def render(self, cycle: CycleResult) -> str:
        lines = [
            f"Network Watchdog - cycle {cycle.number} at {cycle.started:%Y-%m-%d %H:%M:%S}",
            f"Adapter pattern: {self.config.adapter_pattern}   "
            f"Threshold: {self.config.failure_threshold}   Interval: {self.config.test_interval}s",
            "",
            "Adapters:",
        ]
        adapters = self.matching_adapters()
        if adapters:
            lines.extend(f"  {name:<30} {'Up' if up else 'Down'}" for name, up in adapters.items())
        else:
            lines.append("  (none match)")
        lines.append("")
        lines.append("Checks:")
        for check in cycle.checks:
            status = "OK" if check.ok else "FAIL"
            lines.append(f"  {check.kind:<5} {check.target:<40} {status:<5} {check.detail if not check.ok else ''}".rstrip())
        lines.append("")
        lines.append(f"Status: {'HEALTHY' if cycle.healthy else 'FAILING'}")
        lines.append(
            f"Cycles: {self.cycles}   Failed: {self.failed_cycles}   "
            f"Consecutive: {self.consecutive_failures}   Resets: {self.resets}"
        )
        if self.last_reset:
            lines.append(f"Last reset: {self.last_reset:%Y-%m-%d %H:%M:%S}")
        return "\n".join(lines)

    def _draw(self, text: str) -> None:
        if getattr(self.output, "isatty", lambda: False)():
            # ANSI clear screen + home; supported by Windows 10+ consoles
            self.output.write("\x1b[2J\x1b[H")
        self.output.write(text + "\n")
        self.output.flush()

    def run(self, max_cycles: Optional[int] = None) -> None:
        """Monitor until interrupted, or for max_cycles cycles."""
        logger.info(
            "Watchdog started: pattern=%s threshold=%d interval=%ds",
            self.config.adapter_pattern, self.config.failure_threshold, self.config.test_interval,
        )
        while True:
            cycle = self.run_cycle()
            self.record(cycle)
            self._draw(self.render(cycle))
            if max_cycles is not None and self.cycles >= max_cycles:
                return
            self._sleep(self.config.test_interval)
