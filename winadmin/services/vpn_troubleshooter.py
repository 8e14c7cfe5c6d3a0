"""
VPN Troubleshooter.

Diagnoses VPN connectivity (connection discovery, RAS service state, server
name resolution and port reachability) and runs a fixed repair sequence that
always starts with a timestamped backup of the phonebooks and RAS registry
keys, which restore() can put back.
"""

import json
import logging
import shutil
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from winadmin import settings
from winadmin.services.results import OperationResult
from winadmin.services.vpn_connections import VpnConnectionEnumerator
from winadmin.utils.commands import CommandResult, run_command
from winadmin.utils.thread_utils import CancellableWorker, start_worker, wait_for_workers

logger = logging.getLogger(__name__)

# Services the built-in VPN client depends on
VPN_SERVICES = ("RasMan", "IKEEXT", "PolicyAgent", "SstpSvc")

# TCP ports that can be probed directly; IKE/L2TP run over UDP and cannot
PROBE_PORTS = ((443, "SSTP"), (1723, "PPTP"))
PROBE_TIMEOUT = 10

BACKUP_REGISTRY_KEYS = (
    ("RasMan", r"HKLM\SYSTEM\CurrentControlSet\Services\RasMan"),
    ("SstpSvc", r"HKLM\SYSTEM\CurrentControlSet\Services\SstpSvc\Parameters"),
    ("RasPhonebook", r"HKCU\Software\Microsoft\RAS Phonebook"),
)
MANIFEST_NAME = "manifest.json"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def probe_tcp_port(host: str, port: int, timeout: float = PROBE_TIMEOUT) -> bool:
    """True if a TCP connection to host:port opens within timeout."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def resolve_host(host: str) -> List[str]:
    """IPv4/IPv6 addresses for host; empty when it does not resolve."""
    try:
        infos = socket.getaddrinfo(host, None)
    except OSError:
        return []
    return sorted({info[4][0] for info in infos})


@dataclass
class ProbeResult:
    host: str
    port: int
    protocol: str
    reachable: bool
    detail: str = ""


@dataclass
class ConnectionCheck:
    """Diagnosis of one VPN connection's server."""
    name: str
    server: Optional[str] = None
    addresses: List[str] = field(default_factory=list)
    probes: List[ProbeResult] = field(default_factory=list)


@dataclass
class DiagnosticReport:
    connections: List[str] = field(default_factory=list)
    checks: List[ConnectionCheck] = field(default_factory=list)
    services: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def issues(self) -> List[str]:
        issues = []
        if not self.connections:
            issues.append("No VPN connections are configured")
        for name, status in self.services.items():
            if status != "Running":
                issues.append(f"Service {name} is {status}")
        for check in self.checks:
            if not check.server:
                issues.append(f"{check.name}: server address unknown")
            elif not check.addresses:
                issues.append(f"{check.name}: {check.server} does not resolve")
            elif check.probes and not any(p.reachable for p in check.probes):
                issues.append(f"{check.name}: no probed port on {check.server} is reachable")
        return issues


@dataclass
class RepairResult(OperationResult):
    backup_dir: Optional[Path] = None


class VpnTroubleshooter:
    """Diagnose and repair the Windows built-in VPN client."""

    def __init__(
        self,
        enumerator: Optional[VpnConnectionEnumerator] = None,
        services=None,
        run: Callable[[Sequence[str]], CommandResult] = run_command,
        backup_root: Optional[Path] = None,
        probe: Callable[[str, int, float], bool] = probe_tcp_port,
        resolver: Callable[[str], List[str]] = resolve_host,
        probe_timeout: float = PROBE_TIMEOUT,
    ):
        self.enumerator = enumerator or VpnConnectionEnumerator()
        self._services = services
        self._run = run
        self.backup_root = Path(backup_root) if backup_root else settings.vpn_backup_dir()
        self._probe = probe
        self._resolver = resolver
        self.probe_timeout = probe_timeout

    @property
    def services(self):
        if self._services is None:
            from winadmin.services.service_info import get_service_info
            self._services = get_service_info()
        return self._services

    # Diagnostics

    def service_states(self) -> Dict[str, str]:
        states = {}
        for name in VPN_SERVICES:
            try:
                state = self.services.get_service_info(name)
                states[name] = state.status if state else "Missing"
            except Exception as e:
                logger.warning("Failed to query service %s: %s", name, e)
                states[name] = "Unknown"
        return states

    def probe_server(
        self, server: str, cancel_event: Optional[threading.Event] = None
    ) -> Optional[List[ProbeResult]]:
        """Probe every TCP port in the background.

        Returns None when cancel_event is set before the probes finish; the
        in-flight probes are discarded.
        """
        workers = [
            CancellableWorker(self._probe, server, port, self.probe_timeout)
            for port, _ in PROBE_PORTS
        ]
        for worker in workers:
            start_worker(worker)
        # Grace period on top of the socket timeout for thread start-up
        finished = wait_for_workers(workers, int((self.probe_timeout + 2) * 1000), cancel_event)
        if not finished and cancel_event is not None and cancel_event.is_set():
            return None

        results = []
        for worker, (port, protocol) in zip(workers, PROBE_PORTS):
            if worker.error:
                results.append(ProbeResult(server, port, protocol, False, worker.error))
            else:
                reachable = bool(worker.result)
                results.append(
                    ProbeResult(server, port, protocol, reachable, "open" if reachable else "no response")
                )
        return results

    def diagnose(
        self, name: Optional[str] = None, cancel_event: Optional[threading.Event] = None
    ) -> DiagnosticReport:
        """Check one connection (or all of them) plus the RAS services."""
        report = DiagnosticReport()
        discovery = self.enumerator.discover()
        report.connections = discovery.names
        report.errors.extend(discovery.errors)
        report.services = self.service_states()

        targets = [name] if name else discovery.names
        for target in targets:
            check = ConnectionCheck(name=target)
            report.checks.append(check)
            try:
                check.server = self.enumerator.find_server_address(target)
            except Exception as e:
                report.errors.append(f"{target}: server lookup failed: {e}")
            if not check.server:
                continue
            check.addresses = self._resolver(check.server)
            if not check.addresses:
                continue
            probes = self.probe_server(check.server, cancel_event)
            if probes is None:
                logger.info("Diagnostics cancelled while probing %s", check.server)
                report.cancelled = True
                break
            check.probes = probes

        for issue in report.issues:
            logger.warning("Issue: %s", issue)
        return report

    # Backup / repair / restore

    def _new_backup_dir(self) -> Path:
        stamp = datetime.now().strftime(TIMESTAMP_FORMAT)
        path = self.backup_root / stamp
        suffix = 1
        while path.exists():
            path = self.backup_root / f"{stamp}_{suffix}"
            suffix += 1
        path.mkdir(parents=True)
        return path

    def backup(self) -> Path:
        """Copy phonebooks and export RAS registry keys into a new timestamped directory."""
        backup_dir = self._new_backup_dir()
        manifest = {"created": datetime.now().isoformat(timespec="seconds"), "phonebooks": {}, "registry": []}

        for index, source in enumerate(self.enumerator.phonebook_paths):
            if not source.is_file():
                continue
            target_name = f"{index}_{source.name}"
            shutil.copy2(source, backup_dir / target_name)
            manifest["phonebooks"][target_name] = str(source)
            logger.info("Backed up %s", source)

        for label, key in BACKUP_REGISTRY_KEYS:
            reg_file = backup_dir / f"{label}.reg"
            result = self._run(["reg", "export", key, str(reg_file), "/y"])
            if result.ok:
                manifest["registry"].append(reg_file.name)
            else:
                logger.warning("Could not export %s: %s", key, result.message)

        (backup_dir / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        logger.info("Backup written to %s", backup_dir)
        return backup_dir

    def list_backups(self) -> List[Path]:
        """Backup directories, newest first."""
        if not self.backup_root.is_dir():
            return []
        backups = [p for p in self.backup_root.iterdir() if (p / MANIFEST_NAME).is_file()]
        return sorted(backups, key=lambda p: p.name, reverse=True)

    def repair(self, name: Optional[str] = None) -> RepairResult:
        """Backup, flush DNS, bring the RAS services up, restart RasMan, re-register DNS."""
        result = RepairResult()
        try:
            result.backup_dir = self.backup()
            result.record("Backup", True, str(result.backup_dir))
        except OSError as e:
            result.record("Backup", False, str(e))
            logger.error("Repair aborted: no backup could be taken")
            return result

        flush = self._run(["ipconfig", "/flushdns"])
        result.record("Flush DNS cache", flush.ok, "" if flush.ok else flush.message)

        for service, status in self.service_states().items():
            if status == "Running":
                continue
            if status in ("Missing", "Unknown"):
                result.record(f"Start {service}", False, f"service is {status.lower()}")
                continue
            result.record(f"Start {service}", self.services.start_service(service))

        result.record("Restart RasMan", self.services.restart_service("RasMan"))

        register = self._run(["ipconfig", "/registerdns"])
        result.record("Register DNS", register.ok, "" if register.ok else register.message)

        if name:
            server = self.enumerator.find_server_address(name)
            resolved = bool(server and self._resolver(server))
            result.record(f"Resolve {name} server", resolved, server or "server address unknown")
        return result

    def restore(self, backup_dir: Path) -> RepairResult:
        """Put back the phonebooks and registry keys saved by backup()."""
        backup_dir = Path(backup_dir)
        result = RepairResult(backup_dir=backup_dir)
        manifest_path = backup_dir / MANIFEST_NAME
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            result.record("Read manifest", False, str(e))
            return result

        for backup_name, original in manifest.get("phonebooks", {}).items():
            try:
                target = Path(original)
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(backup_dir / backup_name, target)
                result.record(f"Restore {target.name}", True, str(target))
            except OSError as e:
                result.record(f"Restore {original}", False, str(e))

        for reg_name in manifest.get("registry", []):
            imported = self._run(["reg", "import", str(backup_dir / reg_name)])
            result.record(f"Import {reg_name}", imported.ok, "" if imported.ok else imported.message)
        return result
