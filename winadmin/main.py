"""Main entry point for WinAdmin Tools"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from winadmin import __version__
from winadmin.utils.logging_utils import configure_logging

logger = logging.getLogger(__name__)


def _print_steps(result) -> None:
    for step in result.steps:
        status = "OK  " if step.ok else "FAIL"
        print(f"[{status}] {step.name}" + (f" - {step.message}" if step.message else ""))


def _warn_if_not_elevated() -> None:
    if sys.platform != "win32":
        return
    from winadmin.utils.win32.security import is_user_admin
    if not is_user_admin():
        logger.warning("Not running elevated; machine-wide changes will fail")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer") from None
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


# Command handlers

def cmd_cloud_storage(args: argparse.Namespace) -> int:
    from winadmin.services.cloud_storage import CloudStorageManager

    configure_logging("CloudStorageManager", args.verbose)
    _warn_if_not_elevated()
    result = CloudStorageManager().configure(
        args.provider, remove_onedrive=args.remove_onedrive, set_as_default=args.set_as_default
    )
    _print_steps(result)
    return 0 if result.ok else 1


def cmd_remove_onedrive(args: argparse.Namespace) -> int:
    from winadmin.services.onedrive_removal import OneDriveRemover

    configure_logging("OneDriveRemoval", args.verbose)
    _warn_if_not_elevated()
    result = OneDriveRemover().remove()
    _print_steps(result)
    return 0 if result.ok else 1


def cmd_vpn(args: argparse.Namespace) -> int:
    from winadmin.services.vpn_troubleshooter import VpnTroubleshooter

    configure_logging("VpnTroubleshooter", args.verbose)
    troubleshooter = VpnTroubleshooter()

    if args.vpn_command == "list":
        discovery = troubleshooter.enumerator.discover()
        if not discovery.names:
            print(discovery.summary)
        for name in discovery.names:
            print(name)
        return 0

    if args.vpn_command == "diagnose":
        cancel_event = threading.Event()
        previous = signal.signal(signal.SIGINT, lambda *_: cancel_event.set())
        try:
            report = troubleshooter.diagnose(args.name, cancel_event)
        finally:
            signal.signal(signal.SIGINT, previous)
        print("Connections: " + (", ".join(report.connections) or "none"))
        for service, status in report.services.items():
            print(f"  {service:<12} {status}")
        for check in report.checks:
            print(f"{check.name}: server={check.server or '?'} addresses={', '.join(check.addresses) or '-'}")
            for probe in check.probes:
                print(f"  {probe.protocol:<5} {probe.port:<5} {'reachable' if probe.reachable else probe.detail}")
        if report.cancelled:
            print("Diagnostics cancelled.")
        for issue in report.issues:
            print(f"Issue: {issue}")
        return 0 if not report.issues else 1

    if args.vpn_command == "repair":
        _warn_if_not_elevated()
        result = troubleshooter.repair(args.name)
        _print_steps(result)
        return 0 if result.ok else 1

    if args.vpn_command == "restore":
        _warn_if_not_elevated()
        result = troubleshooter.restore(Path(args.backup))
        _print_steps(result)
        return 0 if result.ok else 1

    if args.vpn_command == "backups":
        backups = troubleshooter.list_backups()
        if not backups:
            print("No backups found")
        for backup in backups:
            print(backup)
        return 0
    return 2


def cmd_watchdog(args: argparse.Namespace) -> int:
    from winadmin.services.network_watchdog import NetworkWatchdog, WatchdogConfig

    # The dashboard owns the console; log records go to the file only
    configure_logging("NetworkWatchdog", args.verbose, console=False)
    _warn_if_not_elevated()
    config = WatchdogConfig(
        adapter_pattern=args.adapter_pattern,
        failure_threshold=args.failure_threshold,
        test_interval=args.test_interval,
    )
    try:
        NetworkWatchdog(config).run()
    except KeyboardInterrupt:
        logger.info("Watchdog stopped by user")
    return 0


def cmd_dns(args: argparse.Namespace) -> int:
    from winadmin.services.dns_updater import DnsUpdater

    configure_logging("DnsUpdater", args.verbose)
    updater = DnsUpdater()
    if args.dns_command == "show":
        for adapter in updater.matching_adapters(args.adapter_pattern):
            print(f"{adapter}: {', '.join(updater.get_dns_servers(adapter)) or 'none'}")
        return 0
    _warn_if_not_elevated()
    if args.dns_command == "set":
        results = updater.update_dns(args.servers, args.adapter_pattern)
    else:
        results = updater.reset_dns(args.adapter_pattern)
    for update in results:
        print(f"[{'OK  ' if update.ok else 'FAIL'}] {update.adapter} - {update.message}")
    return 0 if results and all(u.ok for u in results) else 1


def cmd_timezone(args: argparse.Namespace) -> int:
    from winadmin.services.timezone_config import TimezoneConfigurator

    configure_logging("TimezoneConfig", args.verbose)
    _warn_if_not_elevated()
    configurator = TimezoneConfigurator()
    if args.timezone_command == "install-task":
        return 0 if configurator.install_task() else 1
    if args.timezone_command == "remove-task":
        return 0 if configurator.remove_task() else 1
    result = configurator.run()
    print(result.message)
    return 0 if result.ok else 1


def cmd_dropbox_save(args: argparse.Namespace) -> int:
    """Exit 0 when compliant/remediated, 1 otherwise.

    Unexpected exceptions are not caught so the deployment host sees a failure.
    """
    from winadmin.services.dropbox_save_location import DropboxSaveLocation

    configure_logging("DropboxSaveLocation", args.verbose)
    _warn_if_not_elevated()
    tool = DropboxSaveLocation()
    ok = tool.detect() if args.mode == "detect" else tool.remediate()
    print("Compliant" if ok else "Not compliant")
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    from winadmin.services.cloud_storage import PROVIDER_CHOICES

    parser = argparse.ArgumentParser(prog="winadmin", description="Windows administration tools")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("cloud-storage", help="configure the Office cloud storage provider")
    p.add_argument("--provider", required=True, choices=PROVIDER_CHOICES)
    p.add_argument("--remove-onedrive", action="store_true", help="also uninstall OneDrive")
    p.add_argument("--set-as-default", action="store_true", help="make the provider folder Office's default")
    p.set_defaults(func=cmd_cloud_storage)

    p = sub.add_parser("remove-onedrive", help="uninstall OneDrive and clean up after it")
    p.set_defaults(func=cmd_remove_onedrive)

    p = sub.add_parser("vpn", help="VPN troubleshooter")
    vpn = p.add_subparsers(dest="vpn_command", required=True)
    vpn.add_parser("list", help="list VPN connections")
    d = vpn.add_parser("diagnose", help="check services, name resolution and ports")
    d.add_argument("--name", help="connection to check (default: all)")
    r = vpn.add_parser("repair", help="backup then run the repair sequence")
    r.add_argument("--name", help="connection to verify afterwards")
    r = vpn.add_parser("restore", help="restore a backup")
    r.add_argument("backup", help="backup directory")
    vpn.add_parser("backups", help="list backups, newest first")
    p.set_defaults(func=cmd_vpn)

    p = sub.add_parser("watchdog", help="monitor connectivity and reset adapters on failure")
    p.add_argument("--adapter-pattern", default="*", help="wildcard for adapter names (default: *)")
    p.add_argument("--failure-threshold", type=_positive_int, default=3,
                   help="consecutive failed cycles before a reset (default: 3)")
    p.add_argument("--test-interval", type=_positive_int, default=30,
                   help="seconds between cycles (default: 30)")
    p.set_defaults(func=cmd_watchdog)

    p = sub.add_parser("dns", help="set or reset adapter DNS servers")
    dns = p.add_subparsers(dest="dns_command", required=True)
    s = dns.add_parser("set", help="use static DNS servers")
    s.add_argument("servers", nargs="+", help="IPv4 addresses, primary first")
    s.add_argument("--adapter-pattern", default="*")
    s = dns.add_parser("reset", help="go back to DHCP-assigned DNS")
    s.add_argument("--adapter-pattern", default="*")
    s = dns.add_parser("show", help="show configured DNS servers")
    s.add_argument("--adapter-pattern", default="*")
    p.set_defaults(func=cmd_dns)

    p = sub.add_parser("timezone", help="set the timezone from IP geolocation")
    tz = p.add_subparsers(dest="timezone_command", required=True)
    tz.add_parser("run", help="detect and apply now")
    tz.add_parser("install-task", help="run at logon and startup")
    tz.add_parser("remove-task", help="remove the scheduled tasks")
    p.set_defaults(func=cmd_timezone)

    p = sub.add_parser("dropbox-save", help="Dropbox default save location (MDM detect/remediate)")
    p.add_argument("mode", choices=("detect", "remediate"))
    p.set_defaults(func=cmd_dropbox_save)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main application entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "dns" and args.dns_command == "set":
        from winadmin.services.dns_updater import validate_servers
        try:
            args.servers = validate_servers(args.servers)
        except ValueError as e:
            parser.error(str(e))

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
