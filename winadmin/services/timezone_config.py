"""
Timezone Auto-Configuration.

Looks up the machine's public IP, geolocates it to an IANA timezone, maps
that to a Windows timezone id and applies it with tzutil. The last result is
tracked in the registry so unchanged networks skip the geolocation calls.
Meant to run from a scheduled task at logon and startup.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence

import requests

from winadmin import settings
from winadmin.utils import default_registry
from winadmin.utils.commands import CommandResult, run_command

logger = logging.getLogger(__name__)

IP_LOOKUP_URL = "https://api.ipify.org?format=json"
GEO_PRIMARY_URL = "http://ip-api.com/json/{ip}?fields=status,message,timezone"
GEO_FALLBACK_URL = "https://ipapi.co/{ip}/json/"
HTTP_TIMEOUT = 10

TRACKING_KEY = settings.TRACKING_KEY + r"\TimezoneConfig"

TASK_NAMES = {
    "ONLOGON": "WinAdmin Timezone Config (Logon)",
    "ONSTART": "WinAdmin Timezone Config (Startup)",
}

# IANA zone -> Windows timezone id (CLDR windowsZones, territory-specific entries)
IANA_TO_WINDOWS: Dict[str, str] = {
    "Etc/UTC": "UTC",
    "UTC": "UTC",
    "Pacific/Honolulu": "Hawaiian Standard Time",
    "America/Anchorage": "Alaskan Standard Time",
    "America/Los_Angeles": "Pacific Standard Time",
    "America/Vancouver": "Pacific Standard Time",
    "America/Tijuana": "Pacific Standard Time (Mexico)",
    "America/Phoenix": "US Mountain Standard Time",
    "America/Denver": "Mountain Standard Time",
    "America/Boise": "Mountain Standard Time",
    "America/Edmonton": "Mountain Standard Time",
    "America/Chicago": "Central Standard Time",
    "America/Winnipeg": "Central Standard Time",
    "America/Mexico_City": "Central Standard Time (Mexico)",
    "America/Regina": "Canada Central Standard Time",
    "America/New_York": "Eastern Standard Time",
    "America/Detroit": "Eastern Standard Time",
    "America/Toronto": "Eastern Standard Time",
    "America/Indiana/Indianapolis": "US Eastern Standard Time",
    "America/Bogota": "SA Pacific Standard Time",
    "America/Lima": "SA Pacific Standard Time",
    "America/Halifax": "Atlantic Standard Time",
    "America/Caracas": "Venezuela Standard Time",
    "America/Santiago": "Pacific SA Standard Time",
    "America/St_Johns": "Newfoundland Standard Time",
    "America/Sao_Paulo": "E. South America Standard Time",
    "America/Argentina/Buenos_Aires": "Argentina Standard Time",
    "America/Montevideo": "Montevideo Standard Time",
    "Atlantic/Reykjavik": "Greenwich Standard Time",
    "Europe/London": "GMT Standard Time",
    "Europe/Dublin": "GMT Standard Time",
    "Europe/Lisbon": "GMT Standard Time",
    "Europe/Berlin": "W. Europe Standard Time",
    "Europe/Amsterdam": "W. Europe Standard Time",
    "Europe/Rome": "W. Europe Standard Time",
    "Europe/Stockholm": "W. Europe Standard Time",
    "Europe/Vienna": "W. Europe Standard Time",
    "Europe/Zurich": "W. Europe Standard Time",
    "Europe/Oslo": "W. Europe Standard Time",
    "Europe/Paris": "Romance Standard Time",
    "Europe/Brussels": "Romance Standard Time",
    "Europe/Madrid": "Romance Standard Time",
    "Europe/Copenhagen": "Romance Standard Time",
    "Europe/Warsaw": "Central European Standard Time",
    "Europe/Zagreb": "Central European Standard Time",
    "Europe/Prague": "Central Europe Standard Time",
    "Europe/Budapest": "Central Europe Standard Time",
    "Europe/Belgrade": "Central Europe Standard Time",
    "Africa/Lagos": "W. Central Africa Standard Time",
    "Europe/Athens": "GTB Standard Time",
    "Europe/Bucharest": "GTB Standard Time",
    "Europe/Helsinki": "FLE Standard Time",
    "Europe/Kiev": "FLE Standard Time",
    "Europe/Kyiv": "FLE Standard Time",
    "Europe/Riga": "FLE Standard Time",
    "Europe/Vilnius": "FLE Standard Time",
    "Europe/Tallinn": "FLE Standard Time",
    "Europe/Sofia": "FLE Standard Time",
    "Africa/Cairo": "Egypt Standard Time",
    "Africa/Johannesburg": "South Africa Standard Time",
    "Asia/Jerusalem": "Israel Standard Time",
    "Europe/Istanbul": "Turkey Standard Time",
    "Europe/Moscow": "Russian Standard Time",
    "Asia/Riyadh": "Arab Standard Time",
    "Africa/Nairobi": "E. Africa Standard Time",
    "Asia/Tehran": "Iran Standard Time",
    "Asia/Dubai": "Arabian Standard Time",
    "Asia/Karachi": "Pakistan Standard Time",
    "Asia/Tashkent": "West Asia Standard Time",
    "Asia/Kolkata": "India Standard Time",
    "Asia/Calcutta": "India Standard Time",
    "Asia/Kathmandu": "Nepal Standard Time",
    "Asia/Dhaka": "Bangladesh Standard Time",
    "Asia/Bangkok": "SE Asia Standard Time",
    "Asia/Jakarta": "SE Asia Standard Time",
    "Asia/Ho_Chi_Minh": "SE Asia Standard Time",
    "Asia/Shanghai": "China Standard Time",
    "Asia/Hong_Kong": "China Standard Time",
    "Asia/Singapore": "Singapore Standard Time",
    "Asia/Kuala_Lumpur": "Singapore Standard Time",
    "Asia/Manila": "Singapore Standard Time",
    "Asia/Taipei": "Taipei Standard Time",
    "Australia/Perth": "W. Australia Standard Time",
    "Asia/Tokyo": "Tokyo Standard Time",
    "Asia/Seoul": "Korea Standard Time",
    "Australia/Adelaide": "Cen. Australia Standard Time",
    "Australia/Darwin": "AUS Central Standard Time",
    "Australia/Brisbane": "E. Australia Standard Time",
    "Australia/Sydney": "AUS Eastern Standard Time",
    "Australia/Melbourne": "AUS Eastern Standard Time",
    "Australia/Hobart": "Tasmania Standard Time",
    "Pacific/Auckland": "New Zealand Standard Time",
}


@dataclass
class TimezoneRunResult:
    ok: bool
    message: str
    public_ip: Optional[str] = None
    iana_timezone: Optional[str] = None
    windows_timezone: Optional[str] = None
    previous_timezone: Optional[str] = None
    changed: bool = False
    skipped: bool = False


class TimezoneConfigurator:
    """Detect the local timezone from the public IP and apply it."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        registry=None,
        run: Callable[[Sequence[str]], CommandResult] = run_command,
        scheduler=None,
    ):
        self.session = session or requests.Session()
        self._registry = registry
        self._run = run
        self._scheduler = scheduler

    @property
    def registry(self):
        if self._registry is None:
            self._registry = default_registry()
        return self._registry

    @property
    def scheduler(self):
        if self._scheduler is None:
            from winadmin.services.task_scheduler_info import get_task_scheduler_info
            self._scheduler = get_task_scheduler_info()
        return self._scheduler

    # HTTP lookups

    def _get_json(self, url: str) -> dict:
        response = self.session.get(url, timeout=HTTP_TIMEOUT)
        response.raise_for_status()
        return response.json()

    def lookup_public_ip(self) -> str:
        data = self._get_json(IP_LOOKUP_URL)
        ip = data.get("ip")
        if not ip:
            raise ValueError("IP lookup returned no address")
        return ip

    def _geolocate_primary(self, ip: str) -> str:
        data = self._get_json(GEO_PRIMARY_URL.format(ip=ip))
        if data.get("status") != "success" or not data.get("timezone"):
            raise ValueError(data.get("message") or "no timezone in response")
        return data["timezone"]

    def _geolocate_fallback(self, ip: str) -> str:
        data = self._get_json(GEO_FALLBACK_URL.format(ip=ip))
        if data.get("error") or not data.get("timezone"):
            raise ValueError(data.get("reason") or "no timezone in response")
        return data["timezone"]

    def geolocate_timezone(self, ip: str) -> str:
        """IANA timezone for ip: primary service, then the fallback."""
        try:
            return self._geolocate_primary(ip)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Primary geolocation failed: %s; trying fallback", e)
        return self._geolocate_fallback(ip)

    # tzutil

    def current_timezone(self) -> Optional[str]:
        result = self._run(["tzutil", "/g"])
        if not result.ok:
            logger.warning("tzutil /g failed: %s", result.message)
            return None
        return result.stdout.strip() or None

    def set_timezone(self, windows_id: str) -> bool:
        result = self._run(["tzutil", "/s", windows_id])
        if not result.ok:
            logger.error("tzutil /s %s failed: %s", windows_id, result.message)
        return result.ok

    # Tracking metadata

    def read_tracking(self) -> Dict[str, Optional[str]]:
        return {
            name: self.registry.read_value("HKLM", TRACKING_KEY, name)
            for name in ("LastRun", "LastPublicIP", "LastIanaTimezone", "LastWindowsTimezone", "LastResult")
        }

    def write_tracking(self, result: TimezoneRunResult) -> None:
        values = {
            "LastRun": datetime.now().isoformat(timespec="seconds"),
            "LastResult": result.message,
        }
        if result.public_ip:
            values["LastPublicIP"] = result.public_ip
        if result.ok and result.iana_timezone:
            values["LastIanaTimezone"] = result.iana_timezone
        if result.ok and result.windows_timezone:
            values["LastWindowsTimezone"] = result.windows_timezone
        for name, value in values.items():
            if not self.registry.write_value("HKLM", TRACKING_KEY, name, value, "REG_SZ"):
                logger.warning("Could not record %s in tracking key", name)

    def run(self) -> TimezoneRunResult:
        """One detection pass; always records the outcome in the tracking key."""
        result = self._detect_and_apply()
        (logger.info if result.ok else logger.error)("Timezone run: %s", result.message)
        self.write_tracking(result)
        return result

    def _detect_and_apply(self) -> TimezoneRunResult:
        try:
            ip = self.lookup_public_ip()
        except (requests.RequestException, ValueError) as e:
            return TimezoneRunResult(False, f"Public IP lookup failed: {e}")
        logger.info("Public IP: %s", ip)

        current = self.current_timezone()
        tracking = self.read_tracking()
        if (
            current
            and tracking.get("LastPublicIP") == ip
            and tracking.get("LastWindowsTimezone") == current
        ):
            return TimezoneRunResult(
                True, f"Public IP unchanged; timezone stays {current}",
                public_ip=ip, iana_timezone=tracking.get("LastIanaTimezone"),
                windows_timezone=current, previous_timezone=current, skipped=True,
            )

        try:
            iana = self.geolocate_timezone(ip)
        except (requests.RequestException, ValueError) as e:
            return TimezoneRunResult(False, f"Geolocation failed: {e}", public_ip=ip, previous_timezone=current)

        windows_id = IANA_TO_WINDOWS.get(iana)
        if not windows_id:
            return TimezoneRunResult(
                False, f"No Windows timezone mapping for {iana}",
                public_ip=ip, iana_timezone=iana, previous_timezone=current,
            )

        if windows_id == current:
            return TimezoneRunResult(
                True, f"Timezone already {windows_id}", public_ip=ip,
                iana_timezone=iana, windows_timezone=windows_id, previous_timezone=current,
            )
        if not self.set_timezone(windows_id):
            return TimezoneRunResult(
                False, f"Failed to set timezone {windows_id}", public_ip=ip,
                iana_timezone=iana, previous_timezone=current,
            )
        return TimezoneRunResult(
            True, f"Timezone changed from {current or 'unknown'} to {windows_id}", public_ip=ip,
            iana_timezone=iana, windows_timezone=windows_id, previous_timezone=current, changed=True,
        )

    # Scheduled tasks

    def install_task(self, python: str = sys.executable) -> bool:
        """Register the logon and startup tasks that call `winadmin timezone run`."""
        ok = True
        for schedule_type, task_name in TASK_NAMES.items():
            created, message = self.scheduler.create_task(
                task_name, python, schedule_type,
                arguments="-m winadmin timezone run", run_as_system=True,
            )
            if created:
                logger.info("Scheduled task '%s' registered", task_name)
            else:
                logger.error("Failed to register task '%s': %s", task_name, message)
                ok = False
        return ok

    def remove_task(self) -> bool:
        ok = True
        for task_name in TASK_NAMES.values():
            if not self.scheduler.task_exists(f"\\{task_name}"):
                logger.info("Scheduled task '%s' is not registered", task_name)
                continue
            if self.scheduler.delete_task(f"\\{task_name}"):
                logger.info("Scheduled task '%s' removed", task_name)
            else:
                ok = False
        return ok
