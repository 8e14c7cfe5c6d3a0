"""Per-user registry settings that make Office save to a local folder by default."""

import logging
from dataclasses import dataclass
from typing import Any, List, Sequence

from winadmin.services.user_profiles import UserContext

logger = logging.getLogger(__name__)

OFFICE_ROOT = r"Software\Microsoft\Office\16.0"


@dataclass(frozen=True)
class RegistrySetting:
    """A value that should exist under a user's hive."""
    path: str
    name: str
    value: Any
    value_type: str = "REG_SZ"

    def matches(self, current: Any) -> bool:
        if current is None:
            return False
        if self.value_type == "REG_DWORD":
            try:
                return int(current) == int(self.value)
            except (TypeError, ValueError):
                return False
        # Paths: Windows compares them case-insensitively, ignore trailing separators
        return str(current).rstrip("\\").casefold() == str(self.value).rstrip("\\").casefold()


def office_default_settings(folder: str) -> List[RegistrySetting]:
    """Word/Excel default file locations plus local-first saving."""
    return [
        RegistrySetting(rf"{OFFICE_ROOT}\Word\Options", "DOC-PATH", folder, "REG_EXPAND_SZ"),
        RegistrySetting(rf"{OFFICE_ROOT}\Excel\Options", "DefaultPath", folder, "REG_EXPAND_SZ"),
        RegistrySetting(rf"{OFFICE_ROOT}\Common\General", "PreferCloudSaveLocations", 0, "REG_DWORD"),
    ]


def find_mismatches(registry, user: UserContext, settings: Sequence[RegistrySetting]) -> List[RegistrySetting]:
    """Settings whose current value differs from the wanted one."""
    mismatched = []
    for setting in settings:
        current = registry.read_value(user.hive, user.key(setting.path), setting.name)
        if not setting.matches(current):
            logger.debug("%s: %s\\%s is %r, want %r", user.label, setting.path, setting.name, current, setting.value)
            mismatched.append(setting)
    return mismatched


def apply_settings(registry, user: UserContext, settings: Sequence[RegistrySetting]) -> List[RegistrySetting]:
    """Write only the settings that differ. Returns the ones that could not be written."""
    failed = []
    for setting in find_mismatches(registry, user, settings):
        if registry.write_value(user.hive, user.key(setting.path), setting.name, setting.value, setting.value_type):
            logger.info("%s: set %s\\%s = %s", user.label, setting.path, setting.name, setting.value)
        else:
            failed.append(setting)
    return failed
