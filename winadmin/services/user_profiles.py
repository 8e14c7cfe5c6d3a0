"""
User Profile Service.

Resolves the per-user registry roots the tools write to: the current user
through HKCU, plus every other profile whose hive is already loaded under
HKEY_USERS. Profiles that are not loaded are reported and skipped.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from winadmin.utils import default_registry

logger = logging.getLogger(__name__)

PROFILE_LIST_KEY = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\ProfileList"

# Local and domain user accounts; excludes SYSTEM, LOCAL SERVICE, etc.
_USER_SID_RE = re.compile(r"^S-1-5-21-[\d-]+$")


@dataclass
class UserContext:
    """A user whose registry settings can be read and written right now."""
    sid: Optional[str]
    hive: str  # "HKCU" for the current user, "HKU" for other loaded profiles
    prefix: str  # SID under HKU, empty for HKCU
    profile_path: Optional[str]

    @property
    def is_current_user(self) -> bool:
        return self.hive == "HKCU"

    @property
    def label(self) -> str:
        if self.is_current_user:
            return f"current user ({self.sid})" if self.sid else "current user"
        return self.sid or "unknown user"

    def key(self, path: str) -> str:
        """Translate an HKCU-relative path into a path under this user's hive."""
        return f"{self.prefix}\\{path}" if self.prefix else path

    @property
    def local_appdata(self) -> Optional[Path]:
        if self.is_current_user and os.environ.get("LOCALAPPDATA"):
            return Path(os.environ["LOCALAPPDATA"])
        return Path(self.profile_path) / "AppData" / "Local" if self.profile_path else None

    @property
    def roaming_appdata(self) -> Optional[Path]:
        if self.is_current_user and os.environ.get("APPDATA"):
            return Path(os.environ["APPDATA"])
        return Path(self.profile_path) / "AppData" / "Roaming" if self.profile_path else None


def _current_user_sid() -> Optional[str]:
    from winadmin.utils.win32.security import get_current_user_sid
    return get_current_user_sid()


def get_profile_path(registry, sid: str) -> Optional[str]:
    """ProfileImagePath for a SID, with environment variables expanded."""
    value = registry.read_value("HKLM", f"{PROFILE_LIST_KEY}\\{sid}", "ProfileImagePath")
    return os.path.expandvars(str(value)) if value else None


def get_user_contexts(
    registry=None,
    current_sid: Optional[str] = None,
    sid_lookup: Optional[Callable[[], Optional[str]]] = None,
) -> List[UserContext]:
    """List the current user first, then other loaded user hives.

    Args:
        registry: Registry store (defaults to winreg)
        current_sid: SID of the current user, looked up when not given
        sid_lookup: Function returning the current SID (defaults to the token lookup)
    """
    registry = registry or default_registry()
    if current_sid is None:
        try:
            current_sid = (sid_lookup or _current_user_sid)()
        except Exception as e:
            logger.warning("Failed to resolve current user SID: %s", e)

    contexts = [
        UserContext(
            sid=current_sid,
            hive="HKCU",
            prefix="",
            profile_path=os.environ.get("USERPROFILE")
            or (get_profile_path(registry, current_sid) if current_sid else None),
        )
    ]

    loaded = set(registry.enumerate_subkeys("HKU", ""))
    for sid in sorted(registry.enumerate_subkeys("HKLM", PROFILE_LIST_KEY)):
        if not _USER_SID_RE.match(sid) or sid == current_sid:
            continue
        if sid not in loaded:
            logger.info("Profile %s is not loaded; skipped", sid)
            continue
        contexts.append(
            UserContext(sid=sid, hive="HKU", prefix=sid, profile_path=get_profile_path(registry, sid))
        )
    return contexts
