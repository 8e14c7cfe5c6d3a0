"""
Dropbox Default Save Location.

Detection/remediation pair for MDM deployment: Office and Explorer should
default to the user's Dropbox folder. detect() only reads, remediate()
writes the values that differ, and both report success as a boolean that
the CLI turns into exit code 0/1.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from winadmin.services.office_defaults import (
    RegistrySetting,
    apply_settings,
    find_mismatches,
    office_default_settings,
)
from winadmin.services.user_profiles import UserContext, get_user_contexts
from winadmin.utils import default_registry

logger = logging.getLogger(__name__)

EXPLORER_SHELL_FOLDERS = r"Software\Microsoft\Windows\CurrentVersion\Explorer\User Shell Folders"
# Legacy and known-folder names for Documents
DOCUMENTS_VALUE_NAMES = ("Personal", "{F42EE2D3-909F-4907-8871-4C22FC0BF756}")


def find_dropbox_folder(local_appdata: Optional[Path]) -> Optional[str]:
    """Dropbox folder from info.json: the personal account first, then business."""
    if local_appdata is None:
        return None
    info_path = Path(local_appdata) / "Dropbox" / "info.json"
    try:
        info = json.loads(info_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Could not read %s: %s", info_path, e)
        return None
    for account in ("personal", "business"):
        path = (info.get(account) or {}).get("path")
        if path:
            return path
    return None


def expected_settings(folder: str) -> List[RegistrySetting]:
    documents = os.path.join(folder, "Documents")
    return office_default_settings(folder) + [
        RegistrySetting(EXPLORER_SHELL_FOLDERS, name, documents, "REG_EXPAND_SZ")
        for name in DOCUMENTS_VALUE_NAMES
    ]


@dataclass
class UserCheck:
    user: UserContext
    folder: Optional[str] = None
    mismatches: List[RegistrySetting] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return self.folder is not None and not self.mismatches


class DropboxSaveLocation:
    """Check and enforce Dropbox as the default save location."""

    def __init__(self, registry=None, users: Optional[Callable[[], List[UserContext]]] = None):
        self.registry = registry or default_registry()
        self._users = users or (lambda: get_user_contexts(self.registry))

    def check_users(self) -> List[UserCheck]:
        checks = []
        for user in self._users():
            folder = find_dropbox_folder(user.local_appdata)
            if folder is None:
                logger.info("%s: Dropbox folder not found", user.label)
                checks.append(UserCheck(user))
                continue
            checks.append(UserCheck(user, folder, find_mismatches(self.registry, user, expected_settings(folder))))
        return checks

    def detect(self) -> bool:
        """True when every user with Dropbox already has the expected values.

        A machine where no user has a Dropbox folder is not compliant.
        """
        checks = [c for c in self.check_users() if c.folder is not None]
        if not checks:
            logger.warning("No user with a Dropbox folder was found")
            return False
        for check in checks:
            if check.compliant:
                logger.info("%s: compliant (%s)", check.user.label, check.folder)
            else:
                names = ", ".join(s.name for s in check.mismatches)
                logger.warning("%s: not compliant, differing values: %s", check.user.label, names)
        return all(c.compliant for c in checks)

    def remediate(self) -> bool:
        """Write the differing values. True when every Dropbox user ends up compliant."""
        checks = [c for c in self.check_users() if c.folder is not None]
        if not checks:
            logger.error("No user with a Dropbox folder was found; nothing to remediate")
            return False

        ok = True
        for check in checks:
            documents = os.path.join(check.folder, "Documents")
            try:
                os.makedirs(documents, exist_ok=True)
            except OSError as e:
                logger.warning("%s: could not create %s: %s", check.user.label, documents, e)
            failed = apply_settings(self.registry, check.user, expected_settings(check.folder))
            if failed:
                ok = False
                logger.error("%s: failed to write %s", check.user.label, ", ".join(s.name for s in failed))
            else:
                logger.info("%s: default save location is %s", check.user.label, check.folder)
        return ok
