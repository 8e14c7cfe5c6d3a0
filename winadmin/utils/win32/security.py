"""Current-user identity and elevation checks through win32security."""
import logging
from typing import Optional

import win32api
import win32security

logger = logging.getLogger(__name__)


def get_current_user_sid() -> Optional[str]:
    """SID string of the account owning this process, read from its token."""
    try:
        token = win32security.OpenProcessToken(win32api.GetCurrentProcess(), win32security.TOKEN_QUERY)
        try:
            sid, _ = win32security.GetTokenInformation(token, win32security.TokenUser)
        finally:
            token.Close()
        return win32security.ConvertSidToStringSid(sid)
    except Exception as e:
        logger.warning("Failed to get user SID: %s", e)
        return None


def is_user_admin() -> bool:
    """True when the process token carries BUILTIN\\Administrators, i.e. runs elevated."""
    try:
        admins = win32security.CreateWellKnownSid(win32security.WinBuiltinAdministratorsSid, None)
        return bool(win32security.CheckTokenMembership(None, admins))
    except Exception as e:
        logger.debug("Elevation check failed: %s", e)
        return False
