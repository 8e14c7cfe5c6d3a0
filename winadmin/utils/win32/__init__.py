"""Win32 native API helpers for WinAdmin.

Submodules:
    registry   - Safe winreg wrappers and the WinRegistry store
    security   - Token, SID, admin check helpers
"""
from winadmin.utils.win32.registry import (
    WinRegistry,
    read_value,
    enumerate_subkeys,
    write_value,
    delete_value,
    delete_key_tree,
    key_exists,
)
from winadmin.utils.win32.security import (
    get_current_user_sid,
    is_user_admin,
)
