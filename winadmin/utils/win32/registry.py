"""Safe wrappers around winreg with consistent error handling.

Paths are addressed by hive name ("HKCU", "HKLM", "HKU", "HKCR") plus a
backslash-separated subkey path, so callers never touch winreg constants.
"""
import logging
import winreg
from typing import Any, Optional

logger = logging.getLogger(__name__)

HIVES = {
    "HKCU": winreg.HKEY_CURRENT_USER,
    "HKLM": winreg.HKEY_LOCAL_MACHINE,
    "HKU": winreg.HKEY_USERS,
    "HKCR": winreg.HKEY_CLASSES_ROOT,
}

VALUE_TYPES = {
    "REG_SZ": winreg.REG_SZ,
    "REG_EXPAND_SZ": winreg.REG_EXPAND_SZ,
    "REG_DWORD": winreg.REG_DWORD,
    "REG_QWORD": winreg.REG_QWORD,
    "REG_MULTI_SZ": winreg.REG_MULTI_SZ,
}


def _root(hive: str) -> int:
    try:
        return HIVES[hive.upper()]
    except KeyError:
        raise ValueError(f"Unknown registry hive: {hive}") from None


def read_value(hive: str, path: str, name: str) -> Optional[Any]:
    """Read a value of any type. Returns None on any failure."""
    try:
        key = winreg.OpenKey(_root(hive), path, 0, winreg.KEY_READ)
        try:
            value, _ = winreg.QueryValueEx(key, name)
            return value
        finally:
            winreg.CloseKey(key)
    except OSError:
        return None


def key_exists(hive: str, path: str) -> bool:
    try:
        winreg.CloseKey(winreg.OpenKey(_root(hive), path, 0, winreg.KEY_READ))
        return True
    except OSError:
        return False


def enumerate_subkeys(hive: str, path: str) -> list[str]:
    """Enumerate all subkey names under a registry path. Returns empty list on failure."""
    try:
        key = winreg.OpenKey(_root(hive), path, 0, winreg.KEY_READ)
        try:
            subkeys = []
            i = 0
            while True:
                try:
                    subkeys.append(winreg.EnumKey(key, i))
                    i += 1
                except OSError:
                    break
            return subkeys
        finally:
            winreg.CloseKey(key)
    except OSError:
        return []


def write_value(hive: str, path: str, name: str, value: Any, value_type: str = "REG_SZ") -> bool:
    """Create the key if needed and set a value. Returns False on failure."""
    try:
        with winreg.CreateKeyEx(_root(hive), path, 0, winreg.KEY_WRITE) as key:
            winreg.SetValueEx(key, name, 0, VALUE_TYPES[value_type], value)
        return True
    except OSError as e:
        logger.warning("Failed to write %s\\%s [%s]: %s", hive, path, name, e)
        return False


def delete_value(hive: str, path: str, name: str) -> bool:
    """Delete a value. A value that is already absent counts as deleted."""
    try:
        with winreg.OpenKey(_root(hive), path, 0, winreg.KEY_SET_VALUE) as key:
            winreg.DeleteValue(key, name)
        return True
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning("Failed to delete %s\\%s [%s]: %s", hive, path, name, e)
        return False


def delete_key_tree(hive: str, path: str) -> bool:
    """Delete a key and all of its subkeys. A missing key counts as deleted."""
    for child in enumerate_subkeys(hive, path):
        if not delete_key_tree(hive, f"{path}\\{child}"):
            return False
    try:
        winreg.DeleteKey(_root(hive), path)
        return True
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning("Failed to delete key %s\\%s: %s", hive, path, e)
        return False


class WinRegistry:
    """Registry store backed by winreg.

    Services take a store object instead of calling winreg directly so the
    same code can run against an in-memory store.
    """

    def read_value(self, hive: str, path: str, name: str) -> Optional[Any]:
        return read_value(hive, path, name)

    def key_exists(self, hive: str, path: str) -> bool:
        return key_exists(hive, path)

    def enumerate_subkeys(self, hive: str, path: str) -> list[str]:
        return enumerate_subkeys(hive, path)

    def write_value(self, hive: str, path: str, name: str, value: Any, value_type: str = "REG_SZ") -> bool:
        return write_value(hive, path, name, value, value_type)

    def delete_value(self, hive: str, path: str, name: str) -> bool:
        return delete_value(hive, path, name)

    def delete_key(self, hive: str, path: str) -> bool:
        return delete_key_tree(hive, path)
