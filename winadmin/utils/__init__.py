"""Shared helpers for WinAdmin tools."""


def default_registry():
    """Return the winreg-backed registry store (winreg only exists on Windows)."""
    from winadmin.utils.win32.registry import WinRegistry
    return WinRegistry()
