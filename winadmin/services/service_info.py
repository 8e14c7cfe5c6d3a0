"""
Windows Services Control.

Queries and controls Windows services through the Win32 Service Control
Manager API (win32service).
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import win32service

logger = logging.getLogger(__name__)

# Map win32service state constants to status strings
_STATE_MAP = {
    win32service.SERVICE_STOPPED: "Stopped",
    win32service.SERVICE_START_PENDING: "Start Pending",
    win32service.SERVICE_STOP_PENDING: "Stop Pending",
    win32service.SERVICE_RUNNING: "Running",
    win32service.SERVICE_CONTINUE_PENDING: "Continue Pending",
    win32service.SERVICE_PAUSE_PENDING: "Pause Pending",
    win32service.SERVICE_PAUSED: "Paused",
}

# Map win32service start type constants to start mode strings
_START_TYPE_MAP = {
    win32service.SERVICE_BOOT_START: "Boot",
    win32service.SERVICE_SYSTEM_START: "System",
    win32service.SERVICE_AUTO_START: "Auto",
    win32service.SERVICE_DEMAND_START: "Demand",
    win32service.SERVICE_DISABLED: "Disabled",
}


@dataclass
class ServiceState:
    """Current state of one Windows service."""
    name: str
    display_name: str
    status: str
    start_mode: str

    @property
    def is_running(self) -> bool:
        return self.status == "Running"


class ServiceInfo:
    """Retrieve and change Windows service state via the Win32 SCM API."""

    def __init__(self, wait_timeout: float = 30.0):
        self.wait_timeout = wait_timeout

    def get_service_info(self, name: str) -> Optional[ServiceState]:
        """Get the state of a specific service.

        Args:
            name: Service name (e.g., "RasMan", "IKEEXT")

        Returns:
            ServiceState, or None if the service does not exist
        """
        try:
            scm = win32service.OpenSCManager(None, None, win32service.SC_MANAGER_CONNECT)
            try:
                svc_handle = win32service.OpenService(
                    scm, name,
                    win32service.SERVICE_QUERY_STATUS | win32service.SERVICE_QUERY_CONFIG
                )
                try:
                    status = win32service.QueryServiceStatusEx(svc_handle)
                    # config is tuple: (svc_type, start_type, error_control, binary_path, load_order, tag_id, deps, svc_start_name, display_name)
                    config = win32service.QueryServiceConfig(svc_handle)
                    return ServiceState(
                        name=name,
                        display_name=config[8] or name,
                        status=_STATE_MAP.get(status["CurrentState"], "Unknown"),
                        start_mode=_START_TYPE_MAP.get(config[1], "Unknown"),
                    )
                finally:
                    win32service.CloseServiceHandle(svc_handle)
            finally:
                win32service.CloseServiceHandle(scm)
        except Exception as e:
            logger.debug("Service '%s' not available: %s", name, e)
            return None

    def _wait_for_state(self, svc_handle, wanted: int) -> bool:
        deadline = time.monotonic() + self.wait_timeout
        while time.monotonic() < deadline:
            if win32service.QueryServiceStatusEx(svc_handle)["CurrentState"] == wanted:
                return True
            time.sleep(0.5)
        return False

    def start_service(self, name: str) -> bool:
        """Start a Windows service and wait until it reports Running.

        Returns:
            True if the service is running, False otherwise
        """
        try:
            scm = win32service.OpenSCManager(None, None, win32service.SC_MANAGER_CONNECT)
            try:
                svc_handle = win32service.OpenService(
                    scm, name, win32service.SERVICE_START | win32service.SERVICE_QUERY_STATUS
                )
                try:
                    status = win32service.QueryServiceStatusEx(svc_handle)
                    if status["CurrentState"] == win32service.SERVICE_RUNNING:
                        return True
                    win32service.StartService(svc_handle, None)
                    return self._wait_for_state(svc_handle, win32service.SERVICE_RUNNING)
                finally:
                    win32service.CloseServiceHandle(svc_handle)
            finally:
                win32service.CloseServiceHandle(scm)
        except Exception as e:
            logger.warning("Failed to start service '%s': %s", name, e)
            return False

    def stop_service(self, name: str) -> bool:
        """Stop a Windows service and wait until it reports Stopped."""
        try:
            scm = win32service.OpenSCManager(None, None, win32service.SC_MANAGER_CONNECT)
            try:
                svc_handle = win32service.OpenService(
                    scm, name, win32service.SERVICE_STOP | win32service.SERVICE_QUERY_STATUS
                )
                try:
                    status = win32service.QueryServiceStatusEx(svc_handle)
                    if status["CurrentState"] == win32service.SERVICE_STOPPED:
                        return True
                    win32service.ControlService(svc_handle, win32service.SERVICE_CONTROL_STOP)
                    return self._wait_for_state(svc_handle, win32service.SERVICE_STOPPED)
                finally:
                    win32service.CloseServiceHandle(svc_handle)
            finally:
                win32service.CloseServiceHandle(scm)
        except Exception as e:
            logger.warning("Failed to stop service '%s': %s", name, e)
            return False

    def get_dependent_services(self, name: str) -> list[str]:
        """Names of running services that depend on this one, in stop order."""
        try:
            scm = win32service.OpenSCManager(None, None, win32service.SC_MANAGER_CONNECT)
            try:
                svc_handle = win32service.OpenService(scm, name, win32service.SERVICE_ENUMERATE_DEPENDENTS)
                try:
                    dependents = win32service.EnumDependentServices(svc_handle, win32service.SERVICE_ACTIVE)
                    return [dependent[0] for dependent in dependents]
                finally:
                    win32service.CloseServiceHandle(svc_handle)
            finally:
                win32service.CloseServiceHandle(scm)
        except Exception as e:
            logger.warning("Failed to enumerate dependents of '%s': %s", name, e)
            return []

    def restart_service(self, name: str) -> bool:
        """Restart a Windows service, stopping running dependents first.

        Dependents that were running are started again afterwards.

        Returns:
            True if the service and every dependent were stopped and started
        """
        dependents = self.get_dependent_services(name)
        stopped = all([self.stop_service(dependent) for dependent in dependents])
        stopped = self.stop_service(name) and stopped
        if stopped:
            time.sleep(0.5)
        started = self.start_service(name)
        for dependent in reversed(dependents):
            started = self.start_service(dependent) and started
        return started and stopped


# Global instances
_service_info_instance: Optional[ServiceInfo] = None


def get_service_info() -> ServiceInfo:
    """Get the global ServiceInfo instance (singleton)."""
    global _service_info_instance
    if _service_info_instance is None:
        _service_info_instance = ServiceInfo()
    return _service_info_instance
