# =============================================================================
# drms_core/offline/connection_manager.py
# Reachability of the DRMS API from a Field Device
# =============================================================================
"""
A device is ONLINE only when the API host accepts a TCP connection and the
/health endpoint answers. A reachable host with a silent API is DEGRADED,
which the sync engine treats the same as OFFLINE.

A field worker can pin the device offline (for metered links or when the
uplink is known to be flaky); probes are skipped until resume_online().
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from drms_core.logging import get_logger
from drms_core.models.records import format_timestamp, utcnow
from drms_core.offline.api_client import DRMSApiClient

logger = get_logger(__name__)

StatusListener = Callable[["ConnectionState"], None]


class ConnectionStatus(Enum):
    ONLINE = "online"
    DEGRADED = "degraded"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass
class ConnectionState:
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    network_available: bool = False
    api_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    forced_offline: bool = False


def classify(network_ok: bool, api_ok: bool) -> ConnectionStatus:
    if network_ok and api_ok:
        return ConnectionStatus.ONLINE
    return ConnectionStatus.DEGRADED if network_ok else ConnectionStatus.OFFLINE


class ConnectionManager:
    """
    Usage:
        manager = ConnectionManager(client)
        manager.register_callback(lambda state: print(state.status))
        manager.check_connection()
        manager.start_monitoring()
    """

    def __init__(
        self,
        client: DRMSApiClient,
        online_interval: float = 30.0,
        offline_interval: float = 10.0,
        probe_timeout: float = 5.0,
    ):
        self.client = client
        self.online_interval = online_interval
        self.offline_interval = offline_interval
        self.probe_timeout = probe_timeout

        self._state = ConnectionState()
        self._listeners: List[StatusListener] = []
        self._lock = threading.Lock()
        self._halt = threading.Event()
        self._monitor: Optional[threading.Thread] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status is ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    # === PROBING ===

    def check_connection(self) -> ConnectionState:
        """Probe the network and the API, then publish any status change."""
        if self._state.forced_offline:
            return self._state

        network_ok, api_ok = self._probe()
        with self._lock:
            state = self._state
            state.last_check = utcnow()
            state.network_available = network_ok
            state.api_available = api_ok
            previous = state.status
            state.status = classify(network_ok, api_ok)
            if state.status is ConnectionStatus.ONLINE:
                state.last_online = state.last_check
                state.consecutive_failures = 0
            else:
                state.consecutive_failures += 1

        if previous is not state.status:
            logger.info(f"Connection {previous.value} -> {state.status.value}")
            self._publish()
        return state

    def _probe(self) -> Tuple[bool, bool]:
        network_ok = self._check_network()
        return network_ok, bool(network_ok and self.client.health())

    def _check_network(self) -> bool:
        """TCP connect to the API host; no HTTP involved."""
        url = urlparse(self.client.config.base_url)
        if not url.hostname:
            return False
        port = url.port or (443 if url.scheme == "https" else 80)
        try:
            with socket.create_connection((url.hostname, port), timeout=self.probe_timeout):
                return True
        except OSError as e:
            logger.debug(f"No route to {url.hostname}:{port}: {e}")
            return False

    # === BACKGROUND MONITOR ===

    def start_monitoring(self) -> None:
        if self._monitor is not None and self._monitor.is_alive():
            return
        self._halt.clear()
        self._monitor = threading.Thread(target=self._monitor_loop, name="drms-connection-monitor", daemon=True)
        self._monitor.start()
        logger.debug("Connection monitor started")

    def stop_monitoring(self) -> None:
        self._halt.set()
        if self._monitor is not None:
            self._monitor.join(timeout=self.probe_timeout)
            self._monitor = None

    def _monitor_loop(self) -> None:
        # Poll faster while offline so queued work drains soon after the link returns
        while not self._halt.wait(self.online_interval if self.is_online else self.offline_interval):
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Connection probe crashed: {e}", exc_info=True)

    # === LISTENERS ===

    def register_callback(self, callback: StatusListener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_callback(self, callback: StatusListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Connection listener {listener!r} failed: {e}", exc_info=True)

    # === MANUAL OVERRIDE ===

    def force_offline(self) -> None:
        with self._lock:
            self._state.forced_offline = True
            self._state.status = ConnectionStatus.OFFLINE
        logger.info("Device pinned offline by user")
        self._publish()

    def resume_online(self) -> ConnectionState:
        self._state.forced_offline = False
        logger.info("Offline pin released, probing API")
        return self.check_connection()

    def get_status_display(self) -> Dict[str, object]:
        state = self._state
        return {
            "status": state.status.value,
            "is_online": self.is_online,
            "network": state.network_available,
            "api": state.api_available,
            "forced_offline": state.forced_offline,
            "last_check": format_timestamp(state.last_check),
            "last_online": format_timestamp(state.last_online),
            "failures": state.consecutive_failures,
        }
