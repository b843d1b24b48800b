"""
offline_mode.py - Connectivity Observer

This module tracks the shop device's online/offline state and notifies
subscribers exactly once per transition. State comes either from an
injected network signal, from explicit online/offline reports, or from
the result of periodic reachability probes.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Callable, List, Awaitable
from datetime import datetime

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Connectivity")


class ConnectionMode(Enum):
    """Device connectivity modes."""
    ONLINE = "online"
    OFFLINE = "offline"


class ConnectivityObserver:
    """
    Holds the current connectivity state and fires transition callbacks.

    Monitors probe results and explicit network reports, and triggers
    reconnect/disconnect callbacks only when the mode actually changes.
    """

    def __init__(self, network_signal=None, initially_online: bool = True,
                 max_failures_before_offline: int = 3):
        self.network_signal = network_signal
        if network_signal is not None:
            initially_online = bool(network_signal.currently_online())
        self.current_mode: ConnectionMode = (
            ConnectionMode.ONLINE if initially_online else ConnectionMode.OFFLINE
        )
        self.last_probe_success: Optional[datetime] = None
        self.consecutive_failures: int = 0
        self.max_failures_before_offline = max_failures_before_offline
        self._probe_task: Optional[asyncio.Task] = None

        # Callbacks for mode changes
        self._on_mode_change_callbacks: List[Callable] = []
        self._on_reconnect_callbacks: List[Callable] = []
        self._on_disconnect_callbacks: List[Callable] = []

        logger.info(f"ConnectivityObserver initialized ({self.current_mode.value})")

    # ==================== Mode Management ====================

    def get_current_mode(self) -> ConnectionMode:
        return self.current_mode

    def is_online(self) -> bool:
        """
        Instantaneous read of the network state.

        With a network signal attached the signal is read at call time and
        any difference from the recorded mode is applied as a transition.
        """
        if self.network_signal is not None:
            online = bool(self.network_signal.currently_online())
            if online and self.current_mode != ConnectionMode.ONLINE:
                self.report_online("Network signal reports online")
            elif not online and self.current_mode != ConnectionMode.OFFLINE:
                self.report_offline("Network signal reports offline")
        return self.current_mode == ConnectionMode.ONLINE

    def is_offline(self) -> bool:
        return not self.is_online()

    def _set_mode(self, new_mode: ConnectionMode, reason: str = "") -> bool:
        """
        Internal method to set the mode and trigger callbacks.

        Returns:
            True if the mode changed
        """
        if new_mode == self.current_mode:
            return False

        old_mode = self.current_mode
        self.current_mode = new_mode

        logger.info(f"Mode changed: {old_mode.value} -> {new_mode.value} | Reason: {reason}")

        self._fire(self._on_mode_change_callbacks, old_mode, new_mode, reason)
        if new_mode == ConnectionMode.ONLINE:
            self._fire(self._on_reconnect_callbacks)
        else:
            self._fire(self._on_disconnect_callbacks)
        return True

    def _fire(self, callbacks: List[Callable], *args):
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Connectivity callback error: {e}")

    def report_online(self, reason: str = "Connection restored") -> bool:
        """Record that the network is reachable. Fires callbacks only on a transition."""
        self.consecutive_failures = 0
        return self._set_mode(ConnectionMode.ONLINE, reason)

    def report_offline(self, reason: str = "Connection lost") -> bool:
        """Record that the network is gone. Fires callbacks only on a transition."""
        self.consecutive_failures = self.max_failures_before_offline
        return self._set_mode(ConnectionMode.OFFLINE, reason)

    # ==================== Probe Handling ====================

    def on_heartbeat_success(self):
        """Called when a reachability probe to the remote database succeeds."""
        self.last_probe_success = datetime.now()
        self.consecutive_failures = 0
        if self.current_mode == ConnectionMode.OFFLINE:
            self._set_mode(ConnectionMode.ONLINE, "Connection restored")

    def on_heartbeat_failure(self, error: str = ""):
        """Called when a reachability probe fails."""
        self.consecutive_failures += 1

        logger.warning(
            f"Probe failed ({self.consecutive_failures}/{self.max_failures_before_offline}): {error}"
        )

        if self.consecutive_failures >= self.max_failures_before_offline:
            self._set_mode(
                ConnectionMode.OFFLINE,
                f"Connection lost after {self.consecutive_failures} failures"
            )

    async def probe_loop(self, probe: Callable[[], Awaitable[bool]], interval: float = 15.0):
        """
        Periodically run `probe` and feed the result into the heartbeat handlers.

        A safety net next to the transition reports; it may cause extra sync
        attempts on reconnect, which the sync manager skips while one is running.
        """
        logger.info(f"Probe loop started (every {interval}s)")
        while True:
            try:
                reachable = await probe()
            except Exception as e:
                logger.debug(f"Probe raised: {e}")
                reachable = False

            if reachable:
                self.on_heartbeat_success()
            else:
                self.on_heartbeat_failure("remote store unreachable")

            await asyncio.sleep(interval)

    def start_probing(self, probe: Callable[[], Awaitable[bool]], interval: float = 15.0) -> asyncio.Task:
        """Schedule probe_loop on the running event loop."""
        if self._probe_task is None or self._probe_task.done():
            self._probe_task = asyncio.create_task(self.probe_loop(probe, interval))
        return self._probe_task

    # ==================== Callbacks ====================

    @staticmethod
    def _subscribe(callbacks: List[Callable], callback: Callable) -> Callable[[], None]:
        callbacks.append(callback)

        def unsubscribe():
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def on_mode_change(self, callback: Callable) -> Callable[[], None]:
        """
        Register a callback for mode changes.

        Callback signature: (old_mode: ConnectionMode, new_mode: ConnectionMode, reason: str)
        """
        return self._subscribe(self._on_mode_change_callbacks, callback)

    def on_reconnect(self, callback: Callable) -> Callable[[], None]:
        """
        Register a callback for when connection is restored.

        Callback signature: ()
        """
        return self._subscribe(self._on_reconnect_callbacks, callback)

    def on_disconnect(self, callback: Callable) -> Callable[[], None]:
        """Register a callback for when connection is lost. Callback signature: ()"""
        return self._subscribe(self._on_disconnect_callbacks, callback)

    def close(self):
        """Drop all subscribers and stop the probe loop."""
        if self._probe_task is not None and not self._probe_task.done():
            self._probe_task.cancel()
        self._probe_task = None
        self._on_mode_change_callbacks.clear()
        self._on_reconnect_callbacks.clear()
        self._on_disconnect_callbacks.clear()

    # ==================== Status Report ====================

    def get_status(self) -> dict:
        """Get current status as a dictionary."""
        return {
            "mode": self.current_mode.value,
            "is_online": self.current_mode == ConnectionMode.ONLINE,
            "last_probe": self.last_probe_success.isoformat() if self.last_probe_success else None,
            "consecutive_failures": self.consecutive_failures
        }
