"""Periodic battery status reads feeding the telemetry sink."""

import logging
import threading
from typing import Optional

from shared.addon_base import run_addon_loop

from .models import BatteryStatus
from .sonnen_api import BatteryApiError
from .telemetry import TelemetrySink

logger = logging.getLogger(__name__)


class StatusPoller:
    """Reads status on a fixed interval, independent of the discharge window."""

    def __init__(self, name: str, client, telemetry: TelemetrySink):
        self.name = name
        self.client = client
        self.telemetry = telemetry

    def poll_once(self) -> Optional[BatteryStatus]:
        """Read one status and record it; returns None when the read failed."""
        try:
            status = self.client.status()
        except BatteryApiError as e:
            logger.warning("Status poll for %s failed: %s", self.name, e)
            return None

        try:
            self.telemetry.record_status(self.name, status)
        except Exception as e:
            logger.error("Recording status for %s failed: %s", self.name, e)
        logger.debug(
            "Recorded status for %s: usable=%.1f discharging=%s",
            self.name,
            status.usable_remaining_capacity,
            status.discharging,
        )
        return status

    def start(self, interval_seconds: float, shutdown_event: threading.Event) -> threading.Thread:
        """Run poll_once every interval_seconds on a daemon thread."""
        thread = threading.Thread(
            target=run_addon_loop,
            args=(self.poll_once, interval_seconds, shutdown_event, logger),
            name=f"status-poller-{self.name}",
            daemon=True,
        )
        thread.start()
        logger.info("Status poller for %s started (every %ss)", self.name, interval_seconds)
        return thread
