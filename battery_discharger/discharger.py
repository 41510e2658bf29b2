"""Daily discharge cycle for a single battery.

One cycle per day:

    compute window -> wait for start -> decide -> monitor -> wait for next cycle

The monitor races a periodic status check against the window's stop
deadline; whichever fires first ends the session with one stop command.
Telemetry failures are logged and never interrupt the cycle.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from .clock import Clock
from .models import BatteryStatus, CycleWindow, DischargeSession, Schedule, StopReason
from .telemetry import TelemetrySink

logger = logging.getLogger(__name__)

DEFAULT_MONITOR_INTERVAL = timedelta(minutes=1)

DEADLINE_TRIGGER = "deadline"
CHECK_TRIGGER = "check"


class Discharger:
    """Start and stop discharge of one battery on a daily window."""

    def __init__(
        self,
        schedule: Schedule,
        client,
        telemetry: TelemetrySink,
        clock: Clock,
        name: str = "battery",
        monitor_interval: timedelta = DEFAULT_MONITOR_INTERVAL,
    ):
        """Initialize the discharger.

        Args:
            schedule: Daily window and capacity threshold
            client: Device client with status(), start_discharge() and stop_discharge()
            telemetry: Sink for status and discharging-state gauges
            clock: Time source used for every wait
            name: Battery label used in logs and telemetry
            monitor_interval: Period of the status check while discharging
        """
        if monitor_interval <= timedelta(0):
            raise ValueError("monitor_interval must be positive")
        self.schedule = schedule
        self.client = client
        self.telemetry = telemetry
        self.clock = clock
        self.name = name
        self.monitor_interval = monitor_interval

    @property
    def threshold(self) -> float:
        return self.schedule.capacity_threshold

    def compute_window(self, now: Optional[datetime] = None) -> CycleWindow:
        """Anchor the schedule's clocks to today, rolling over where needed.

        A stop clock earlier than the start clock belongs to the next day.
        If today's window has already ended, the next day's window is returned.
        """
        if now is None:
            now = self.clock.now()

        today = now.date()
        start = datetime.combine(today, self.schedule.start_clock, tzinfo=now.tzinfo)
        stop = datetime.combine(today, self.schedule.stop_clock, tzinfo=now.tzinfo)
        if self.schedule.spans_midnight:
            stop += timedelta(days=1)

        window = CycleWindow(start, stop)
        if now > window.stop:
            window = window.shifted(days=1)
        return window

    def run(self) -> None:
        """Run daily cycles until the clock reports shutdown."""
        logger.info(
            "Discharge loop started for %s: window %s-%s, threshold %.1f",
            self.name,
            self.schedule.start_clock.strftime("%H:%M"),
            self.schedule.stop_clock.strftime("%H:%M"),
            self.threshold,
        )
        while self.run_cycle():
            pass
        logger.info("Discharge loop for %s stopped", self.name)

    def run_cycle(self) -> bool:
        """Run one full cycle.

        Returns:
            False if shutdown was requested during the cycle
        """
        now = self.clock.now()
        window = self.compute_window(now)
        logger.info(
            "Next cycle: start=%s stop=%s now=%s threshold=%.1f",
            window.start.isoformat(timespec="seconds"),
            window.stop.isoformat(timespec="seconds"),
            now.isoformat(timespec="seconds"),
            self.threshold,
        )

        logger.info("Waiting until start time %s", window.start.isoformat(timespec="seconds"))
        if not self.clock.sleep_until(window.start):
            return False

        session = self._start_if_charged(window)
        if session is not None:
            self.monitor(session)
            if session.stop_reason is StopReason.SHUTDOWN:
                return False

        return self._await_next_cycle(window)

    def _start_if_charged(self, window: CycleWindow) -> Optional[DischargeSession]:
        logger.info("Checking battery %s before discharge (limit %.1f)", self.name, self.threshold)
        status = self._read_status()
        if status is None:
            logger.warning("Battery status unavailable at window start, skipping today's discharge")
            return None

        if status.usable_remaining_capacity <= self.threshold:
            logger.info(
                "Battery level %.1f is at or below the limit %.1f, no discharge needed",
                status.usable_remaining_capacity,
                self.threshold,
            )
            return None

        logger.info(
            "Battery level %.1f above limit %.1f, starting discharge until %s",
            status.usable_remaining_capacity,
            self.threshold,
            window.stop.isoformat(timespec="seconds"),
        )
        try:
            self.client.start_discharge()
        except Exception as e:
            # Keep monitoring: the device may have accepted the command anyway
            logger.error("Starting discharge failed: %s", e)
        else:
            self._record_discharging(True)

        return DischargeSession(deadline=window.stop, started_at=self.clock.now())

    def monitor(self, session: DischargeSession) -> DischargeSession:
        """Supervise an active discharge until threshold or deadline stops it."""
        next_check = session.started_at + self.monitor_interval

        while session.active:
            fired = self.clock.wait_for_first([
                (DEADLINE_TRIGGER, session.deadline),
                (CHECK_TRIGGER, next_check),
            ])

            if fired is None:
                logger.warning(
                    "Shutdown while discharging %s, the battery may keep discharging until stopped manually",
                    self.name,
                )
                session.close(StopReason.SHUTDOWN)
            elif fired == DEADLINE_TRIGGER:
                logger.info("Stop time reached, stopping discharge")
                self._stop_discharge()
                session.close(StopReason.DEADLINE)
            else:
                next_check = self._next_check_after(next_check)
                status = self._read_status()
                if status is not None and status.usable_remaining_capacity <= self.threshold:
                    logger.info(
                        "Battery level %.1f reached the limit %.1f, stopping discharge",
                        status.usable_remaining_capacity,
                        self.threshold,
                    )
                    self._stop_discharge()
                    session.close(StopReason.THRESHOLD)

        return session

    def _next_check_after(self, previous: datetime) -> datetime:
        # Checks missed while a slow status call was running are dropped
        next_check = previous + self.monitor_interval
        now = self.clock.now()
        while next_check <= now:
            next_check += self.monitor_interval
        return next_check

    def _await_next_cycle(self, window: CycleWindow) -> bool:
        next_start = window.start + timedelta(days=1)
        if next_start <= self.clock.now():
            logger.warning("Cycle overran a full day, starting the next cycle immediately")
            return True
        logger.info("Waiting for the next cycle at %s", next_start.isoformat(timespec="seconds"))
        return self.clock.sleep_until(next_start)

    def _read_status(self) -> Optional[BatteryStatus]:
        try:
            status = self.client.status()
        except Exception as e:
            logger.error("Checking battery status failed: %s", e)
            return None
        try:
            self.telemetry.record_status(self.name, status)
        except Exception as e:
            logger.error("Recording battery status failed: %s", e)
        return status

    def _stop_discharge(self) -> None:
        try:
            self.client.stop_discharge()
        except Exception as e:
            logger.error("Stopping discharge failed: %s", e)
            return
        self._record_discharging(False)

    def _record_discharging(self, discharging: bool) -> None:
        try:
            self.telemetry.record_discharging(self.name, discharging)
        except Exception as e:
            logger.error("Recording discharging state failed: %s", e)
