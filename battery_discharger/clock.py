"""Time source and timed waits for the discharge loop.

The discharger never calls time.sleep or datetime.now directly; it goes
through a Clock so tests can drive a whole day in virtual time.
"""

import threading
from datetime import datetime, timezone, tzinfo
from typing import Optional, Sequence, Tuple

from shared.addon_base import sleep_with_shutdown_check


class Clock:
    """Interface for the discharger's notion of time."""

    def now(self) -> datetime:
        raise NotImplementedError

    def sleep_until(self, moment: datetime) -> bool:
        """Suspend until moment; return immediately if it has already passed.

        Returns:
            True when the moment was reached, False if shutdown was requested first
        """
        raise NotImplementedError

    def wait_for_first(self, triggers: Sequence[Tuple[str, datetime]]) -> Optional[str]:
        """Wait for whichever of several named moments comes first.

        Ties go to the trigger listed first.

        Returns:
            The name of the trigger that fired, or None on shutdown
        """
        name, moment = min(triggers, key=lambda trigger: trigger[1])
        if not self.sleep_until(moment):
            return None
        return name


class SystemClock(Clock):
    """Wall-clock time in a fixed timezone, interruptible by a shutdown event."""

    def __init__(self, tz: tzinfo, shutdown_event: Optional[threading.Event] = None):
        self.tz = tz
        self.shutdown_event = shutdown_event or threading.Event()

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def sleep_until(self, moment: datetime) -> bool:
        # Compare in UTC: same-zone subtraction ignores DST offset changes
        remaining = moment.astimezone(timezone.utc) - datetime.now(timezone.utc)
        return sleep_with_shutdown_check(self.shutdown_event, remaining.total_seconds())
