"""Data models for the Battery Discharger add-on."""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shared.config_loader import to_bool


CLOCK_FORMATS = ("%H:%M", "%H:%M:%S")

TELEMETRY_MODES = ("prometheus", "mqtt", "both", "none")


class ScheduleConfigError(ValueError):
    """Raised when the discharge window cannot be built from configuration."""


def parse_clock(value: Any) -> time:
    """Parse an "HH:MM" or "HH:MM:SS" string into a time-of-day.

    Raises:
        ScheduleConfigError: If the value is not a valid time-of-day
    """
    if not isinstance(value, str):
        raise ScheduleConfigError(f"Time of day must be a string like '23:30', got {value!r}")
    for fmt in CLOCK_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).time()
        except ValueError:
            continue
    raise ScheduleConfigError(f"Invalid time of day: {value!r} (expected HH:MM)")


class MonitorState(Enum):
    """States of the active-discharge monitor."""
    MONITORING = "Monitoring"
    STOPPED = "Stopped"


class StopReason(Enum):
    """Which trigger ended a discharge session."""
    THRESHOLD = "threshold"
    DEADLINE = "deadline"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class Schedule:
    """Daily discharge window and the capacity it must stay above.

    When start_clock is later in the day than stop_clock the window
    spans midnight and stops on the following calendar day.
    """
    start_clock: time
    stop_clock: time
    capacity_threshold: float

    def __post_init__(self):
        if self.start_clock == self.stop_clock:
            raise ScheduleConfigError(
                f"Start and stop time are both {self.start_clock.strftime('%H:%M')}, window would be empty"
            )

    @classmethod
    def from_strings(cls, start: str, stop: str, capacity_threshold: float) -> "Schedule":
        return cls(parse_clock(start), parse_clock(stop), float(capacity_threshold))

    @property
    def spans_midnight(self) -> bool:
        return self.start_clock > self.stop_clock


@dataclass(frozen=True)
class CycleWindow:
    """Date-bound window for one cycle."""
    start: datetime
    stop: datetime

    def __post_init__(self):
        if not self.start < self.stop:
            raise ValueError(f"Window start {self.start} must be before stop {self.stop}")

    def shifted(self, days: int = 1) -> "CycleWindow":
        """Return the same window moved by whole days (wall-clock)."""
        return CycleWindow(self.start + timedelta(days=days), self.stop + timedelta(days=days))


@dataclass(frozen=True)
class BatteryStatus:
    """Point-in-time battery reading.

    Attributes:
        usable_remaining_capacity: Usable state of charge (%), compared to the threshold
        state_of_charge: Relative state of charge (%)
        remaining_capacity_wh: Remaining capacity (Wh)
        consumption_w: House consumption (W)
        pac_total_w: AC power, positive when discharging, negative when charging (W)
        discharging: Whether the battery reports it is discharging
    """
    usable_remaining_capacity: float
    state_of_charge: float = 0.0
    remaining_capacity_wh: float = 0.0
    consumption_w: float = 0.0
    pac_total_w: float = 0.0
    discharging: bool = False

    @classmethod
    def from_sonnen(cls, data: Dict[str, Any]) -> "BatteryStatus":
        """Build from a sonnenBatterie /api/v2/status payload.

        Raises:
            KeyError: If USOC is missing
            ValueError: If a numeric field cannot be converted
        """
        return cls(
            usable_remaining_capacity=float(data["USOC"]),
            state_of_charge=float(data.get("RSOC", 0)),
            remaining_capacity_wh=float(data.get("RemainingCapacity_Wh", 0)),
            consumption_w=float(data.get("Consumption_W", 0)),
            pac_total_w=float(data.get("Pac_total_W", 0)),
            discharging=to_bool(data.get("BatteryDischarging", False)),
        )


@dataclass
class DischargeSession:
    """State held only while a discharge is believed to be active."""
    deadline: datetime
    started_at: datetime
    state: MonitorState = MonitorState.MONITORING
    stop_reason: Optional[StopReason] = None

    @property
    def active(self) -> bool:
        return self.state is MonitorState.MONITORING

    def close(self, reason: StopReason) -> None:
        self.state = MonitorState.STOPPED
        self.stop_reason = reason


@dataclass
class DischargerConfig:
    """Add-on options for one battery."""
    battery_name: str = "battery"
    battery_host: str = ""
    battery_api_token: str = ""

    # Daily window
    start_time: str = "00:00"
    stop_time: str = "06:00"
    capacity_threshold: float = 20.0
    discharge_power_w: int = 3000
    timezone: str = "Europe/Amsterdam"

    # Polling
    monitor_interval_seconds: int = 60
    status_interval_seconds: int = 60
    request_timeout_seconds: int = 30

    # Telemetry
    telemetry: str = "prometheus"
    metrics_port: int = 9100

    simulation_mode: bool = False
    log_level: str = "info"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DischargerConfig":
        """Create DischargerConfig from the add-on configuration dict."""
        return cls(
            battery_name=config.get("battery_name") or "battery",
            battery_host=(config.get("battery_host") or "").rstrip("/"),
            battery_api_token=config.get("battery_api_token") or "",
            start_time=config.get("start_time", "00:00"),
            stop_time=config.get("stop_time", "06:00"),
            capacity_threshold=float(config.get("capacity_threshold", 20)),
            discharge_power_w=int(config.get("discharge_power_w", 3000)),
            timezone=config.get("timezone") or "Europe/Amsterdam",
            monitor_interval_seconds=int(config.get("monitor_interval_seconds", 60)),
            status_interval_seconds=int(config.get("status_interval_seconds", 60)),
            request_timeout_seconds=int(config.get("request_timeout_seconds", 30)),
            telemetry=str(config.get("telemetry", "prometheus")).lower(),
            metrics_port=int(config.get("metrics_port", 9100)),
            simulation_mode=to_bool(config.get("simulation_mode", False)),
            log_level=config.get("log_level", "info"),
        )

    def get_schedule(self) -> Schedule:
        """Build the discharge schedule (raises ScheduleConfigError on bad clocks)."""
        return Schedule.from_strings(self.start_time, self.stop_time, self.capacity_threshold)

    def get_timezone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ScheduleConfigError(f"Unknown timezone: {self.timezone!r}") from e

    def validate(self) -> List[str]:
        """Validate configuration and return list of warnings.

        Fatal problems are prefixed with "ERROR:".
        """
        warnings = []

        if not self.simulation_mode:
            if not self.battery_host:
                warnings.append("ERROR: battery_host is required unless simulation_mode is on")
            if not self.battery_api_token:
                warnings.append("ERROR: battery_api_token is required unless simulation_mode is on")

        try:
            self.get_schedule()
        except ScheduleConfigError as e:
            warnings.append(f"ERROR: {e}")

        try:
            self.get_timezone()
        except ScheduleConfigError as e:
            warnings.append(f"ERROR: {e}")

        if self.telemetry not in TELEMETRY_MODES:
            warnings.append(
                f"ERROR: telemetry must be one of {', '.join(TELEMETRY_MODES)} (got {self.telemetry!r})"
            )

        if self.monitor_interval_seconds <= 0 or self.status_interval_seconds <= 0:
            warnings.append("ERROR: monitor and status intervals must be positive")

        if not 0 <= self.capacity_threshold <= 100:
            warnings.append(
                f"capacity_threshold {self.capacity_threshold} is outside 0-100, "
                "it is compared against the usable state of charge in percent"
            )

        if self.discharge_power_w <= 0:
            warnings.append(f"discharge_power_w {self.discharge_power_w}W will not discharge the battery")

        return warnings
