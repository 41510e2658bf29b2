"""sonnenBatterie local JSON API (v2) client.

Reads status and switches the battery between manual discharge and
self-consumption. Every failure surfaces as BatteryApiError.
"""

import logging
import threading
from typing import Any, Optional

import requests

from .models import BatteryStatus

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v2"

# EM_OperatingMode values
OPERATING_MODE_MANUAL = "1"
OPERATING_MODE_SELF_CONSUMPTION = "2"

DEFAULT_TIMEOUT_SECONDS = 30

# Simulated drain per status read while discharging (percentage points)
SIMULATION_DRAIN_PER_READ = 2.0


class BatteryApiError(Exception):
    """Raised when the battery cannot be reached or answers unexpectedly."""


class SonnenApiClient:
    """Client for a single sonnenBatterie.

    Calls are serialised with a lock so the status poller and the
    discharge loop can share one instance.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        discharge_power_w: int = 3000,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        simulation_mode: bool = False,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Battery base URL, e.g. http://192.168.1.50
            api_token: Token sent in the Auth-Token header
            discharge_power_w: Setpoint used when starting discharge
            timeout: HTTP timeout per request in seconds
            simulation_mode: If True, log API calls but don't execute
            session: Optional requests session (tests inject a fake)
        """
        self.base_url = base_url.rstrip('/')
        self.api_token = api_token
        self.discharge_power_w = int(discharge_power_w)
        self.timeout = timeout
        self.simulation_mode = simulation_mode

        self._session = session or requests.Session()
        self._session.headers['Auth-Token'] = api_token
        self._lock = threading.Lock()

        # Simulation state
        self._sim_usoc = 80.0
        self._sim_discharging = False

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{API_PREFIX}/{path.lstrip('/')}"
        with self._lock:
            try:
                response = self._session.request(method, url, timeout=self.timeout, **kwargs)
                response.raise_for_status()
            except requests.RequestException as e:
                raise BatteryApiError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BatteryApiError(f"{method} {path} returned invalid JSON") from e

    def status(self) -> BatteryStatus:
        """Read the current battery status."""
        if self.simulation_mode:
            return self._simulated_status()

        data = self._request("GET", "status")
        if not isinstance(data, dict):
            raise BatteryApiError(f"Unexpected status payload: {data!r}")
        try:
            status = BatteryStatus.from_sonnen(data)
        except (KeyError, TypeError, ValueError) as e:
            raise BatteryApiError(f"Unexpected status payload, missing or invalid {e}") from e

        logger.debug(
            "Battery status: USOC=%.0f%% RSOC=%.0f%% Pac=%.0fW consumption=%.0fW",
            status.usable_remaining_capacity,
            status.state_of_charge,
            status.pac_total_w,
            status.consumption_w,
        )
        return status

    def start_discharge(self) -> None:
        """Switch to manual mode and apply the discharge setpoint (idempotent)."""
        if self.simulation_mode:
            logger.info("SIMULATION: Would start discharge at %dW", self.discharge_power_w)
            self._sim_discharging = True
            return

        self._set_operating_mode(OPERATING_MODE_MANUAL)
        self._request("POST", f"setpoint/discharge/{self.discharge_power_w}")
        logger.info("Discharge started at %dW", self.discharge_power_w)

    def stop_discharge(self) -> None:
        """Clear the setpoint and return to self-consumption (idempotent)."""
        if self.simulation_mode:
            logger.info("SIMULATION: Would stop discharge")
            self._sim_discharging = False
            return

        self._request("POST", "setpoint/discharge/0")
        self._set_operating_mode(OPERATING_MODE_SELF_CONSUMPTION)
        logger.info("Discharge stopped, back to self-consumption")

    def _set_operating_mode(self, mode: str) -> None:
        self._request("PUT", "configurations", json={"EM_OperatingMode": mode})

    def _simulated_status(self) -> BatteryStatus:
        with self._lock:
            if self._sim_discharging:
                self._sim_usoc = max(0.0, self._sim_usoc - SIMULATION_DRAIN_PER_READ)
            pac = float(self.discharge_power_w) if self._sim_discharging else 0.0
            return BatteryStatus(
                usable_remaining_capacity=self._sim_usoc,
                state_of_charge=self._sim_usoc,
                remaining_capacity_wh=self._sim_usoc * 100,
                consumption_w=450.0,
                pac_total_w=pac,
                discharging=self._sim_discharging,
            )
