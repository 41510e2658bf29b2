"""Tests for the sonnenBatterie API client."""

import json

import pytest
import requests

from battery_discharger.sonnen_api import BatteryApiError, SonnenApiClient

STATUS_PAYLOAD = {
    "USOC": 64,
    "RSOC": 66,
    "RemainingCapacity_Wh": 6350,
    "Consumption_W": 512,
    "Pac_total_W": -1200,
    "BatteryDischarging": False,
    "BatteryCharging": True,
}


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    @property
    def content(self):
        return b"" if self._payload is None else json.dumps(self._payload).encode()

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class DummySession:
    def __init__(self, responses=None, error=None):
        self.headers = {}
        self.requests = []
        self._responses = list(responses or [])
        self._error = error

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs.get("json")))
        if self._error:
            raise self._error
        return self._responses.pop(0) if self._responses else DummyResponse()


def make_client(session, **kwargs):
    return SonnenApiClient("http://battery.local/", "secret", session=session, **kwargs)


class TestStatus:
    def test_maps_status_fields(self):
        session = DummySession([DummyResponse(payload=STATUS_PAYLOAD)])
        status = make_client(session).status()

        assert status.usable_remaining_capacity == 64
        assert status.state_of_charge == 66
        assert status.remaining_capacity_wh == 6350
        assert status.consumption_w == 512
        assert status.pac_total_w == -1200
        assert status.discharging is False
        assert session.requests == [("GET", "http://battery.local/api/v2/status", None)]

    def test_sends_auth_token(self):
        session = DummySession()
        make_client(session)
        assert session.headers["Auth-Token"] == "secret"

    def test_missing_usoc_raises(self):
        session = DummySession([DummyResponse(payload={"RSOC": 50})])
        with pytest.raises(BatteryApiError):
            make_client(session).status()

    def test_non_numeric_value_raises(self):
        session = DummySession([DummyResponse(payload={"USOC": "n/a"})])
        with pytest.raises(BatteryApiError):
            make_client(session).status()

    def test_http_error_raises(self):
        session = DummySession([DummyResponse(status_code=401, payload={"error": "unauthorized"})])
        with pytest.raises(BatteryApiError, match="status"):
            make_client(session).status()

    def test_connection_error_raises(self):
        session = DummySession(error=requests.ConnectionError("refused"))
        with pytest.raises(BatteryApiError) as exc_info:
            make_client(session).status()
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)

    def test_empty_body_raises(self):
        session = DummySession([DummyResponse(payload=None)])
        with pytest.raises(BatteryApiError):
            make_client(session).status()


class TestCommands:
    def test_start_sets_manual_mode_then_setpoint(self):
        session = DummySession()
        make_client(session, discharge_power_w=2500).start_discharge()

        assert session.requests == [
            ("PUT", "http://battery.local/api/v2/configurations", {"EM_OperatingMode": "1"}),
            ("POST", "http://battery.local/api/v2/setpoint/discharge/2500", None),
        ]

    def test_stop_clears_setpoint_then_self_consumption(self):
        session = DummySession()
        make_client(session).stop_discharge()

        assert session.requests == [
            ("POST", "http://battery.local/api/v2/setpoint/discharge/0", None),
            ("PUT", "http://battery.local/api/v2/configurations", {"EM_OperatingMode": "2"}),
        ]

    def test_command_failure_raises(self):
        session = DummySession([DummyResponse(status_code=500)])
        with pytest.raises(BatteryApiError):
            make_client(session).start_discharge()
        assert len(session.requests) == 1


class TestSimulation:
    def test_no_http_calls(self):
        session = DummySession(error=AssertionError("should not be called"))
        client = make_client(session, simulation_mode=True)

        client.start_discharge()
        client.status()
        client.stop_discharge()

        assert session.requests == []

    def test_capacity_drains_while_discharging(self):
        client = make_client(DummySession(), simulation_mode=True, discharge_power_w=3000)
        idle = client.status()
        client.start_discharge()
        draining = client.status()

        assert draining.usable_remaining_capacity < idle.usable_remaining_capacity
        assert draining.discharging is True
        assert draining.pac_total_w == 3000

        client.stop_discharge()
        assert client.status().usable_remaining_capacity == draining.usable_remaining_capacity
