"""Tests for telemetry sinks."""

import pytest

from battery_discharger.models import BatteryStatus
from battery_discharger.telemetry import CompositeTelemetry, MqttTelemetry, PrometheusTelemetry, TelemetrySink
from shared.ha_mqtt_discovery import MqttDiscovery

STATUS = BatteryStatus(
    usable_remaining_capacity=61,
    state_of_charge=64,
    remaining_capacity_wh=6400,
    consumption_w=480,
    pac_total_w=2500,
    discharging=True,
)


def sample(sink, metric, name="house"):
    return sink.registry.get_sample_value(metric, {"name": name})


class TestPrometheusTelemetry:
    def test_records_status_gauges(self):
        sink = PrometheusTelemetry()
        sink.record_status("house", STATUS)

        assert sample(sink, "battery_RSoC") == 64
        assert sample(sink, "battery_RemainingCapacity_W") == 6400
        assert sample(sink, "battery_Consumption_W") == 480
        assert sample(sink, "battery_Pac_total_W") == 2500
        assert sample(sink, "battery_BatteryDischarging") == 1.0

    def test_discharging_flag(self):
        sink = PrometheusTelemetry()
        sink.record_discharging("house", True)
        sink.record_discharging("house", False)
        assert sample(sink, "battery_BatteryDischarging") == 0.0

    def test_labels_are_independent(self):
        sink = PrometheusTelemetry()
        sink.record_discharging("house", True)
        sink.record_discharging("garage", False)
        assert sample(sink, "battery_BatteryDischarging", "house") == 1.0
        assert sample(sink, "battery_BatteryDischarging", "garage") == 0.0

    def test_instances_do_not_collide(self):
        first = PrometheusTelemetry()
        second = PrometheusTelemetry()
        first.record_status("house", STATUS)
        assert sample(second, "battery_RSoC") is None


class DummyDiscovery:
    def __init__(self, succeed=True):
        self.sensors = []
        self.binary_sensors = []
        self.succeed = succeed
        self.disconnected = False

    def publish_sensor(self, config):
        self.sensors.append(config)
        return self.succeed

    def publish_binary_sensor(self, config):
        self.binary_sensors.append(config)
        return self.succeed

    def disconnect(self):
        self.disconnected = True


class TestMqttTelemetry:
    def test_publishes_sensors_per_battery(self):
        discovery = DummyDiscovery()
        MqttTelemetry(discovery).record_status("House Battery", STATUS)

        states = {s.object_id: s.state for s in discovery.sensors}
        assert states == {
            "house_battery_rsoc": "64",
            "house_battery_remaining_capacity": "6400",
            "house_battery_consumption": "480",
            "house_battery_pac_total": "2500",
        }
        assert discovery.binary_sensors[-1].state == "ON"

    def test_pac_direction_attribute(self):
        discovery = DummyDiscovery()
        charging = BatteryStatus(usable_remaining_capacity=50, pac_total_w=-900)
        MqttTelemetry(discovery).record_status("house", charging)

        pac = next(s for s in discovery.sensors if s.object_id == "house_pac_total")
        assert pac.attributes == {"direction": "charging"}

    def test_publish_failure_is_not_raised(self):
        discovery = DummyDiscovery(succeed=False)
        MqttTelemetry(discovery).record_status("house", STATUS)
        assert len(discovery.sensors) == 4

    def test_close_disconnects(self):
        discovery = DummyDiscovery()
        MqttTelemetry(discovery).close()
        assert discovery.disconnected


class BrokenSink(TelemetrySink):
    def record_status(self, name, status):
        raise RuntimeError("sink down")

    def record_discharging(self, name, discharging):
        raise RuntimeError("sink down")


class TestCompositeTelemetry:
    def test_fans_out_and_survives_failures(self):
        healthy = PrometheusTelemetry()
        composite = CompositeTelemetry([BrokenSink(), healthy])

        composite.record_status("house", STATUS)
        composite.record_discharging("house", False)

        assert sample(healthy, "battery_RSoC") == 64
        assert sample(healthy, "battery_BatteryDischarging") == 0.0

    def test_empty_composite_is_a_no_op(self):
        CompositeTelemetry([]).record_status("house", STATUS)


class DummyResult:
    rc = 0


class DummyPahoClient:
    def __init__(self):
        self.published = []

    def publish(self, topic, payload, retain=False, qos=0):
        self.published.append((topic, payload, retain))
        return DummyResult()


@pytest.fixture
def discovery():
    mqtt = MqttDiscovery(addon_name="Battery Discharger", addon_id="battery_discharger")
    mqtt._client = DummyPahoClient()
    mqtt._connected.set()
    return mqtt


class TestMqttDiscovery:
    def test_announces_once_then_updates_state(self, discovery):
        sink = MqttTelemetry(discovery)
        sink.record_discharging("house", True)
        sink.record_discharging("house", False)

        topics = [topic for topic, _, _ in discovery._client.published]
        assert topics == [
            "homeassistant/binary_sensor/battery_discharger/house_discharging/config",
            "battery_discharger/binary_sensor/house_discharging/state",
            "battery_discharger/binary_sensor/house_discharging/state",
        ]
        assert discovery._client.published[-1][1] == "OFF"

    def test_discovery_payload_has_device_and_unit(self, discovery):
        MqttTelemetry(discovery).record_status("house", STATUS)

        config_topic, payload, retain = discovery._client.published[0]
        assert config_topic == "homeassistant/sensor/battery_discharger/house_rsoc/config"
        assert '"unique_id": "battery_discharger_house_rsoc"' in payload
        assert '"unit_of_measurement": "%"' in payload
        assert retain is True

    def test_not_connected_refuses_publish(self):
        mqtt = MqttDiscovery(addon_name="Battery Discharger", addon_id="battery_discharger")
        assert mqtt.update_state("sensor", "house_rsoc", "50") is False

    def test_publish_after_disconnect_is_refused(self, discovery):
        client = discovery._client
        client.loop_stop = lambda: None
        client.disconnect = lambda: None
        discovery.disconnect()

        assert discovery.update_state("sensor", "house_rsoc", "50") is False
        assert client.published == []
