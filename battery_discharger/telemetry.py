"""Telemetry sinks for battery readings.

Every sink is fire-and-forget: failures are logged, never raised to
the discharge loop. Gauges are keyed by the battery name.
"""

import logging
import re
from typing import Iterable, List, Optional

from prometheus_client import CollectorRegistry, Gauge, start_http_server

from shared.ha_mqtt_discovery import EntityConfig, MqttDiscovery

from .models import BatteryStatus

logger = logging.getLogger(__name__)


class TelemetrySink:
    """Interface the discharger and status poller record into."""

    def record_status(self, name: str, status: BatteryStatus) -> None:
        raise NotImplementedError

    def record_discharging(self, name: str, discharging: bool) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PrometheusTelemetry(TelemetrySink):
    """Prometheus gauges on a private registry.

    Each instance owns its registry, so several instances (or tests)
    never collide on metric names.
    """

    NAMESPACE = "battery"

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.soc = self._gauge("RSoC", "Relative state of charge in percent")
        self.capacity = self._gauge("RemainingCapacity_W", "Remaining capacity based on RSoC")
        self.consumption = self._gauge("Consumption_W", "House consumption in Watts, direct measurement")
        self.pac = self._gauge(
            "Pac_total_W",
            "AC Power: greater than zero - discharging, less than zero - charging in Watts",
        )
        self.discharging = self._gauge(
            "BatteryDischarging",
            "Discharge status: 1 - discharging, 0 - not discharging",
        )

    def _gauge(self, name: str, documentation: str) -> Gauge:
        return Gauge(name, documentation, ["name"], namespace=self.NAMESPACE, registry=self.registry)

    def serve(self, port: int) -> None:
        """Expose the registry on http://0.0.0.0:<port>/metrics."""
        start_http_server(port, registry=self.registry)
        logger.info("Serving Prometheus metrics on port %d", port)

    def record_status(self, name: str, status: BatteryStatus) -> None:
        self.soc.labels(name=name).set(status.state_of_charge)
        self.capacity.labels(name=name).set(status.remaining_capacity_wh)
        self.consumption.labels(name=name).set(status.consumption_w)
        self.pac.labels(name=name).set(status.pac_total_w)
        self.record_discharging(name, status.discharging)

    def record_discharging(self, name: str, discharging: bool) -> None:
        self.discharging.labels(name=name).set(1.0 if discharging else 0.0)


def _object_id(name: str, suffix: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "battery"
    return f"{slug}_{suffix}"


class MqttTelemetry(TelemetrySink):
    """Home Assistant sensors published through MQTT Discovery."""

    def __init__(self, discovery: MqttDiscovery):
        self.discovery = discovery

    def record_status(self, name: str, status: BatteryStatus) -> None:
        sensors = [
            EntityConfig(
                object_id=_object_id(name, "rsoc"),
                name=f"{name} state of charge",
                state=f"{status.state_of_charge:.0f}",
                unit_of_measurement="%",
                device_class="battery",
                state_class="measurement",
            ),
            EntityConfig(
                object_id=_object_id(name, "remaining_capacity"),
                name=f"{name} remaining capacity",
                state=f"{status.remaining_capacity_wh:.0f}",
                unit_of_measurement="Wh",
                device_class="energy_storage",
                state_class="measurement",
            ),
            EntityConfig(
                object_id=_object_id(name, "consumption"),
                name=f"{name} house consumption",
                state=f"{status.consumption_w:.0f}",
                unit_of_measurement="W",
                device_class="power",
                state_class="measurement",
            ),
            EntityConfig(
                object_id=_object_id(name, "pac_total"),
                name=f"{name} AC power",
                state=f"{status.pac_total_w:.0f}",
                unit_of_measurement="W",
                device_class="power",
                state_class="measurement",
                attributes={"direction": _direction(status.pac_total_w)},
            ),
        ]
        failed = [s.object_id for s in sensors if not self.discovery.publish_sensor(s)]
        if failed:
            logger.warning("Failed to publish battery sensors: %s", ", ".join(failed))
        self.record_discharging(name, status.discharging)

    def record_discharging(self, name: str, discharging: bool) -> None:
        published = self.discovery.publish_binary_sensor(EntityConfig(
            object_id=_object_id(name, "discharging"),
            name=f"{name} discharging",
            state="ON" if discharging else "OFF",
            icon="mdi:battery-arrow-down",
        ))
        if not published:
            logger.warning("Failed to publish discharging state for %s", name)

    def close(self) -> None:
        self.discovery.disconnect()


def _direction(pac_total_w: float) -> str:
    if pac_total_w > 0:
        return "discharging"
    if pac_total_w < 0:
        return "charging"
    return "idle"


class CompositeTelemetry(TelemetrySink):
    """Fans every record out to several sinks."""

    def __init__(self, sinks: Iterable[TelemetrySink]):
        self.sinks: List[TelemetrySink] = list(sinks)

    def record_status(self, name: str, status: BatteryStatus) -> None:
        for sink in self.sinks:
            try:
                sink.record_status(name, status)
            except Exception as e:
                logger.error("Telemetry sink %s failed: %s", type(sink).__name__, e)

    def record_discharging(self, name: str, discharging: bool) -> None:
        for sink in self.sinks:
            try:
                sink.record_discharging(name, discharging)
            except Exception as e:
                logger.error("Telemetry sink %s failed: %s", type(sink).__name__, e)

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()
