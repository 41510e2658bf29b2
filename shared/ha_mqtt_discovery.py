"""Home Assistant MQTT Discovery helper.

Publishes sensors with a unique_id so they show up grouped under a
device in the Home Assistant UI.

Usage:
    from shared.ha_mqtt_discovery import MqttDiscovery, EntityConfig

    mqtt = MqttDiscovery(addon_name="Battery Discharger", addon_id="battery_discharger")
    if mqtt.connect():
        mqtt.publish_sensor(EntityConfig(
            object_id="house_battery_rsoc",
            name="House battery state of charge",
            state="64",
            unit_of_measurement="%",
            device_class="battery",
        ))
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


@dataclass
class EntityConfig:
    """Discovery settings and current state for one entity.

    Attributes:
        object_id: Unique object ID within the addon (e.g. "house_battery_rsoc")
        name: Human-readable name
        state: Current state value as string
        unit_of_measurement: Unit (e.g. "%", "W", "Wh")
        device_class: HA device class (e.g. "battery", "power", "energy_storage")
        state_class: State class for statistics (e.g. "measurement")
        icon: MDI icon
        attributes: Additional attributes published on the attributes topic
    """
    object_id: str
    name: str
    state: str
    unit_of_measurement: Optional[str] = None
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    icon: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


class MqttDiscovery:
    """MQTT Discovery client for Home Assistant."""

    DISCOVERY_PREFIX = "homeassistant"

    def __init__(
        self,
        addon_name: str,
        addon_id: str,
        mqtt_host: str = "core-mosquitto",
        mqtt_port: int = 1883,
        mqtt_user: Optional[str] = None,
        mqtt_password: Optional[str] = None,
        manufacturer: str = "HA Addons",
    ):
        self.addon_name = addon_name
        self.addon_id = addon_id
        self.mqtt_host = mqtt_host
        self.mqtt_port = mqtt_port
        self.mqtt_user = mqtt_user
        self.mqtt_password = mqtt_password
        self.manufacturer = manufacturer

        self._client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._announced: set = set()

    @property
    def device_info(self) -> Dict[str, Any]:
        """Device block shared by every discovery payload."""
        return {
            "identifiers": [self.addon_id],
            "name": self.addon_name,
            "manufacturer": self.manufacturer,
            "model": self.addon_name,
        }

    def _state_topic(self, component: str, object_id: str) -> str:
        return f"{self.addon_id}/{component}/{object_id}/state"

    def _attributes_topic(self, component: str, object_id: str) -> str:
        return f"{self.addon_id}/{component}/{object_id}/attributes"

    def _discovery_topic(self, component: str, object_id: str) -> str:
        return f"{self.DISCOVERY_PREFIX}/{component}/{self.addon_id}/{object_id}/config"

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0:
            logger.info("Connected to MQTT broker at %s:%d", self.mqtt_host, self.mqtt_port)
            self._connected.set()
        else:
            logger.error("Failed to connect to MQTT broker, return code: %s", rc)
            self._connected.clear()

    def _on_disconnect(self, client, userdata, flags, rc, properties=None):
        logger.info("Disconnected from MQTT broker (rc=%s)", rc)
        self._connected.clear()

    def connect(self, timeout: float = 10.0) -> bool:
        """Connect to the broker and start the network loop.

        Returns:
            True if connected within timeout
        """
        try:
            self._client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"{self.addon_id}_discovery",
                protocol=mqtt.MQTTv311,
            )
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect

            if self.mqtt_user and self.mqtt_password:
                self._client.username_pw_set(self.mqtt_user, self.mqtt_password)

            logger.info("Connecting to MQTT broker at %s:%d...", self.mqtt_host, self.mqtt_port)
            self._client.connect(self.mqtt_host, self.mqtt_port, keepalive=60)
            self._client.loop_start()
        except (OSError, ValueError) as e:
            logger.error("Failed to connect to MQTT broker: %s", e)
            return False

        if not self._connected.wait(timeout):
            logger.error("MQTT connection timeout after %.1f seconds", timeout)
            self._client.loop_stop()
            return False
        return True

    def disconnect(self) -> None:
        """Stop the network loop and disconnect."""
        client, self._client = self._client, None
        self._connected.clear()
        if client:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        return self._connected.is_set() and self._client is not None

    def _publish(self, topic: str, payload: Any, retain: bool = True) -> bool:
        client = self._client
        if client is None or not self._connected.is_set():
            logger.error("Cannot publish to %s: not connected to MQTT broker", topic)
            return False

        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload)
        elif not isinstance(payload, str):
            payload = str(payload)

        result = client.publish(topic, payload, retain=retain, qos=1)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Failed to publish to %s: rc=%d", topic, result.rc)
            return False
        return True

    def publish_sensor(self, config: EntityConfig) -> bool:
        """Announce (first time) and update a sensor entity."""
        return self._publish_entity("sensor", config)

    def publish_binary_sensor(self, config: EntityConfig) -> bool:
        """Announce (first time) and update a binary sensor; state is "ON"/"OFF"."""
        return self._publish_entity("binary_sensor", config)

    def _publish_entity(self, component: str, config: EntityConfig) -> bool:
        key = f"{component}.{config.object_id}"
        if key not in self._announced:
            if not self._publish(self._discovery_topic(component, config.object_id),
                                 self._discovery_payload(component, config)):
                return False
            self._announced.add(key)
            logger.debug("Announced %s entity: %s", component, config.name)

        return self.update_state(component, config.object_id, config.state, config.attributes)

    def _discovery_payload(self, component: str, config: EntityConfig) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": config.name,
            "unique_id": f"{self.addon_id}_{config.object_id}",
            "state_topic": self._state_topic(component, config.object_id),
            "device": self.device_info,
        }
        for key in ("unit_of_measurement", "device_class", "state_class", "icon"):
            value = getattr(config, key)
            if value:
                payload[key] = value
        if config.attributes:
            payload["json_attributes_topic"] = self._attributes_topic(component, config.object_id)
        return payload

    def update_state(self, component: str, object_id: str, state: str,
                     attributes: Optional[Dict[str, Any]] = None) -> bool:
        """Publish a new state (and optional attributes) for an announced entity."""
        if not self._publish(self._state_topic(component, object_id), state):
            return False
        if attributes:
            return self._publish(self._attributes_topic(component, object_id), attributes)
        return True


def get_mqtt_config_from_env() -> Dict[str, Any]:
    """Read broker settings from MQTT_HOST, MQTT_PORT, MQTT_USER and MQTT_PASSWORD."""
    return {
        "mqtt_host": os.getenv("MQTT_HOST", "core-mosquitto"),
        "mqtt_port": int(os.getenv("MQTT_PORT", "1883")),
        "mqtt_user": os.getenv("MQTT_USER"),
        "mqtt_password": os.getenv("MQTT_PASSWORD"),
    }
