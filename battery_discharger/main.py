"""Battery Discharger add-on main entry point.

Discharges a home battery during a daily time window while its usable
capacity stays above a threshold, and exports battery readings as
Prometheus gauges and/or Home Assistant MQTT sensors.
"""

import logging
import sys
from datetime import timedelta

from shared.addon_base import setup_logging, set_log_level, setup_signal_handlers
from shared.config_loader import ConfigError, load_addon_config, get_run_once_mode
from shared.ha_mqtt_discovery import MqttDiscovery, get_mqtt_config_from_env

from .clock import SystemClock
from .discharger import Discharger
from .models import DischargerConfig, ScheduleConfigError
from .sonnen_api import SonnenApiClient
from .status_poller import StatusPoller
from .telemetry import CompositeTelemetry, MqttTelemetry, PrometheusTelemetry, TelemetrySink

logger = setup_logging(name=__name__)

BD_CONFIG_DEFAULTS = {
    'battery_name': 'battery',
    'battery_host': '',
    'battery_api_token': '',
    'start_time': '00:00',
    'stop_time': '06:00',
    'capacity_threshold': 20.0,
    'discharge_power_w': 3000,
    'timezone': 'Europe/Amsterdam',
    'monitor_interval_seconds': 60,
    'status_interval_seconds': 60,
    'request_timeout_seconds': 30,
    'telemetry': 'prometheus',
    'metrics_port': 9100,
    'simulation_mode': False,
    'log_level': 'info',
}


def load_config(config_path: str = '/data/options.json') -> DischargerConfig:
    """Load and validate Battery Discharger configuration.

    Raises:
        ConfigError: If any fatal problem is found
    """
    raw_config = load_addon_config(config_path=config_path, defaults=BD_CONFIG_DEFAULTS)
    try:
        config = DischargerConfig.from_config(raw_config)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid option value: {e}") from e

    set_log_level(config.log_level)

    logger.info("Loaded configuration:")
    logger.info("  Battery: %s at %s", config.battery_name, config.battery_host or "(none)")
    logger.info("  Window: %s - %s (%s)", config.start_time, config.stop_time, config.timezone)
    logger.info("  Capacity threshold: %.1f, discharge power: %dW",
                config.capacity_threshold, config.discharge_power_w)
    logger.info("  Telemetry: %s, simulation: %s", config.telemetry, config.simulation_mode)

    warnings = config.validate()
    for warning in warnings:
        if warning.startswith("ERROR:"):
            logger.error(warning)
        else:
            logger.warning(warning)

    errors = [w for w in warnings if w.startswith("ERROR:")]
    if errors:
        raise ConfigError("; ".join(e[len("ERROR: "):] for e in errors))

    return config


def build_telemetry(config: DischargerConfig) -> TelemetrySink:
    """Create the sinks selected by the telemetry option."""
    sinks = []

    if config.telemetry in ('prometheus', 'both'):
        prometheus = PrometheusTelemetry()
        try:
            prometheus.serve(config.metrics_port)
        except OSError as e:
            logger.error("Could not start metrics server on port %d: %s", config.metrics_port, e)
        sinks.append(prometheus)

    if config.telemetry in ('mqtt', 'both'):
        discovery = MqttDiscovery(
            addon_name="Battery Discharger",
            addon_id="battery_discharger",
            **get_mqtt_config_from_env(),
        )
        if discovery.connect():
            sinks.append(MqttTelemetry(discovery))
        else:
            logger.error("MQTT unavailable, battery sensors will not be published")

    return CompositeTelemetry(sinks)


def build_client(config: DischargerConfig) -> SonnenApiClient:
    return SonnenApiClient(
        base_url=config.battery_host,
        api_token=config.battery_api_token,
        discharge_power_w=config.discharge_power_w,
        timeout=config.request_timeout_seconds,
        simulation_mode=config.simulation_mode,
    )


def main(config_path: str = '/data/options.json') -> int:
    """Main entry point for Battery Discharger add-on.

    Returns:
        Process exit code: 1 on configuration errors or a failed RUN_ONCE poll
    """
    logger.info("Starting Battery Discharger add-on...")

    shutdown_event = setup_signal_handlers(logger)

    try:
        config = load_config(config_path)
        schedule = config.get_schedule()
        tz = config.get_timezone()
    except (ConfigError, ScheduleConfigError) as e:
        logger.error("Failed to load configuration: %s", e)
        return 1

    client = build_client(config)
    telemetry = build_telemetry(config)
    poller = StatusPoller(config.battery_name, client, telemetry)

    if get_run_once_mode():
        logger.info("Running single status poll (RUN_ONCE mode)")
        status = poller.poll_once()
        telemetry.close()
        return 0 if status is not None else 1

    poller.start(config.status_interval_seconds, shutdown_event)

    discharger = Discharger(
        schedule,
        client,
        telemetry,
        SystemClock(tz, shutdown_event),
        name=config.battery_name,
        monitor_interval=timedelta(seconds=config.monitor_interval_seconds),
    )
    try:
        discharger.run()
    finally:
        shutdown_event.set()
        telemetry.close()

    logger.info("Battery Discharger shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
