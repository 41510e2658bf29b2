#!/usr/bin/env python3
"""Run Battery Discharger add-on locally for testing."""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

env_file = Path(__file__).parent / '.env'
if env_file.exists():
    load_dotenv(env_file)
    print(f"Loaded environment from {env_file}")
else:
    print("No .env file found, using existing environment")

sys.path.insert(0, str(Path(__file__).parent))

from battery_discharger.main import main  # noqa: E402


def _print_config_summary():
    print("=" * 60)
    print("Battery Discharger Add-on - Local Testing")
    print("=" * 60)
    print()
    print("Configuration:")
    print(f"  Battery host: {os.getenv('BATTERY_HOST', '(not set)')}")
    print(f"  Battery token: {'SET' if os.getenv('BATTERY_API_TOKEN') else 'NOT SET'}")
    print(f"  Window: {os.getenv('START_TIME', '00:00')} - {os.getenv('STOP_TIME', '06:00')}")
    print(f"  Capacity threshold: {os.getenv('CAPACITY_THRESHOLD', '20')}")
    print(f"  Telemetry: {os.getenv('TELEMETRY', 'prometheus')}")
    print(f"  Simulation: {os.getenv('SIMULATION_MODE', 'false')}")
    print(f"  RUN_ONCE: {os.getenv('RUN_ONCE', '0')}")
    print()
    print("=" * 60)
    print()


if __name__ == '__main__':
    _print_config_summary()
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)
