"""CLI script to seed demo devices and synthetic sensor readings.
Usage: python scripts/seed_demo.py [--devices N] [--readings N] [--interval-minutes N]
"""
import sys
import argparse
import pathlib
import random
from datetime import datetime, timedelta, timezone
# Ensure `backend/` is on sys.path so `iot_monitor` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from iot_monitor.database import engine, create_db_and_tables
from iot_monitor import services

LOCATIONS = ["Building A", "Building B", "Warehouse", "Server Room", "Greenhouse"]
STATUSES = ["active", "active", "active", "warning", "inactive"]


def main(devices: int = 3, readings: int = 24, interval_minutes: int = 60, seed: int = 0):
    """Create `devices` devices with `readings` readings each.

    Readings are spaced `interval_minutes` apart and end at the current
    time. Created device ids and api keys are printed to stdout.
    """
    rng = random.Random(seed)
    create_db_and_tables()
    now = datetime.now(timezone.utc)
    with Session(engine) as session:
        device_svc = services.DeviceService(session)
        data_svc = services.SensorDataService(session)
        for n in range(devices):
            device = device_svc.store(f"Device {n + 1}", LOCATIONS[n % len(LOCATIONS)])
            base_temp = rng.uniform(18.0, 26.0)
            base_hum = rng.uniform(35.0, 65.0)
            for i in range(readings):
                ts = now - timedelta(minutes=interval_minutes * (readings - 1 - i))
                data_svc.store(
                    device.id,
                    round(base_temp + rng.gauss(0, 1.5), 2),
                    round(min(100.0, max(0.0, base_hum + rng.gauss(0, 4.0))), 2),
                    rng.choice(STATUSES),
                    ts,
                )
            print(f'Created device {device.id} ({device.device_name}) api_key={device.api_key} readings={readings}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--devices', type=int, default=3, help='Number of devices to create')
    parser.add_argument('--readings', type=int, default=24, help='Readings per device')
    parser.add_argument('--interval-minutes', type=int, default=60, help='Minutes between readings')
    parser.add_argument('--seed', type=int, default=0, help='Random seed for reproducible data')
    args = parser.parse_args()
    main(devices=args.devices, readings=args.readings, interval_minutes=args.interval_minutes, seed=args.seed)
