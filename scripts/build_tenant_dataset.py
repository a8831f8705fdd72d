#!/usr/bin/env python3
"""
Builds one tenant's dataset JSON for the scheduling backend from CSV exports.

Inputs:
  - customers CSV: customer_id, name, address, postcode, lat, lon,
      requires_wheelchair, regular_driver_id, active,
      schedule (weekly schedule JSON, e.g. {"monday": {"destination": "...", "pickupTime": "09:00"}})
  - drivers CSV: driver_id, name, active, vehicle_id, registration, capacity,
      wheelchair_accessible, max_daily_trips, leave ("2024-01-08..2024-01-12;...")

Output:
  - <outdir>/tenants/<tenant_id>.json   (existing trips in that file are kept unless --reset-trips)

Usage:
  python3 scripts/build_tenant_dataset.py \
      --tenant 42 \
      --customers data/private/active/customers.csv \
      --drivers data/private/active/drivers.csv \
      --outdir data/private/active
"""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path

from tripsched.io_tenant import build_tenant_payload
from tripsched.runtime import configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build a tenant dataset from customer/driver CSVs")
    parser.add_argument("--tenant", required=True, help="Tenant id (file name under tenants/)")
    parser.add_argument("--customers", required=True, help="Customers CSV")
    parser.add_argument("--drivers", required=True, help="Drivers CSV")
    parser.add_argument("--outdir", default=os.getenv("PRIVATE_DATA_DIR", "./data/private"), help="Dataset directory")
    parser.add_argument("--column-map", default=None, help="JSON file with column name overrides")
    parser.add_argument("--reset-trips", action="store_true", help="Drop trips already in the tenant file")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logger = configure_logging("build_tenant_dataset")

    config = {}
    if args.column_map:
        config["column_map"] = json.loads(Path(args.column_map).read_text(encoding="utf-8"))

    payload = build_tenant_payload(args.customers, args.drivers, config)

    out_path = Path(args.outdir).expanduser().resolve() / "tenants" / f"{args.tenant}.json"
    if out_path.exists() and not args.reset_trips:
        previous = json.loads(out_path.read_text(encoding="utf-8"))
        payload["trips"] = previous.get("trips", [])
        logger.info("Keeping %d existing trips from %s", len(payload["trips"]), out_path.name)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info(
        "Wrote %s: %d customers, %d drivers, %d schedule entries, %d trips",
        out_path, len(payload["customers"]), len(payload["drivers"]), len(payload["schedules"]), len(payload["trips"]),
    )


if __name__ == "__main__":
    main()
