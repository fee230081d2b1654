"""Seed the carrier registry with sample companies, drivers and a vehicle.

Usage:
    python scripts/seed_registry.py
    python scripts/seed_registry.py --db /tmp/recon.db --list
"""

import argparse
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging
from identity_resolver.db import list_companies, list_drivers, list_vehicles, seed_sample_registry


def main():
    """Entry point."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Seed the carrier registry")
    parser.add_argument("--db", type=Path, default=settings.db_path, help="SQLite database path")
    parser.add_argument("--list", action="store_true", help="Print the registry after seeding")
    args = parser.parse_args()

    configure_logging(level=settings.log_level_number, json_format=settings.log_json)

    created = seed_sample_registry(db_path=args.db)
    print(f"Created: {created['companies']} companies, {created['drivers']} drivers, {created['vehicles']} vehicles")

    if args.list:
        print("\nCompanies:")
        for company in list_companies(db_path=args.db):
            main_flag = " (main)" if company.is_main_company else ""
            print(f"  [{company.id}] {company.name}{main_flag} - commission {company.commission_rate * 100}%")
        print("\nDrivers:")
        for driver in list_drivers(db_path=args.db):
            print(f"  {driver.name} → company {driver.company_id}")
        print("\nVehicles:")
        for vehicle in list_vehicles(db_path=args.db):
            state = "active" if vehicle.is_active else "inactive"
            print(f"  {vehicle.vehicle_id} → company {vehicle.company_id} ({state})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
