#!/usr/bin/env python3
"""
Database management for the dealership backend.

    python manage.py migrate   # alembic upgrade head
    python manage.py seed      # admin account + a few listings
    python manage.py setup     # migrate, then seed
    python manage.py reset     # drop everything, migrate, seed (asks first)

The admin account is read from SEED_ADMIN_USERNAME / SEED_ADMIN_NAME /
SEED_ADMIN_PASSWORD (defaults: admin / Showroom Admin / admin123).
"""
import argparse
import os
import sys
from decimal import Decimal

from alembic import command
from alembic.config import Config
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from dealership.database import SessionLocal, engine
from dealership.models.models import User, Role, Vehicle, VehicleStatus
from dealership.utils.auth import get_password_hash


TEST_VEHICLES = [
    {"brand": "Toyota", "model": "Corolla", "year": 2020, "price": Decimal("845000"),
     "mileage": 42000, "fuel_type": "Petrol", "transmission": "Automatic"},
    {"brand": "Renault", "model": "Clio", "year": 2019, "price": Decimal("615000"),
     "mileage": 68000, "fuel_type": "Diesel", "transmission": "Manual"},
    {"brand": "Fiat", "model": "Egea", "year": 2021, "price": Decimal("690000"),
     "mileage": 31000, "fuel_type": "Petrol", "transmission": "Manual"},
    {"brand": "Volkswagen", "model": "Passat", "year": 2018, "price": Decimal("1150000"),
     "mileage": 97000, "fuel_type": "Diesel", "transmission": "Automatic",
     "status": VehicleStatus.RESERVED},
]


def banner(title: str):
    print("\n" + "=" * 60)
    print(f" {title}".center(60))
    print("=" * 60 + "\n")


def migrate() -> bool:
    banner("Running Database Migrations")
    try:
        command.upgrade(Config("alembic.ini"), "head")
    except Exception as e:
        print(f"✗ Migration failed: {e}")
        return False
    print("✓ Migrations completed successfully!")
    return True


def seed_admin(db) -> User:
    """Create the admin account buyers chat with, unless one exists."""
    existing = db.query(User).filter(User.role == Role.ADMIN).first()
    if existing:
        print(f"⚠ Skipped: admin '{existing.username}' already exists (ID: {existing.id})")
        return existing

    admin = User(
        username=os.environ.get("SEED_ADMIN_USERNAME", "admin"),
        name=os.environ.get("SEED_ADMIN_NAME", "Showroom Admin"),
        hashed_password=get_password_hash(os.environ.get("SEED_ADMIN_PASSWORD", "admin123")),
        role=Role.ADMIN,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    print(f"✓ Added admin: {admin.username} (ID: {admin.id})")
    return admin


def seed_vehicles(db) -> int:
    added = 0
    for vehicle_data in TEST_VEHICLES:
        existing = db.query(Vehicle).filter(
            Vehicle.brand == vehicle_data["brand"],
            Vehicle.model == vehicle_data["model"],
            Vehicle.year == vehicle_data["year"],
        ).first()
        if existing:
            print(f"⚠ Skipped: {vehicle_data['brand']} {vehicle_data['model']} (already listed)")
            continue

        vehicle = Vehicle(**vehicle_data)
        db.add(vehicle)
        db.commit()
        db.refresh(vehicle)
        print(f"✓ Added: {vehicle.year} {vehicle.brand} {vehicle.model} (ID: {vehicle.id})")
        added += 1
    return added


def seed() -> bool:
    banner("Seeding Dealership Data")
    db = SessionLocal()
    try:
        seed_admin(db)
        added = seed_vehicles(db)
    except IntegrityError as e:
        db.rollback()
        print(f"✗ Database integrity error: {e}")
        return False
    finally:
        db.close()
    print(f"\nSeed complete! Added {added} vehicles.")
    return True


def drop_all() -> bool:
    banner("Dropping All Tables")
    try:
        with engine.begin() as conn:
            conn.execute(text("DROP TABLE IF EXISTS alembic_version"))
            for table in ("messages", "personnel", "vehicles", "users"):
                conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
            if engine.dialect.name == "postgresql":
                conn.execute(text("DROP TYPE IF EXISTS vehiclestatus"))
                conn.execute(text("DROP TYPE IF EXISTS role"))
    except Exception as e:
        print(f"✗ Failed to drop tables: {e}")
        return False
    print("✓ All tables dropped")
    return True


def reset(assume_yes: bool) -> bool:
    print("⚠  WARNING: This will DELETE ALL DATA in the database!")
    if not assume_yes:
        confirm = input("Are you sure you want to proceed? (type 'yes' to confirm): ").strip()
        if confirm.lower() != "yes":
            print("✗ Reset cancelled. No changes made.")
            return True
    return drop_all() and migrate() and seed()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Dealership database management")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("migrate", help="apply all migrations")
    sub.add_parser("seed", help="create the admin account and test vehicles")
    sub.add_parser("setup", help="migrate, then seed")
    reset_parser = sub.add_parser("reset", help="drop everything, migrate and seed")
    reset_parser.add_argument("--yes", action="store_true", help="skip the confirmation prompt")
    args = parser.parse_args(argv)

    if args.command == "migrate":
        ok = migrate()
    elif args.command == "seed":
        ok = seed()
    elif args.command == "setup":
        ok = migrate() and seed()
    else:
        ok = reset(args.yes)

    if not ok:
        print("\n⚠ Incomplete due to errors")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
