"""
Seed the local database with sample users, assets and one allocation.

Usage:
  python scripts/seed.py

Idempotent: users are matched by email and assets by serial number, so
running it again only adds what is missing.
"""
import sys
import os
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from assethub.db import Base, SessionLocal, engine
from assethub.models.models import Asset, User
from assethub.schemas.allocations import AllocationCreate
from assethub.schemas.assets import AssetCreate
from assethub.schemas.users import UserCreate
from assethub.services import allocations, assets, users
from assethub.services.lifecycle import utcnow


SAMPLE_USERS = [
    ("Admin User", "admin@example.com", "admin123", "admin", "IT"),
    ("Jane Smith", "jane@example.com", "password123", "hr", "Human Resources"),
    ("John Doe", "john@example.com", "password123", "employee", "Engineering"),
]


def ensure_user(session, name: str, email: str, password: str, role: str, department: str) -> User:
    user = users.get_user_by_email(session, email)
    if user:
        return user
    user = users.create_user(
        session, UserCreate(name=name, email=email, password=password, role=role, department=department)
    )
    print(f"Created user: {email}")
    return user


def ensure_asset(session, admin: User, **fields) -> Asset:
    asset = session.query(Asset).filter(Asset.serial_number == fields["serial_number"]).first()
    if asset:
        return asset
    asset = assets.create_asset(session, AssetCreate(**fields), created_by=admin.id)
    print(f"Created asset: {asset.name} ({asset.status})")
    return asset


def run():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    now = utcnow()
    try:
        people = {row[1]: ensure_user(session, *row) for row in SAMPLE_USERS}
        admin = people["admin@example.com"]
        laptop = ensure_asset(
            session, admin,
            name="Dell Latitude 7440", type="hardware", category="Laptop",
            purchase_date=now - timedelta(days=200), expiry_date=now + timedelta(days=900),
            serial_number="DL-7440-0001", cost=1450.0, vendor="Dell",
        )
        ensure_asset(
            session, admin,
            name="Office 365 E3", type="license", category="Productivity",
            purchase_date=now - timedelta(days=340), expiry_date=now + timedelta(days=25),
            serial_number="O365-E3-2024", cost=432.0, vendor="Microsoft",
        )
        ensure_asset(
            session, admin,
            name="example.com", type="domain", category="Web",
            purchase_date=now - timedelta(days=400), expiry_date=now - timedelta(days=35),
            serial_number="DOM-EXAMPLE-COM", cost=12.0, vendor="Registrar",
        )
        if laptop.assigned_to is None and laptop.status == "available":
            allocations.create_allocation(
                session,
                AllocationCreate(asset_id=laptop.id, user_id=people["john@example.com"].id, notes="Onboarding kit"),
                created_by=admin.id,
            )
            print("Allocated laptop to john@example.com")
    finally:
        session.close()
    print("Database seeding completed!")


if __name__ == "__main__":
    run()
