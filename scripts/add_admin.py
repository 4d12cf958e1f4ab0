#!/usr/bin/env python3
"""
Create an admin account, or promote an existing account to admin and reset its password.
Run from project root: python scripts/add_admin.py

Reads ADMIN_NAME, ADMIN_EMAIL, ADMIN_PASSWORD and ADMIN_DEPARTMENT from the
environment (or .env).
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from assethub.auth.security import get_password_hash
from assethub.db import Base, SessionLocal, engine
from assethub.models.models import User


def run():
    name = os.getenv("ADMIN_NAME", "Admin User")
    email = os.getenv("ADMIN_EMAIL", "admin@example.com").strip().lower()
    password = os.getenv("ADMIN_PASSWORD")
    department = os.getenv("ADMIN_DEPARTMENT", "IT")
    if not password or len(password) < 6:
        print("Set ADMIN_PASSWORD (at least 6 characters) before running.")
        sys.exit(1)

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        user = session.query(User).filter(User.email == email).first()
        if user:
            print(f"User {email} already exists (role: {user.role}); promoting to admin")
            user.role = "admin"
            user.is_active = True
            user.password_hash = get_password_hash(password)
        else:
            session.add(
                User(
                    name=name,
                    email=email,
                    password_hash=get_password_hash(password),
                    role="admin",
                    department=department,
                    is_active=True,
                )
            )
            print(f"Created admin {email}")
        session.commit()
    finally:
        session.close()
    print("Done.")


if __name__ == "__main__":
    run()
