#!/usr/bin/env python3
"""
Client Seed Script
Creates a client with an API key and an owner user with an active membership.

Usage:
    python -m scripts.seed_client <client_name> <owner_email> <owner_password> [plan]

Example:
    python -m scripts.seed_client "Emergent Inc" owner@emergent.io securepassword123 PROFESSIONAL
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from contextgrade.database import SessionLocal, init_db
from contextgrade.errors import ConflictError
from contextgrade.models.db_models import (
    ClientPlan, MembershipDB, MembershipRole, MembershipStatus, UserDB,
)
from contextgrade.auth import hash_password
from contextgrade.services.access import create_client


def seed_client(name: str, email: str, password: str, plan: ClientPlan = ClientPlan.STARTER) -> bool:
    """Create the client, its owner user and the owner membership."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        client = create_client(db, name, plan=plan)

        user = db.query(UserDB).filter(UserDB.email == email.lower()).first()
        if user:
            print(f"Reusing existing user '{email}'.")
        else:
            user = UserDB(
                id=str(uuid4()),
                email=email.lower(),
                name=email.split("@")[0],
                password_hash=hash_password(password),
            )
            db.add(user)

        db.add(MembershipDB(
            id=str(uuid4()),
            user_id=user.id,
            client_id=client.id,
            role=MembershipRole.OWNER,
            status=MembershipStatus.ACTIVE,
        ))
        db.commit()

        print(f"Client created successfully!")
        print(f"  Client ID: {client.id}")
        print(f"  Slug: {client.slug}")
        print(f"  Plan: {client.plan.value}")
        print(f"  API key: {client.api_key}")
        print(f"  Owner: {user.email}")
        return True

    except ConflictError as e:
        print(f"Error: {e.message}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) not in (4, 5):
        print(__doc__)
        sys.exit(1)

    name = sys.argv[1]
    email = sys.argv[2]
    password = sys.argv[3]

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    plan = ClientPlan.STARTER
    if len(sys.argv) == 5:
        try:
            plan = ClientPlan(sys.argv[4].upper())
        except ValueError:
            print(f"Error: Plan must be one of: {', '.join(p.value for p in ClientPlan)}")
            sys.exit(1)

    success = seed_client(name, email, password, plan)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
