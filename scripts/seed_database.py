#!/usr/bin/env python3
"""
Script to seed the database with sample coaches and clients for local testing
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta
from coachcal.database import init_db, drop_db, get_db
from coachcal.models import User
from coachcal.models.user import UserRole
from coachcal.services.availability_service import AvailabilityService
from coachcal.utils.security import generate_token

COACHES = [
    ('Maya', 'Lindqvist', 'America/New_York'),
    ('Tomas', 'Oyelaran', 'Europe/London'),
]

CLIENTS = [
    ('Priya', 'Raman', 'America/Chicago'),
    ('Diego', 'Alvarez', 'America/Los_Angeles'),
    ('Hannah', 'Weiss', 'Europe/Berlin'),
]


def create_users(db):
    """Create coaches and clients in one organization"""
    coaches = []
    for first, last, tz in COACHES:
        coach = User(
            email=f"{first.lower()}@coachcal.dev",
            first_name=first,
            last_name=last,
            role=UserRole.COACH,
            organization_id='org_demo',
            timezone=tz
        )
        db.add(coach)
        coaches.append(coach)

    clients = []
    for first, last, tz in CLIENTS:
        client = User(
            email=f"{first.lower()}@example.com",
            first_name=first,
            last_name=last,
            role=UserRole.CLIENT,
            organization_id='org_demo',
            timezone=tz,
            sms_opt_in=False
        )
        db.add(client)
        clients.append(client)

    db.flush()
    print(f"Created {len(coaches)} coaches and {len(clients)} clients")

    return {'coaches': coaches, 'clients': clients}


def main():
    """Main seeding function"""
    print("Dropping existing database...")
    drop_db()

    print("Initializing new database...")
    init_db()

    with get_db() as db:
        print("Creating users...")
        users = create_users(db)

    availability_service = AvailabilityService()
    for coach in users['coaches']:
        availability_service.get_profile(coach.id)

    print("\nDatabase seeded successfully!")
    print("Bearer tokens (valid 7 days):")
    for user in users['coaches'] + users['clients']:
        token = generate_token(
            {'user_id': user.id, 'role': user.role.value, 'email': user.email},
            expires_delta=timedelta(days=7)
        )
        print(f"- {user.full_name} ({user.role.value}, id {user.id}): {token}")


if __name__ == "__main__":
    main()
