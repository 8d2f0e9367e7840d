"""
Café Aroma - Database Seed Script

Creates a development admin and, optionally, demo viewer/user accounts.

Usage:
    python -m scripts.seed_users
"""

import asyncio
import logging

from sqlmodel import Session

from aroma.auth.database import get_engine, init_db
from aroma.auth.models import Role
from aroma.auth.users import create_local_user, get_user_by_email
from aroma.config import settings


logger = logging.getLogger("aroma.seed")

ADMIN = ("Administrador", "admin@cafearoma.local", "Admin@Aroma2024", Role.ADMIN)

DEMO_USERS = [
    ("Visor", "viewer@cafearoma.local", "Viewer@Aroma2024", Role.VIEWER),
    ("Cliente", "cliente@cafearoma.local", "Cliente@Aroma2024", Role.USER),
]


async def seed(accounts) -> None:
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as session:
        for name, email, password, role in accounts:
            if await get_user_by_email(session, email):
                logger.info("User %s already exists.", email)
                continue
            await create_local_user(session, name=name, email=email, password=password, role=role)
            logger.info("Created user: %s (%s) password=%s", email, role.value, password)

    engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logger.info("=" * 50)
    logger.info("Café Aroma - User Seed Script")
    logger.info("=" * 50)

    asyncio.run(seed([ADMIN]))

    response = input("Create demo viewer/user accounts? (y/n): ")
    if response.lower() == "y":
        asyncio.run(seed(DEMO_USERS))

    logger.info("Done!")
