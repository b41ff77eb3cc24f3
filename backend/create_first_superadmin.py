"""
Create the first platform super admin interactively.

Usage:
    python create_first_superadmin.py

Refuses to run when a super admin already exists; further super admins are
created by an existing one.
"""

import asyncio
import getpass
import logging

from sqlalchemy import select

from config import settings
from database import async_session_maker, init_db
from errors import AppError
from identity_store import create_user
from models import User, UserRole

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def prompt(label: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    value = input(f"{label}{suffix}: ").strip()
    return value or default


def prompt_password() -> str:
    while True:
        password = getpass.getpass("Password: ")
        if len(password) < settings.MIN_PASSWORD_LENGTH:
            print(f"❌ Password must be at least {settings.MIN_PASSWORD_LENGTH} characters")
            continue
        if password != getpass.getpass("Confirm password: "):
            print("❌ Passwords do not match")
            continue
        return password


async def create_first_superadmin():
    await init_db()

    async with async_session_maker() as db:
        result = await db.execute(select(User.id).where(User.role == UserRole.SUPERADMIN.value).limit(1))
        if result.scalar_one_or_none() is not None:
            print("❌ A super admin already exists. Sign in and create further admins from the platform.")
            return

        print("\n" + "=" * 60)
        print("CREATE FIRST SUPER ADMIN")
        print("=" * 60)

        email = prompt("Email")
        username = prompt("Username", "superadmin")
        full_name = prompt("Full name", "Platform Administrator")
        password = prompt_password()

        try:
            user = await create_user(
                db,
                email=email,
                username=username,
                password=password,
                role=UserRole.SUPERADMIN.value,
                tenant_id=None,
                full_name=full_name
            )
        except AppError as e:
            print(f"❌ {e.message} ({e.code})")
            return

    logger.info(f"Super admin '{user.username}' created (id={user.id})")
    print(f"\n✅ Super admin '{user.username}' created. You can now sign in.")


if __name__ == "__main__":
    asyncio.run(create_first_superadmin())
