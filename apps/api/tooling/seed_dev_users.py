"""Seed development customer and administrator accounts into the API database."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cafe_api.core.settings import settings
from cafe_api.models.loyalty import LoyaltyPoints
from cafe_api.models.user import User, UserRoleEnum


class SeedUser(TypedDict):
    email: str
    name: str
    role: str


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_CUSTOMER_EMAIL", "customer@cafe.dev").lower(),
        "name": "Customer QA",
        "role": UserRoleEnum.CUSTOMER.value,
    },
    {
        "email": os.getenv("DEV_ADMIN_EMAIL", "admin@cafe.dev").lower(),
        "name": "Admin QA",
        "role": UserRoleEnum.ADMIN.value,
    },
    {
        "email": os.getenv("DEV_SUPER_ADMIN_EMAIL", "owner@cafe.dev").lower(),
        "name": "Owner QA",
        "role": UserRoleEnum.SUPER_ADMIN.value,
    },
]


async def seed_users(session: AsyncSession) -> None:
    for user in DEV_USERS:
        with session.no_autoflush:
            existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()
        if record:
            record.name = user["name"]
            record.role = user["role"]
            continue
        record = User(email=user["email"], name=user["name"], role=user["role"])
        session.add(record)
        await session.flush()
        session.add(LoyaltyPoints(user_id=record.id, points=0))
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_users(session)
        print("Development users ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
