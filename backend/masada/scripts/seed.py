"""
Seed Development Data
=====================
Creates a small marketplace to click around in: one admin, two customer
companies, three verified Ethiopian testers and a couple of tests.

Run with: python -m masada.scripts.seed

Existing accounts (matched by email) are left untouched, so the script can be
re-run safely. Every seeded account uses the password "Password123".
"""

import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import session_scope, init_db, close_db
from masada.core.logging_config import logger
from masada.core.security import get_password_hash
from masada.models import (
    User, UserType, UserStatus, CustomerProfile, TesterProfile,
    Test, TestType, Platform, TestStatus,
)

SEED_PASSWORD = "Password123"

CUSTOMERS = [
    {
        "email": "dawit@techstartup.et",
        "name": "Dawit Hailu",
        "company": "Ethiopian FinTech Solutions",
        "industry": "Financial Services",
        "company_size": "11-50",
        "website": "https://fintech.et",
    },
    {
        "email": "meron@ecommerce.et",
        "name": "Meron Teshome",
        "company": "Addis E-Commerce",
        "industry": "E-commerce",
        "company_size": "1-10",
        "website": "https://addisshop.et",
    },
]

TESTERS = [
    {"name": "Almaz Tadesse", "city": "Addis Ababa", "region": "Addis Ababa", "age": "25-34"},
    {"name": "Bereket Wolde", "city": "Dire Dawa", "region": "Dire Dawa", "age": "18-24"},
    {"name": "Chaltu Bekele", "city": "Mekelle", "region": "Tigray", "age": "25-34"},
]

TESTS = [
    {
        "title": "Mobile Banking App Usability Test",
        "description": "Evaluate the onboarding and transfer flows of our new mobile banking app.",
        "instructions": "Use the provided demo credentials and think aloud while completing each task.",
        "test_type": TestType.USABILITY,
        "platform": Platform.MOBILE_APP,
        "target_url": "https://demo.fintech.et",
        "status": TestStatus.PUBLISHED,
        "max_testers": 10,
        "payment_per_tester": 25.0,
        "estimated_duration": 20,
        "requirements": ["Android or iOS smartphone", "Amharic or English"],
        "tasks": [
            {"id": 1, "title": "Login to the app", "description": "Use the provided credentials to log in"},
            {"id": 2, "title": "Check account balance", "description": "Navigate to account balance section"},
            {"id": 3, "title": "Transfer money", "description": "Transfer 100 ETB to another account"},
        ],
        "demographics": {"regions": ["Addis Ababa", "Dire Dawa"], "age_groups": ["18-24", "25-34"]},
    },
    {
        "title": "E-commerce Website Navigation Test",
        "description": "Find out how easily shoppers browse categories and reach checkout.",
        "instructions": "Browse as you normally would. Do not complete a real payment.",
        "test_type": TestType.USABILITY,
        "platform": Platform.WEB,
        "target_url": "https://addisshop.et",
        "status": TestStatus.DRAFT,
        "max_testers": 5,
        "payment_per_tester": 20.0,
        "estimated_duration": 15,
        "requirements": ["Desktop or laptop browser"],
        "tasks": [
            {"id": 1, "title": "Browse products", "description": "Look for electronics category"},
            {"id": 2, "title": "Add to cart", "description": "Add 2 different products to cart"},
        ],
        "demographics": {"regions": ["Addis Ababa", "Bahir Dar", "Hawassa"]},
    },
]


async def get_user(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


def _verified_user(email: str, name: str, user_type: UserType, password_hash: str) -> User:
    now = datetime.utcnow()
    return User(
        email=email,
        name=name,
        password_hash=password_hash,
        user_type=user_type,
        status=UserStatus.ACTIVE,
        email_verified=True,
        email_verified_at=now,
        customer_profile=None,
        tester_profile=None,
    )


async def seed(db: AsyncSession) -> dict:
    """Insert the seed rows that are missing; returns counts of what was created"""
    created = {"users": 0, "tests": 0}
    password_hash = get_password_hash(SEED_PASSWORD)

    if not await get_user(db, "admin@masada.et"):
        db.add(_verified_user("admin@masada.et", "Masada Admin", UserType.ADMIN, password_hash))
        created["users"] += 1

    first_customer: Optional[User] = None
    for data in CUSTOMERS:
        user = await get_user(db, data["email"])
        if user is None:
            user = _verified_user(data["email"], data["name"], UserType.CUSTOMER, password_hash)
            user.customer_profile = CustomerProfile(
                company=data["company"],
                industry=data["industry"],
                company_size=data["company_size"],
                website=data["website"],
            )
            db.add(user)
            created["users"] += 1
        first_customer = first_customer or user

    for data in TESTERS:
        email = f"{data['name'].lower().replace(' ', '.')}@gmail.com"
        if await get_user(db, email):
            continue
        user = _verified_user(email, data["name"], UserType.TESTER, password_hash)
        user.tester_profile = TesterProfile(
            city=data["city"],
            region=data["region"],
            age=data["age"],
            education="Bachelor's Degree",
            experience="Intermediate",
            languages=["Amharic", "English"],
            devices=["Smartphone", "Laptop"],
            internet_speed="Fast",
            availability="6-10",
            is_verified=True,
            verified_at=datetime.utcnow(),
        )
        db.add(user)
        created["users"] += 1

    await db.flush()

    for data in TESTS:
        result = await db.execute(
            select(Test).where(Test.title == data["title"], Test.created_by_id == first_customer.id)
        )
        if result.scalar_one_or_none():
            continue
        test = Test(created_by_id=first_customer.id, **data)
        if test.status == TestStatus.PUBLISHED:
            test.published_at = datetime.utcnow()
        db.add(test)
        created["tests"] += 1

    if created["tests"] and first_customer.customer_profile is not None:
        first_customer.customer_profile.tests_created += created["tests"]

    return created


async def run_seed() -> None:
    await init_db()
    try:
        async with session_scope() as db:
            created = await seed(db)
            await db.commit()
    except Exception as e:
        logger.error(f"Seed failed: {e}")
        print(f"\n❌ Seed failed: {e}")
        raise
    finally:
        await close_db()

    logger.info(f"Seed complete: {created['users']} users, {created['tests']} tests created")
    print("\n✅ Seed complete!")
    print(f"   - Users created: {created['users']}")
    print(f"   - Tests created: {created['tests']}")
    print(f"   - Password for all accounts: {SEED_PASSWORD}")


def main():
    """Console entry point"""
    asyncio.run(run_seed())


if __name__ == "__main__":
    main()
