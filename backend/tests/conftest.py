"""
Masada - Test Configuration and Fixtures
"""
import os
import tempfile
from typing import AsyncGenerator, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from faker import Faker

# Set testing environment before anything from masada is imported
os.environ['TESTING'] = 'true'
os.environ['ENVIRONMENT'] = 'test'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test.db'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing'
os.environ['JWT_REFRESH_SECRET_KEY'] = 'test-jwt-refresh-secret-key-for-testing'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['SMTP_USER'] = ''
os.environ['LOG_FILE'] = ''
os.environ['UPLOAD_PATH'] = tempfile.mkdtemp(prefix='masada-uploads-')

from masada.main import app
from masada.core.database import Base, get_db
from masada.core.security import get_password_hash, create_access_token
from masada.models import (
    User, UserType, UserStatus, CustomerProfile, TesterProfile,
    Test, TestType, Platform, TestStatus,
)

fake = Faker()

TEST_PASSWORD = 'Password123'

# Test database setup
TEST_DATABASE_URL = 'sqlite+aiosqlite:///./test.db'
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    """Same contract as get_db, bound to the test engine"""
    async with TestSessionLocal() as session:
        try:
            yield session
            if session.new or session.dirty or session.deleted or session.in_transaction():
                await session.commit()
        except Exception:
            await session.rollback()
            raise


async def fetch(model, pk):
    """Load a fresh copy of a row in a short-lived session"""
    async with TestSessionLocal() as session:
        return await session.get(model, pk)


@pytest.fixture(scope='function')
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create fresh tables and a setup session for each test"""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database override"""
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_user(
    db: AsyncSession,
    user_type: UserType,
    status: UserStatus = UserStatus.ACTIVE,
    email_verified: bool = True,
    email: Optional[str] = None,
    **profile_fields,
) -> User:
    """Insert a user (with the matching profile) and commit"""
    user = User(
        email=(email or fake.unique.email()).lower(),
        password_hash=get_password_hash(TEST_PASSWORD),
        name=fake.name(),
        user_type=user_type,
        status=status,
        email_verified=email_verified,
        customer_profile=None,
        tester_profile=None,
    )
    if user_type == UserType.CUSTOMER:
        user.customer_profile = CustomerProfile(company=fake.company(), **profile_fields)
    elif user_type == UserType.TESTER:
        profile = {
            'city': 'Addis Ababa',
            'region': 'Addis Ababa',
            'age': '25-34',
            'languages': ['Amharic', 'English'],
            'devices': ['Smartphone'],
            'is_verified': True,
        }
        profile.update(profile_fields)
        user.tester_profile = TesterProfile(**profile)
    db.add(user)
    await db.commit()
    return user


async def create_test(
    db: AsyncSession,
    owner: User,
    status: TestStatus = TestStatus.PUBLISHED,
    **fields,
) -> Test:
    data = {
        'title': 'Checkout Flow Usability',
        'description': 'Walk through the checkout flow and report friction.',
        'test_type': TestType.USABILITY,
        'platform': Platform.WEB,
        'target_url': 'https://shop.example.et',
        'max_testers': 5,
        'payment_per_tester': 25.0,
        'estimated_duration': 15,
        'requirements': ['Desktop browser'],
        'tasks': [{'id': 1, 'title': 'Add an item to the cart'}],
        'current_testers': 0,
    }
    data.update(fields)
    test = Test(created_by_id=owner.id, status=status, **data)
    db.add(test)
    await db.commit()
    return test


def auth_headers_for(user: User) -> dict:
    token = create_access_token({
        'sub': str(user.id),
        'email': user.email,
        'user_type': user.user_type.value,
    })
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
async def customer_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserType.CUSTOMER)


@pytest.fixture
async def tester_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserType.TESTER)


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserType.ADMIN)


@pytest.fixture
def customer_headers(customer_user: User) -> dict:
    return auth_headers_for(customer_user)


@pytest.fixture
def tester_headers(tester_user: User) -> dict:
    return auth_headers_for(tester_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return auth_headers_for(admin_user)


@pytest.fixture
async def published_test(db_session: AsyncSession, customer_user: User) -> Test:
    return await create_test(db_session, customer_user, TestStatus.PUBLISHED)


@pytest.fixture
async def draft_test(db_session: AsyncSession, customer_user: User) -> Test:
    return await create_test(db_session, customer_user, TestStatus.DRAFT)


@pytest.fixture
def tester_registration_data() -> dict:
    return {
        'email': fake.unique.email(),
        'password': TEST_PASSWORD,
        'name': fake.name(),
        'phone': '+251911223344',
        'city': 'Hawassa',
        'region': 'Sidama',
        'age': '25-34',
        'education': "Bachelor's Degree",
        'occupation': 'Accountant',
        'experience': 'Intermediate',
        'languages': ['Amharic', 'English'],
        'devices': ['Smartphone', 'Laptop'],
        'internet_speed': 'Medium',
        'availability': '6-10',
    }
