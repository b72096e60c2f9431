"""
Pytest configuration and fixtures for Catering SMS tests.
"""

from datetime import date, datetime, time
from typing import AsyncGenerator, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from catering_sms.config.settings import Settings
from catering_sms.domain.roster import (
    Base,
    Catering,
    CateringMeal,
    Group,
    GroupRelation,
    Guardian,
    Meal,
    MealSnapshot,
    Student,
    StudentGuardian,
    StudentSnapshot,
)
from catering_sms.domain.message import InboundMessage  # noqa: F401 - needed for table creation
from catering_sms.domain.attendance import AttendanceEntry  # noqa: F401 - needed for table creation


# Use a separate in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

GUARDIAN_PHONE = "600100200"


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def roster(test_session) -> AsyncSession:
    """
    Seed a school with one class, two students sharing a guardian, and a
    weekday catering serving breakfast and lunch.

    Hierarchy (closure table): school <- class <- kamil, anna
    """
    test_session.add_all([
        Group(id="school", name="School"),
        Group(id="class", name="Class 1A"),
        Student(id="kamil", name="Kamil", surname="Nowak"),
        Student(id="anna", name="Anna", surname="Nowak"),
        Student(id="orphan", name="Olek", surname="Kowalski"),
        Guardian(id="guardian", fullname="Ewa Nowak", phone=GUARDIAN_PHONE),
        StudentGuardian(student_id="kamil", guardian_id="guardian"),
        StudentGuardian(student_id="anna", guardian_id="guardian"),
        StudentGuardian(student_id="orphan", guardian_id="guardian"),
        Meal(id="breakfast", name="Breakfast"),
        Meal(id="lunch", name="Lunch"),
        Catering(
            id="catering",
            group_id="school",
            since=date(2024, 9, 1),
            until=date(2025, 6, 30),
            dow=0b0011111,
            grace_period=time(7, 0),
        ),
        CateringMeal(catering_id="catering", meal_id="breakfast", meal_order=0),
        CateringMeal(catering_id="catering", meal_id="lunch", meal_order=1),
    ])
    test_session.add_all([
        GroupRelation(child=child, parent=parent, level=level)
        for child, parent, level in [
            ("school", "school", 0),
            ("class", "class", 0),
            ("class", "school", 1),
            ("kamil", "kamil", 0),
            ("kamil", "class", 1),
            ("kamil", "school", 2),
            ("anna", "anna", 0),
            ("anna", "class", 1),
            ("anna", "school", 2),
            ("orphan", "orphan", 0),
        ]
    ])
    # Other sessions share the connection; seed data must be committed.
    await test_session.commit()
    return test_session


@pytest.fixture
def meals() -> List[MealSnapshot]:
    """Meals of the seeded catering in display order."""
    return [
        MealSnapshot(id="breakfast", name="Breakfast"),
        MealSnapshot(id="lunch", name="Lunch"),
    ]


@pytest.fixture
def kamil(meals) -> StudentSnapshot:
    """Snapshot of the seeded student Kamil."""
    return StudentSnapshot(
        id="kamil",
        name="Kamil",
        surname="Nowak",
        grace_period=time(7, 0),
        starts=date(2024, 9, 1),
        ends=date(2025, 6, 30),
        meals=meals,
    )


@pytest.fixture
def anna(meals) -> StudentSnapshot:
    """Snapshot of the seeded student Anna."""
    return StudentSnapshot(
        id="anna",
        name="Anna",
        surname="Nowak",
        grace_period=time(7, 0),
        starts=date(2024, 9, 1),
        ends=date(2025, 6, 30),
        meals=meals,
    )


@pytest.fixture
def arrived_at() -> datetime:
    """Arrival time of test messages: Friday before the test week."""
    return datetime(2025, 1, 10, 8, 0)


@pytest.fixture
def test_settings() -> Settings:
    """Application settings for testing."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        run_dispatcher=False,
        reply_locale="en",
        phone_country_prefix="+48",
        require_explicit_student=False,
        fuzzy_max_distance=3,
    )
