"""
Database setup and session management.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from catering_sms.config.settings import get_settings
from catering_sms.domain.roster import Base
from catering_sms.domain.message import InboundMessage  # noqa: F401 - needed for table creation
from catering_sms.domain.attendance import AttendanceEntry  # noqa: F401 - needed for table creation

settings = get_settings()

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_database() -> None:
    """Initialize database and create tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a new database session."""
    async with async_session_factory() as session:
        yield session
