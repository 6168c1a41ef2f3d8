from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from helpdesk_sla.core.config import settings

engine_options = {
    "echo": settings.DEBUG,
    "pool_pre_ping": True,
}

# SQLite pools do not accept sizing arguments
if not settings.is_sqlite:
    engine_options.update(pool_size=10, max_overflow=20)

# Create async engine
engine = create_async_engine(settings.DATABASE_URL, **engine_options)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for models
Base = declarative_base()


# Dependency for getting DB session
async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
