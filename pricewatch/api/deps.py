"""FastAPI dependencies."""

from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.db.session import get_db
from pricewatch.sources.base import PriceSource
from pricewatch.worker.tasks import task_runner


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


async def get_price_source() -> PriceSource:
    """Dependency for the shared catalog price source."""
    if task_runner.price_source is None:
        await task_runner.initialize()
    return task_runner.price_source
