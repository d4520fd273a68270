from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from config import Settings
import models  # noqa: F401  registers the tables and the overlap constraint DDL


def build_engine(settings: Settings) -> AsyncEngine:
    # Fail fast when the URL is missing.
    if not settings.database_url:
        raise ValueError("DATABASE_URL is not set. Please check your .env file.")

    return create_async_engine(settings.database_url, echo=settings.sql_echo, future=True)


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine):
    async with engine.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)
