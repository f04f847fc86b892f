from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .settings.config import settings

DATABASE_URL = settings.async_database_url

engine = create_async_engine(DATABASE_URL, echo=settings.DB_ECHO, future=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
Base = declarative_base()

async def get_db():
    async with async_session_maker() as session:
        yield session

async def init_db():
    # Only run create_all in dev, never in prod with Alembic
    if settings.RUN_DB_CREATE_ALL:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
