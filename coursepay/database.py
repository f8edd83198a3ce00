from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.config import settings


def build_engine(url: str):
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,      # checks dead connections
        pool_recycle=1800,       # refresh every 30 min
    )


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.async_database_url)
async_session_factory = build_session_factory(engine)


async def create_db_and_tables(bind=engine):
    from coursepay import models  # noqa: F401  registers every table

    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session():
    async with async_session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    return async_session_factory
