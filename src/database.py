from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import DATABASE_URL
from models import Base
from links.models import metadata as links_metadata


engine = create_async_engine(DATABASE_URL)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables(bind=engine) -> None:
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(links_metadata.create_all)


def get_session_maker() -> async_sessionmaker:
    return async_session_maker


async def get_async_session(
    session_maker: async_sessionmaker = Depends(get_session_maker),
) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session
