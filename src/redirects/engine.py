import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends
from fastapi_cache import FastAPICache
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import CACHE_EXPIRE
from database import get_session_maker
from links.models import clicks as Click, links as Link

logger = logging.getLogger(__name__)


def log_accounting_failure(task: asyncio.Task) -> None:
    # Also runs when the request was cancelled and nobody awaits the task.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Visit accounting failed", exc_info=exc)


@dataclass
class ResolvedLink:
    id: int
    url: str


class RedirectEngine:
    """
    Resolves short codes and accounts for each successful redirect.

    Every step opens its own session so the accounting writes do not depend
    on the lifetime of the request that triggered them.
    """

    def __init__(self, session_maker: async_sessionmaker, cache_expire: int = CACHE_EXPIRE):
        self.session_maker = session_maker
        self.cache_expire = cache_expire

    @staticmethod
    def cache_key(code: str) -> str:
        return f"{FastAPICache.get_prefix()}:code:{code}"

    async def resolve(self, code: str) -> Optional[ResolvedLink]:
        backend = FastAPICache.get_backend()
        coder = FastAPICache.get_coder()
        key = self.cache_key(code)

        cached = await backend.get(key)
        if cached is not None:
            return ResolvedLink(**coder.decode(cached))

        async with self.session_maker() as session:
            statement = select(Link.c.id, Link.c.url).where(Link.c.code == code)
            row = (await session.execute(statement)).first()
        if row is None:
            return None

        # Code and url of a link never change, so hits can be cached.
        await backend.set(
            key, coder.encode({"id": row.id, "url": row.url}), expire=self.cache_expire
        )
        return ResolvedLink(id=row.id, url=row.url)

    async def record_click(self, link_id: int) -> None:
        try:
            async with self.session_maker() as session:
                await session.execute(
                    insert(Click).values(link_id=link_id, created_at=datetime.utcnow())
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record click for link %s", link_id)

    async def increment_visits(self, link_id: int) -> None:
        async with self.session_maker() as session:
            statement = (
                update(Link)
                .where(Link.c.id == link_id)
                .values(visits=Link.c.visits + 1)
            )
            await session.execute(statement)
            await session.commit()

    async def _account(self, link_id: int) -> None:
        await self.record_click(link_id)
        await self.increment_visits(link_id)

    async def visit(self, code: str) -> Optional[str]:
        """Return the destination for ``code`` after counting the visit, or None."""
        link = await self.resolve(code)
        if link is None:
            return None
        accounting = asyncio.ensure_future(self._account(link.id))
        accounting.add_done_callback(log_accounting_failure)
        await asyncio.shield(accounting)
        return link.url


def get_redirect_engine(
    session_maker: async_sessionmaker = Depends(get_session_maker),
) -> RedirectEngine:
    return RedirectEngine(session_maker)
