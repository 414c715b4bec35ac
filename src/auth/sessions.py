import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth.db import UserSession
from auth.schemas import Principal
from config import SESSION_MAX_AGE
from database import get_async_session

logger = logging.getLogger(__name__)


class SessionStore:
    """Server-side sessions keyed by the token held in the browser cookie."""

    def __init__(self, session: AsyncSession, max_age: int = SESSION_MAX_AGE):
        self.session = session
        self.max_age = max_age

    async def start(self, principal: Principal, previous_token: Optional[str] = None) -> str:
        if previous_token:
            await self.session.execute(
                delete(UserSession).where(UserSession.token == previous_token)
            )
        token = secrets.token_urlsafe(32)
        self.session.add(
            UserSession(
                token=token,
                principal_id=principal.id,
                display_name=principal.display_name,
                created_at=datetime.utcnow(),
            )
        )
        await self.session.commit()
        return token

    async def get(self, token: str) -> Optional[Principal]:
        result = await self.session.execute(
            select(UserSession).where(UserSession.token == token)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        if row.created_at + timedelta(seconds=self.max_age) < datetime.utcnow():
            logger.debug("Session for %s expired", row.principal_id)
            await self.end(token)
            return None
        return Principal(id=row.principal_id, display_name=row.display_name)

    async def end(self, token: Optional[str]) -> None:
        if not token:
            return
        await self.session.execute(delete(UserSession).where(UserSession.token == token))
        await self.session.commit()


async def get_session_store(session: AsyncSession = Depends(get_async_session)):
    yield SessionStore(session)
