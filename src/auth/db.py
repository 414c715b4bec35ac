import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends
from fastapi_users.password import PasswordHelper, PasswordHelperProtocol
from sqlalchemy import DateTime, Integer, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from auth.exceptions import DuplicateUser
from database import get_async_session
from models import Base

logger = logging.getLogger(__name__)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(
        String(length=150), unique=True, index=True, nullable=False
    )
    password_hash: Mapped[str] = mapped_column(String(length=1024), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class UserSession(Base):
    __tablename__ = "sessions"

    token: Mapped[str] = mapped_column(String(length=64), primary_key=True)
    principal_id: Mapped[str] = mapped_column(String(length=255), index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class CredentialStore:
    """
    Username/password pairs. Only salted digests from the password helper are
    persisted.
    """

    def __init__(
        self,
        session: AsyncSession,
        password_helper: Optional[PasswordHelperProtocol] = None,
    ):
        self.session = session
        self.password_helper = password_helper or PasswordHelper()

    async def get(self, username: str) -> Optional[User]:
        statement = select(User).where(User.username == username)
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def exists(self, username: str) -> bool:
        return await self.get(username) is not None

    async def create(self, username: str, password: str) -> User:
        if await self.exists(username):
            raise DuplicateUser(username)

        user = User(username=username, password_hash=self.password_helper.hash(password))
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateUser(username) from e
        logger.info("Created user %s", username)
        return user

    async def verify(self, username: str, password: str) -> bool:
        user = await self.get(username)
        if user is None:
            # Same hashing cost as a real check, so unknown names are not cheaper.
            self.password_helper.hash(password)
            return False

        verified, updated_hash = self.password_helper.verify_and_update(
            password, user.password_hash
        )
        if verified and updated_hash is not None:
            user.password_hash = updated_hash
            await self.session.commit()
        return verified


async def get_credential_store(session: AsyncSession = Depends(get_async_session)):
    yield CredentialStore(session)
