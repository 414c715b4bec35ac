import logging
import secrets
from datetime import datetime
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

from fastapi import Depends
from pydantic import HttpUrl, TypeAdapter, ValidationError
from sqlalchemy import insert, select
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth.schemas import Principal
from config import CODE_ATTEMPTS, CODE_LENGTH
from database import get_async_session
from links.exceptions import InvalidUrl, ShortCodeExhausted
from links.models import links as Link
from links.titles import get_title_fetcher

logger = logging.getLogger(__name__)

# No 0/O, 1/l/I: codes are read aloud and retyped.
ALPHABET = "23456789abcdefghjkmnpqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ"

RESERVED_CODES = {
    "auth", "create", "docs", "links", "login", "logout", "openapi", "redoc", "signup",
}

_http_url = TypeAdapter(HttpUrl)


def generate_random_code(length: int = CODE_LENGTH) -> str:
    while True:
        code = "".join(secrets.choice(ALPHABET) for _ in range(length))
        if code.lower() not in RESERVED_CODES:
            return code


def validate_url(url) -> str:
    """
    Return the url stripped of surrounding whitespace, or raise InvalidUrl.

    Besides passing ``HttpUrl``, the url must be spelled as an absolute
    ``http://`` or ``https://`` url with a host. The lenient spellings the
    WHATWG parser repairs (``http:example.com``, ``http:\\\\example.com``,
    ``https:////example.com``) are rejected.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrl(url)
    url = url.strip()
    try:
        _http_url.validate_python(url)
    except ValidationError as e:
        raise InvalidUrl(url) from e

    parts = urlsplit(url)
    if (
        parts.scheme.lower() not in ("http", "https")
        or not url[len(parts.scheme):].startswith("://")
        or not parts.hostname
    ):
        raise InvalidUrl(url)
    return url


class LinkRegistry:
    def __init__(
        self,
        session: AsyncSession,
        fetch_title: Callable[[str], Awaitable[str]],
        code_length: int = CODE_LENGTH,
        code_attempts: int = CODE_ATTEMPTS,
    ):
        self.session = session
        self.fetch_title = fetch_title
        self.code_length = code_length
        self.code_attempts = code_attempts

    async def find_by_url(self, url: str) -> Optional[Row]:
        statement = select(Link).where(Link.c.url == url)
        result = await self.session.execute(statement)
        return result.first()

    async def find_by_code(self, code: str) -> Optional[Row]:
        statement = select(Link).where(Link.c.code == code)
        result = await self.session.execute(statement)
        return result.first()

    async def list_all(self) -> list[Row]:
        statement = select(Link).order_by(Link.c.id)
        result = await self.session.execute(statement)
        return list(result.all())

    async def create_or_get(
        self,
        url: str,
        base_origin: Optional[str] = None,
        owner: Optional[Principal] = None,
    ) -> Row:
        """
        Return the link for ``url``, creating it if none exists yet.

        Title fetch failures abort before anything is written. The unique
        constraint on ``links.url`` decides concurrent creations: the losing
        request gets the winner's record.
        """
        try:
            url = validate_url(url)
        except InvalidUrl:
            logger.info("Not a valid url: %r", url)
            raise

        existing = await self.find_by_url(url)
        if existing is not None:
            return existing

        title = await self.fetch_title(url)

        for _ in range(self.code_attempts):
            code = generate_random_code(self.code_length)
            statement = insert(Link).values(
                code=code,
                url=url,
                title=title,
                base_url=base_origin,
                owner_id=owner.id if owner is not None else None,
                visits=0,
                created_at=datetime.utcnow(),
            )
            try:
                await self.session.execute(statement)
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                existing = await self.find_by_url(url)
                if existing is not None:
                    logger.info("Concurrent creation of %s, using code %s", url, existing.code)
                    return existing
                logger.debug("Short code %s already taken, retrying", code)
                continue
            logger.info("Created link %s -> %s", code, url)
            return await self.find_by_code(code)

        raise ShortCodeExhausted(
            f"No free short code after {self.code_attempts} attempts"
        )


def get_link_registry(
    session: AsyncSession = Depends(get_async_session),
    fetch_title=Depends(get_title_fetcher),
) -> LinkRegistry:
    return LinkRegistry(session, fetch_title)
