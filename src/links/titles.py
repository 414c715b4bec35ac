import asyncio
import html
import logging
import re
from typing import Optional

import httpx

from config import TITLE_FETCH_TIMEOUT
from links.exceptions import TitleFetchError

logger = logging.getLogger(__name__)

TITLE_PATTERN = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
TITLE_END = b"</title>"
MAX_DOCUMENT_BYTES = 256 * 1024


class TitleFetcher:
    """
    Fetches a page and extracts the text of its <title> element.

    The whole fetch, redirects and body included, must finish within
    ``timeout`` seconds. Reading stops once ``</title>`` has arrived or after
    ``max_bytes``. Transport errors, timeouts and non-2xx responses raise
    TitleFetchError.
    """

    def __init__(
        self,
        timeout: float = TITLE_FETCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_bytes: int = MAX_DOCUMENT_BYTES,
    ):
        self.timeout = timeout
        self.transport = transport
        self.max_bytes = max_bytes

    async def __call__(self, url: str) -> str:
        try:
            document = await asyncio.wait_for(self._download(url), self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Timed out reading URL heading for %s after %ss", url, self.timeout)
            raise TitleFetchError(url, f"no complete response within {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning("Error reading URL heading for %s: %s", url, e)
            raise TitleFetchError(url, str(e)) from e
        return extract_title(document)

    async def _download(self, url: str) -> str:
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= self.max_bytes or TITLE_END in body.lower():
                        break
                encoding = response.encoding or "utf-8"
        return bytes(body[: self.max_bytes]).decode(encoding, errors="replace")


def extract_title(document: str) -> str:
    match = TITLE_PATTERN.search(document)
    if match is None:
        return ""
    return html.unescape(" ".join(match.group(1).split()))


fetch_title = TitleFetcher()


def get_title_fetcher() -> TitleFetcher:
    return fetch_title
