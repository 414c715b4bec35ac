import asyncio
import time
from datetime import datetime

import httpx
import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import func, insert, select

import links.router
import links.service
from auth.schemas import Principal
from links.exceptions import InvalidUrl, ShortCodeExhausted, TitleFetchError
from links.models import links as Link
from links.service import LinkRegistry
from links.titles import TitleFetcher

from conftest import signup

pytestmark = pytest.mark.anyio


async def count_links(session):
    result = await session.execute(select(func.count()).select_from(Link))
    return result.scalar_one()


async def test_create_or_get_creates_link(session, fetch_title):
    registry = LinkRegistry(session, fetch_title)
    owner = Principal(id="alice", display_name="alice")

    link = await registry.create_or_get("http://example.com", "http://short.ly", owner)

    assert link.url == "http://example.com"
    assert link.title == "Example Domain"
    assert link.visits == 0
    assert link.owner_id == "alice"
    assert link.base_url == "http://short.ly"
    assert len(link.code) == 7


async def test_create_or_get_is_idempotent(session, fetch_title):
    registry = LinkRegistry(session, fetch_title)

    first = await registry.create_or_get("http://example.com")
    second = await registry.create_or_get("http://example.com")

    assert first.code == second.code
    assert fetch_title.calls == ["http://example.com"]
    assert await count_links(session) == 1


@pytest.mark.parametrize("url", ["", "example.com", "ftp://example.com", "not a url"])
async def test_malformed_url_is_never_persisted(session, fetch_title, url):
    registry = LinkRegistry(session, fetch_title)

    with pytest.raises(InvalidUrl):
        await registry.create_or_get(url)

    assert fetch_title.calls == []
    assert await count_links(session) == 0


async def test_title_failure_aborts_creation(session, fetch_title):
    fetch_title.failing.add("http://unreachable.example")
    registry = LinkRegistry(session, fetch_title)

    with pytest.raises(TitleFetchError):
        await registry.create_or_get("http://unreachable.example")

    assert await count_links(session) == 0


async def test_concurrent_creation_returns_the_winner(session, session_maker):
    async def racing_fetch_title(url):
        # Another request commits the same url while this one fetches the title.
        async with session_maker() as other:
            await other.execute(
                insert(Link).values(
                    code="winner1",
                    url=url,
                    title="Winner",
                    visits=0,
                    created_at=datetime.utcnow(),
                )
            )
            await other.commit()
        return "Loser"

    registry = LinkRegistry(session, racing_fetch_title)
    link = await registry.create_or_get("http://example.com/race")

    assert link.code == "winner1"
    assert link.title == "Winner"
    assert await count_links(session) == 1


async def test_code_collision_retries(session, fetch_title, monkeypatch):
    registry = LinkRegistry(session, fetch_title)
    taken = await registry.create_or_get("http://example.com/first")

    codes = iter([taken.code, "fresh12"])
    monkeypatch.setattr(links.service, "generate_random_code", lambda length: next(codes))

    link = await registry.create_or_get("http://example.com/second")
    assert link.code == "fresh12"


async def test_code_collision_gives_up(session, fetch_title, monkeypatch):
    registry = LinkRegistry(session, fetch_title, code_attempts=3)
    taken = await registry.create_or_get("http://example.com/first")
    monkeypatch.setattr(links.service, "generate_random_code", lambda length: taken.code)

    with pytest.raises(ShortCodeExhausted):
        await registry.create_or_get("http://example.com/second")
    assert await count_links(session) == 1


async def test_list_all_in_insertion_order(session, fetch_title):
    registry = LinkRegistry(session, fetch_title)
    for path in ("a", "b", "c"):
        await registry.create_or_get(f"http://example.com/{path}")

    listed = await registry.list_all()
    assert [link.url for link in listed] == [
        "http://example.com/a",
        "http://example.com/b",
        "http://example.com/c",
    ]


async def test_post_links(client: AsyncClient):
    response = await client.post("/links", json={"url": "http://example.com"})
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["url"] == "http://example.com"
    assert body["title"] == "Example Domain"
    assert body["visits"] == 0
    assert body["owner_id"] is None

    again = await client.post("/links", json={"url": "http://example.com"})
    assert again.status_code == status.HTTP_200_OK
    assert again.json()["code"] == body["code"]


async def test_post_links_records_owner_and_origin(client: AsyncClient):
    await signup(client)
    response = await client.post(
        "/links",
        json={"url": "http://example.com"},
        headers={"Origin": "http://short.ly"},
    )
    assert response.status_code == 200
    assert response.json()["owner_id"] == "alice"
    assert response.json()["base_url"] == "http://short.ly"


@pytest.mark.parametrize(
    "url",
    [
        "",
        "example.com",
        "ftp://example.com",
        "http:example.com",
        "http:/example.com",
        "http:\\\\example.com",
        "https:////example.com",
    ],
)
async def test_post_links_invalid_url(client: AsyncClient, url):
    response = await client.post("/links", json={"url": url})
    assert response.status_code == status.HTTP_404_NOT_FOUND


async def test_post_links_title_failure(client: AsyncClient, fetch_title):
    fetch_title.failing.add("http://unreachable.example")
    response = await client.post("/links", json={"url": "http://unreachable.example"})
    assert response.status_code == status.HTTP_404_NOT_FOUND


async def test_post_links_can_require_login(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(links.router, "LINKS_REQUIRE_AUTH", True)

    response = await client.post("/links", json={"url": "http://example.com"})
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == "/login"

    await signup(client)
    response = await client.post("/links", json={"url": "http://example.com"})
    assert response.status_code == status.HTTP_200_OK


async def test_get_links_requires_login(client: AsyncClient):
    response = await client.get("/links")
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == "/login"


async def test_get_links(client: AsyncClient):
    await signup(client)
    await client.post("/links", json={"url": "http://example.com"})
    await client.post("/links", json={"url": "http://example.org"})

    response = await client.get("/links")
    assert response.status_code == 200
    assert [link["url"] for link in response.json()] == [
        "http://example.com",
        "http://example.org",
    ]


async def test_trailing_slash_reaches_the_listing(client: AsyncClient, session_maker):
    response = await client.get("/links/")
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == "/login"

    await signup(client)
    created = (await client.post("/links/", json={"url": "http://example.com"})).json()

    response = await client.get("/links/")
    assert response.status_code == status.HTTP_200_OK
    assert [link["code"] for link in response.json()] == [created["code"]]

    # Listing is not a visit to any short code.
    async with session_maker() as session:
        visits = await session.execute(select(Link.c.visits).where(Link.c.id == created["id"]))
        assert visits.scalar_one() == 0


async def test_title_fetcher_reads_title():
    def handler(request):
        return httpx.Response(200, html="<html><title>Hello</title></html>")

    fetcher = TitleFetcher(transport=httpx.MockTransport(handler))
    assert await fetcher("http://example.com") == "Hello"


async def test_title_fetcher_error_status():
    fetcher = TitleFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    with pytest.raises(TitleFetchError):
        await fetcher("http://example.com")


async def test_title_fetcher_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = TitleFetcher(transport=httpx.MockTransport(handler))
    with pytest.raises(TitleFetchError):
        await fetcher("http://example.com")


async def test_title_fetcher_gives_up_on_a_trickling_server():
    handlers = []

    async def trickle(reader, writer):
        handlers.append(asyncio.current_task())
        await reader.readuntil(b"\r\n\r\n")
        writer.write(
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Type: text/html\r\n"
            b"Transfer-Encoding: chunked\r\n\r\n"
        )
        try:
            # Each chunk arrives well inside the per-read timeout.
            for _ in range(10):
                writer.write(b"1\r\n.\r\n")
                await writer.drain()
                await asyncio.sleep(0.3)
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(trickle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    fetcher = TitleFetcher(timeout=0.5)
    started = time.monotonic()
    try:
        with pytest.raises(TitleFetchError):
            await fetcher(f"http://127.0.0.1:{port}/")
    finally:
        for handler in handlers:
            handler.cancel()
        server.close()

    assert time.monotonic() - started < 2


async def test_title_fetcher_stops_reading_after_title():
    async def endless_body():
        yield b"<html><head><title>Endless</title></head><body>"
        while True:
            yield b"<p>more</p>" * 100

    def handler(request):
        return httpx.Response(200, content=endless_body(), headers={"Content-Type": "text/html"})

    fetcher = TitleFetcher(transport=httpx.MockTransport(handler))
    assert await fetcher("http://example.com") == "Endless"


async def test_title_fetcher_caps_body_size():
    async def endless_body():
        while True:
            yield b"<p>no title here</p>" * 100

    def handler(request):
        return httpx.Response(200, content=endless_body())

    fetcher = TitleFetcher(transport=httpx.MockTransport(handler), max_bytes=64 * 1024)
    assert await fetcher("http://example.com") == ""
