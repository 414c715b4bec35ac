import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import RedirectResponse
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend
from fastapi_cache.backends.redis import RedisBackend
from redis import asyncio as aioredis

from auth.exceptions import LoginRequired
from auth.router import router as auth_router
from auth.schemas import Principal
from auth.users import current_active_user
from config import LOG_LEVEL, PORT, REDIS_HOST
from database import create_db_and_tables
from links.router import router as links_router
from redirects.router import router as redirects_router
from templating import templates

import uvicorn

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if REDIS_HOST:
        redis = aioredis.from_url(f"redis://{REDIS_HOST}")
        FastAPICache.init(RedisBackend(redis), prefix="shortly-cache")
    else:
        FastAPICache.init(InMemoryBackend(), prefix="shortly-cache")
    await create_db_and_tables()
    logger.info("Shortly is ready")
    yield


app = FastAPI(title="Shortly", lifespan=lifespan)


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    return RedirectResponse("/login", status_code=status.HTTP_302_FOUND)


@app.get("/", include_in_schema=False)
async def home(request: Request, user: Principal = Depends(current_active_user)):
    return templates.TemplateResponse(request, "index.html", {"user": user})


@app.get("/create", include_in_schema=False)
async def create_page(request: Request, user: Principal = Depends(current_active_user)):
    return templates.TemplateResponse(request, "index.html", {"user": user})


# Login, signup, logout and the GitHub OAuth handshake
app.include_router(auth_router)
# Link creation and listing under /links
app.include_router(links_router)
# Short code catch-all, must be last
app.include_router(redirects_router)


if __name__ == "__main__":
    uvicorn.run("main:app", reload=True, host="0.0.0.0", port=PORT, log_level=LOG_LEVEL)
