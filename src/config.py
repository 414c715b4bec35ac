import os
import secrets

from dotenv import load_dotenv

load_dotenv()

DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME")

if os.getenv("DATABASE_URL"):
    DATABASE_URL = os.getenv("DATABASE_URL")
elif DB_HOST:
    DATABASE_URL = (
        f"postgresql+asyncpg://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    )
else:
    DATABASE_URL = "sqlite+aiosqlite:///./shortly.db"

REDIS_HOST = os.getenv("REDIS_HOST")
CACHE_EXPIRE = int(os.getenv("CACHE_EXPIRE", "3600"))

# Signs OAuth state tokens. A random value only works for a single process.
SECRET = os.getenv("SECRET") or secrets.token_urlsafe(32)

GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID")
GITHUB_CLIENT_SECRET = os.getenv("GITHUB_CLIENT_SECRET")
GITHUB_CALLBACK_URL = os.getenv("GITHUB_CALLBACK_URL")
OAUTH_STATE_COOKIE_NAME = os.getenv("OAUTH_STATE_COOKIE_NAME", "shortly_oauth_state")
OAUTH_STATE_LIFETIME = int(os.getenv("OAUTH_STATE_LIFETIME", "3600"))

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "shortly_session")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 14)))

TITLE_FETCH_TIMEOUT = float(os.getenv("TITLE_FETCH_TIMEOUT", "5"))
CODE_LENGTH = int(os.getenv("CODE_LENGTH", "7"))
CODE_ATTEMPTS = int(os.getenv("CODE_ATTEMPTS", "5"))
LINKS_REQUIRE_AUTH = os.getenv("LINKS_REQUIRE_AUTH", "false").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "info")
PORT = int(os.getenv("PORT", "4568"))
