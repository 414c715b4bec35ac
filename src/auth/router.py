import logging
import secrets
from typing import Optional

import httpx
import jwt
from fastapi import APIRouter, Cookie, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from fastapi_users.jwt import decode_jwt
from fastapi_users.router.oauth import STATE_TOKEN_AUDIENCE, generate_state_token
from httpx_oauth.exceptions import HTTPXOAuthError

from auth.exceptions import DuplicateUser, InvalidCredentials
from auth.schemas import LocalPassword, OAuthProfile, Principal
from auth.sessions import SessionStore, get_session_store
from auth.users import (
    IdentityResolver,
    current_active_user,
    get_github_client,
    get_identity_resolver,
    session_cookie,
)
from config import (
    GITHUB_CALLBACK_URL,
    OAUTH_STATE_COOKIE_NAME,
    OAUTH_STATE_LIFETIME,
    SECRET,
    SESSION_COOKIE_NAME,
    SESSION_MAX_AGE,
)
from templating import templates

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

CSRF_TOKEN_KEY = "csrftoken"


def set_session_cookie(response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
    )


def redirect_to_login() -> RedirectResponse:
    return RedirectResponse("/login", status_code=status.HTTP_302_FOUND)


@router.get("/login", include_in_schema=False)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html")


@router.get("/signup", include_in_schema=False)
async def signup_page(request: Request):
    return templates.TemplateResponse(request, "signup.html")


@router.post("/login")
async def login(
    username: str = Form(""),
    password: str = Form(""),
    token: Optional[str] = Depends(session_cookie),
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    """
    Log in with a local username and password. Unknown users and wrong
    passwords get the same redirect back to the login form.
    """
    try:
        _, session_token = await resolver.login(
            LocalPassword(username=username, password=password), previous_token=token
        )
    except InvalidCredentials:
        logger.info("Failed login for %r", username)
        return RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)

    response = RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    set_session_cookie(response, session_token)
    return response


@router.post("/signup")
async def signup(
    username: str = Form(""),
    password: str = Form(""),
    token: Optional[str] = Depends(session_cookie),
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    """
    Create a local account and log it in. A taken username redirects to the
    login form and leaves the existing account untouched.
    """
    username = username.strip()
    if not username or not password:
        return RedirectResponse("/signup", status_code=status.HTTP_303_SEE_OTHER)

    try:
        principal = await resolver.register(username, password)
    except DuplicateUser:
        logger.info("Signup for existing user %r", username)
        return RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)

    session_token = await resolver.establish(principal, previous_token=token)
    response = RedirectResponse("/", status_code=status.HTTP_201_CREATED)
    set_session_cookie(response, session_token)
    return response


@router.get("/logout")
async def logout(
    user: Principal = Depends(current_active_user),
    token: Optional[str] = Depends(session_cookie),
    sessions: SessionStore = Depends(get_session_store),
):
    await sessions.end(token)
    logger.info("Logged out %s", user.id)
    response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


def github_callback_url(request: Request) -> str:
    return GITHUB_CALLBACK_URL or str(request.url_for("github_callback"))


def state_matches_browser(state_data: dict, browser_token: Optional[str]) -> bool:
    expected = state_data.get(CSRF_TOKEN_KEY)
    if not expected or not browser_token:
        return False
    return secrets.compare_digest(str(expected).encode(), browser_token.encode())


def abandon_github_login() -> RedirectResponse:
    response = redirect_to_login()
    response.delete_cookie(OAUTH_STATE_COOKIE_NAME)
    return response


@router.get("/auth/github")
async def github_authorize(request: Request, client=Depends(get_github_client)):
    """
    Start the GitHub handshake. The signed state carries a random token that
    is also set as a cookie, so the callback only succeeds in this browser.
    """
    if client is None:
        logger.warning("GitHub login requested but GITHUB_CLIENT_ID/SECRET are not set")
        return redirect_to_login()

    browser_token = secrets.token_urlsafe(32)
    state = generate_state_token(
        {CSRF_TOKEN_KEY: browser_token}, SECRET, OAUTH_STATE_LIFETIME
    )
    authorization_url = await client.get_authorization_url(
        github_callback_url(request), state
    )
    response = RedirectResponse(authorization_url, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        OAUTH_STATE_COOKIE_NAME,
        browser_token,
        max_age=OAUTH_STATE_LIFETIME,
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/auth/github/callback", name="github_callback")
async def github_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    browser_token: Optional[str] = Cookie(None, alias=OAUTH_STATE_COOKIE_NAME),
    token: Optional[str] = Depends(session_cookie),
    client=Depends(get_github_client),
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    if client is None or error is not None or not code or not state:
        logger.info("GitHub callback rejected (error=%s)", error)
        return abandon_github_login()

    try:
        state_data = decode_jwt(state, SECRET, [STATE_TOKEN_AUDIENCE])
    except jwt.PyJWTError:
        logger.warning("GitHub callback with invalid state token")
        return abandon_github_login()

    if not state_matches_browser(state_data, browser_token):
        logger.warning("GitHub callback state was issued to another browser")
        return abandon_github_login()

    try:
        access_token = await client.get_access_token(code, github_callback_url(request))
        profile = await client.get_profile(access_token["access_token"])
    except (HTTPXOAuthError, httpx.HTTPError) as e:
        logger.warning("GitHub token exchange failed: %s", e)
        return abandon_github_login()

    oauth_profile = OAuthProfile(
        provider="github",
        account_id=str(profile["id"]),
        login=profile.get("login") or str(profile["id"]),
    )
    principal, session_token = await resolver.login(oauth_profile, previous_token=token)
    logger.info("GitHub login for %s", principal.id)

    response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
    response.delete_cookie(OAUTH_STATE_COOKIE_NAME)
    set_session_cookie(response, session_token)
    return response
