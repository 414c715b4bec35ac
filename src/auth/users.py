import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import APIKeyCookie
from httpx_oauth.clients.github import GitHubOAuth2

from auth.db import CredentialStore, get_credential_store
from auth.exceptions import InvalidCredentials, LoginRequired
from auth.schemas import AuthMethod, LocalPassword, OAuthProfile, Principal
from auth.sessions import SessionStore, get_session_store
from config import GITHUB_CLIENT_ID, GITHUB_CLIENT_SECRET, SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)

github_client: Optional[GitHubOAuth2] = None
if GITHUB_CLIENT_ID and GITHUB_CLIENT_SECRET:
    github_client = GitHubOAuth2(GITHUB_CLIENT_ID, GITHUB_CLIENT_SECRET)

session_cookie = APIKeyCookie(name=SESSION_COOKIE_NAME, auto_error=False)


def get_github_client() -> Optional[GitHubOAuth2]:
    return github_client


class IdentityResolver:
    """
    Turns either a local username/password or a provider-confirmed OAuth
    profile into a Principal, and binds principals to sessions.
    """

    def __init__(self, credentials: CredentialStore, sessions: SessionStore):
        self.credentials = credentials
        self.sessions = sessions

    async def authenticate(self, method: AuthMethod) -> Principal:
        if isinstance(method, LocalPassword):
            return await self.authenticate_local(method.username, method.password)
        if isinstance(method, OAuthProfile):
            return await self.authenticate_oauth(method)
        raise TypeError(f"Unsupported authentication method: {type(method).__name__}")

    async def authenticate_local(self, username: str, password: str) -> Principal:
        if not await self.credentials.verify(username, password):
            raise InvalidCredentials()
        return Principal(id=username, display_name=username)

    async def authenticate_oauth(self, profile: OAuthProfile) -> Principal:
        # The provider already confirmed the identity.
        return Principal(
            id=f"{profile.provider}:{profile.account_id}", display_name=profile.login
        )

    async def register(self, username: str, password: str) -> Principal:
        user = await self.credentials.create(username, password)
        return Principal(id=user.username, display_name=user.username)

    async def establish(self, principal: Principal, previous_token: Optional[str] = None) -> str:
        return await self.sessions.start(principal, previous_token)

    async def login(
        self, method: AuthMethod, previous_token: Optional[str] = None
    ) -> tuple[Principal, str]:
        principal = await self.authenticate(method)
        token = await self.establish(principal, previous_token)
        return principal, token

    async def current_principal(self, token: Optional[str]) -> Optional[Principal]:
        if not token:
            return None
        return await self.sessions.get(token)


def get_identity_resolver(
    credentials: CredentialStore = Depends(get_credential_store),
    sessions: SessionStore = Depends(get_session_store),
) -> IdentityResolver:
    return IdentityResolver(credentials, sessions)


async def current_user(
    token: Optional[str] = Depends(session_cookie),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Optional[Principal]:
    return await resolver.current_principal(token)


async def current_active_user(
    user: Optional[Principal] = Depends(current_user),
) -> Principal:
    if user is None:
        raise LoginRequired()
    return user
