"""Request-scoped collaborators pulled from ``app.state`` plus bearer-token auth."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from docsync.config import Settings
from docsync.models.user import User
from docsync.remote.base import RemoteFactory
from docsync.services.auth_service import decode_access_token
from docsync.services.secret_service import CredentialProvider
from docsync.storage.object_store import ObjectStore

bearer_scheme = HTTPBearer(auto_error=False)


def _app_state(request: Request, name: str) -> Any:
    return getattr(request.app.state, name)


def get_settings(request: Request) -> Settings:
    settings: Settings = _app_state(request, "settings")
    return settings


def get_object_store(request: Request) -> ObjectStore:
    store: ObjectStore = _app_state(request, "object_store")
    return store


def get_credential_provider(request: Request) -> CredentialProvider:
    provider: CredentialProvider = _app_state(request, "credential_provider")
    return provider


def get_remote_factory(request: Request) -> RemoteFactory:
    factory: RemoteFactory = _app_state(request, "remote_factory")
    return factory


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """One session per request, closed when the response is sent."""
    async with _app_state(request, "session_factory")() as session:
        yield session


async def get_current_user(
    settings: Annotated[Settings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_session)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> User | None:
    """Resolve the bearer token to a user; any defect in the token yields ``None``."""
    if credentials is None:
        return None
    claims = decode_access_token(credentials.credentials, settings.secret_key)
    subject = claims.get("sub") if claims else None
    if not isinstance(subject, str) or not subject:
        return None
    return await session.get(User, subject)


async def require_auth(
    user: Annotated[User | None, Depends(get_current_user)],
) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
