"""Request-scoped dependencies: principal resolution and injected services."""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .. import crud, models
from ..ai import CompletionService
from ..database import get_db
from ..errors import AuthenticationError
from ..events import EventDispatcher
from ..oauth import GoogleOAuthClient
from ..security import decode_access_token

logger = logging.getLogger("taskhub-core.api.auth")

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_principal(db: Session, token: Optional[str]) -> models.User:
    """
    Turn a bearer token into an active user.

    Raises:
        AuthenticationError: Missing or invalid token, unknown or deactivated user
    """
    if not token:
        raise AuthenticationError("Not authorized, no token")

    user_id = decode_access_token(token)
    user = crud.get_user(db, user_id)
    if not user or not user.is_active:
        logger.warning(f"Token presented for missing or inactive user {user_id}")
        raise AuthenticationError("Not authorized, user not found or inactive")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    return resolve_principal(db, credentials.credentials if credentials else None)


def get_dispatcher(request: Request) -> EventDispatcher:
    return request.app.state.dispatcher


def get_completion_service(request: Request) -> CompletionService:
    return request.app.state.completion_service


def get_oauth_client(request: Request) -> GoogleOAuthClient:
    return request.app.state.oauth_client
