"""Authentication and user administration endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ... import crud, models, schemas
from ...config import get_settings
from ...database import get_db
from ...errors import TaskHubError
from ...oauth import GoogleOAuthClient
from ...security import create_access_token
from ..dependencies import get_current_user, get_oauth_client

logger = logging.getLogger("taskhub-core.auth")

router = APIRouter(tags=["auth"])


def _auth_response(user: models.User) -> dict:
    return {"token": create_access_token(user.id), "user": user}


@router.post("/register", response_model=schemas.Envelope[schemas.AuthResponse], status_code=201)
def register(
    payload: schemas.UserRegister,
    db: Session = Depends(get_db),
):
    """
    Register a password account.

    - **name**: Display name (max 50 characters)
    - **email**: Unique email address
    - **password**: At least 6 characters
    - **role**: "Project Manager" or "Team Member" (default)
    """
    user = crud.register_user(db, payload.name, payload.email, payload.password, payload.role)
    return schemas.envelope(_auth_response(user), message="User registered successfully")


@router.post("/login", response_model=schemas.Envelope[schemas.AuthResponse])
def login(
    payload: schemas.UserLogin,
    db: Session = Depends(get_db),
):
    """Exchange email and password for a bearer token."""
    user = crud.authenticate_user(db, payload.email, payload.password)
    logger.info(f"User {user.id} logged in")
    return schemas.envelope(_auth_response(user), message="Login successful")


@router.get("/me", response_model=schemas.Envelope[schemas.UserResponse])
def me(current_user: models.User = Depends(get_current_user)):
    return schemas.envelope(current_user)


@router.put("/updateprofile", response_model=schemas.Envelope[schemas.UserResponse])
def update_profile(
    payload: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    user = crud.update_profile(db, current_user, payload.name, payload.email, payload.avatar)
    return schemas.envelope(user, message="Profile updated successfully")


@router.put("/updatepassword", response_model=schemas.Envelope[schemas.AuthResponse])
def update_password(
    payload: schemas.PasswordUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Change password; a fresh token is returned."""
    user = crud.update_password(db, current_user, payload.current_password, payload.new_password)
    return schemas.envelope(_auth_response(user), message="Password updated successfully")


@router.get("/users", response_model=schemas.Envelope[list[schemas.UserResponse]])
def list_users(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """List active users (Project Managers only)."""
    return schemas.envelope(crud.list_users(db, current_user))


@router.patch("/users/{user_id}/deactivate", response_model=schemas.Envelope[schemas.UserResponse])
def deactivate_user(
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Deactivate a user account (Project Managers only)."""
    user = crud.deactivate_user(db, current_user, user_id)
    return schemas.envelope(user, message="User deactivated")


@router.get("/google")
def google_login(oauth: GoogleOAuthClient = Depends(get_oauth_client)):
    """Redirect to Google's consent screen."""
    return RedirectResponse(oauth.authorization_url())


@router.get("/google/callback")
async def google_callback(
    code: str = Query(None),
    db: Session = Depends(get_db),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
):
    """Complete Google sign-in and hand the token to the frontend."""
    settings = get_settings()
    failure_url = f"{settings.frontend_url}/login?error=google_auth_failed"
    if not code:
        return RedirectResponse(failure_url)

    try:
        profile = await oauth.authenticate(code)
        user = await run_in_threadpool(
            crud.login_or_register_oauth_user,
            db,
            profile.google_id,
            profile.email,
            profile.name,
            profile.avatar,
        )
    except TaskHubError as e:
        logger.warning(f"Google sign-in failed: {e.message}")
        return RedirectResponse(failure_url)

    token = create_access_token(user.id)
    return RedirectResponse(f"{settings.frontend_url}/auth/google/callback?token={token}")
