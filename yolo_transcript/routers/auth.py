from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .. import auth
from ..auth import AuthenticatedUser, get_current_user
from ..config import get_settings
from ..database import get_session
from ..exceptions import ProviderError
from ..models import User
from ..schemas import AuthStatus, TokenResponse, UserCreate, UserRead
from ..services import credits as credit_service
from ..services import google

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

_GOOGLE_STATE_PURPOSE = "google-sign-in"


def _oauth_client(
    client: google.GoogleOAuthClient = Depends(google.get_oauth_client),
) -> Iterator[google.GoogleOAuthClient]:
    try:
        yield client
    finally:
        client.close()


@router.post("/auth/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: UserCreate, session: Session = Depends(get_session)) -> TokenResponse:
    existing = session.query(User).filter(User.email == payload.email.lower()).one_or_none()
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")
    user = auth.create_user(session, payload.email, payload.password, payload.full_name)
    logger.info("User signed up", extra={"user_id": user.id})
    return TokenResponse(**auth.token_response(user))


@router.post("/auth/token", response_model=TokenResponse)
def login(form_data: OAuth2PasswordRequestForm = Depends()) -> TokenResponse:
    return TokenResponse(**auth.login(form_data))


@router.get("/auth/me", response_model=UserRead)
def read_me(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> UserRead:
    record = session.get(User, user.id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserRead.model_validate(record)


@router.get("/auth/google/login")
def google_login(oauth: google.GoogleOAuthClient = Depends(_oauth_client)) -> dict[str, str]:
    cfg = get_settings()
    if not cfg.google_redirect_uri:
        raise HTTPException(
            status_code=400,
            detail="Set GOOGLE_CLIENT_ID and GOOGLE_REDIRECT_URI to enable Google sign-in.",
        )
    state = auth.create_access_token({"purpose": _GOOGLE_STATE_PURPOSE}, expires_delta=timedelta(minutes=10))
    url = oauth.authorization_url(
        cfg.google_redirect_uri,
        state,
        google.SIGN_IN_SCOPES,
        access_type="offline",
        prompt="select_account",
    )
    return {"authorization_url": url}


@router.get("/auth/google/callback", response_model=TokenResponse)
def google_callback(
    code: str = Query(...),
    state: str = Query(...),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
    session: Session = Depends(get_session),
) -> TokenResponse:
    cfg = get_settings()
    try:
        claims = jwt.decode(state, cfg.jwt_secret, algorithms=[cfg.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=400, detail="Invalid state")
    if claims.get("purpose") != _GOOGLE_STATE_PURPOSE:
        raise HTTPException(status_code=400, detail="Invalid state")

    try:
        tokens = oauth.exchange_code(code, cfg.google_redirect_uri or "")
        profile = oauth.userinfo(tokens["access_token"])
    except (ProviderError, KeyError) as exc:
        logger.warning("Google sign-in failed", extra={"error": str(exc)})
        raise HTTPException(status_code=400, detail="Google sign-in failed")

    email = (profile.get("email") or "").lower()
    if not email or not profile.get("email_verified", True):
        raise HTTPException(status_code=400, detail="Google account has no verified email")
    user = session.query(User).filter(User.email == email).one_or_none()
    if user is None:
        user = auth.create_user(session, email, full_name=profile.get("name"))
        logger.info("User signed up with Google", extra={"user_id": user.id})
    return TokenResponse(**auth.token_response(user))


@router.get("/api/auth/status", response_model=AuthStatus)
def auth_status(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> AuthStatus:
    balance = credit_service.get_balance(session, user.id)
    return AuthStatus(user_id=user.id, has_credits=balance > 0, credits=balance)
