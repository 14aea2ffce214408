"""Password hashing, JWT issuing and the ``get_current_user`` dependency."""
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import get_settings
from .database import session_scope
from .models import User, UserCredits

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

_PBKDF2_ITERATIONS = 390000


@dataclass
class AuthenticatedUser:
    id: str
    email: str
    full_name: Optional[str] = None


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        salt_b64, digest_b64 = hashed_password.split(":", 1)
    except ValueError:
        return False
    salt = base64.b64decode(salt_b64.encode("utf-8"))
    expected = base64.b64decode(digest_b64.encode("utf-8"))
    computed = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return hmac.compare_digest(expected, computed)


def get_password_hash(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return f"{base64.b64encode(salt).decode('utf-8')}:{base64.b64encode(digest).decode('utf-8')}"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=settings.jwt_expiration_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def token_response(user: User) -> dict:
    return {"access_token": create_access_token({"sub": str(user.id)}), "token_type": "bearer"}


def authenticate_user(session: Session, email: str, password: str) -> Optional[User]:
    user = session.query(User).filter(User.email == email.lower()).one_or_none()
    if user and user.is_active and verify_password(password, user.hashed_password):
        return user
    return None


def create_user(
    session: Session,
    email: str,
    password: Optional[str] = None,
    full_name: Optional[str] = None,
) -> User:
    """Insert a user together with the trial credit balance new accounts start with."""

    settings = get_settings()
    user = User(
        email=email.lower(),
        hashed_password=get_password_hash(password) if password else None,
        full_name=full_name,
    )
    session.add(user)
    session.flush()
    session.add(
        UserCredits(
            user_id=user.id,
            credits_balance=settings.trial_credits,
            trial_status=settings.trial_credits > 0,
            trial_credits_used=0,
        )
    )
    session.flush()
    return user


def get_current_user(token: str = Depends(oauth2_scheme)) -> AuthenticatedUser:
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise credentials_exception
    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception

    with session_scope() as session:
        user = session.get(User, str(user_id))
        if user is None or not user.is_active:
            raise credentials_exception
        return AuthenticatedUser(id=user.id, email=user.email, full_name=user.full_name)


def login(form_data: OAuth2PasswordRequestForm = Depends()) -> dict:
    with session_scope() as session:
        user = authenticate_user(session, form_data.username, form_data.password)
        if not user:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect credentials")
        return token_response(user)
