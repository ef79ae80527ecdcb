"""Credential handling for the API: password hashing, JWT access tokens, refresh tokens."""

import logging
import os
import secrets
import time
from datetime import datetime, timedelta

import bcrypt
import jwt
from fastapi import HTTPException
from sqlmodel import Session, select

from models import RefreshToken, User, as_utc, utc_now

logger = logging.getLogger("subscription_tracker.auth")

JWT_ALGORITHM = "HS256"


def jwt_secret() -> str:
    return os.getenv("JWT_SECRET", "dev-jwt-secret-change-in-prod")


def jwt_ttl() -> int:
    """Access token lifetime in seconds."""
    return int(os.getenv("JWT_TTL", "3600"))


def refresh_ttl() -> int:
    """Refresh token lifetime in seconds (30 days by default)."""
    return int(os.getenv("JWT_REFRESH_TTL", str(60 * 60 * 24 * 30)))


# ============================================
# PASSWORDS
# ============================================


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Over-long password or malformed stored hash
        return False


# ============================================
# ACCESS TOKENS
# ============================================


def create_access_token(user: User, now: float | None = None) -> str:
    """
    Sign an access token for a user.

    The payload carries the identity the dashboard shows (username plus
    first and last name) and the standard iat/exp claims.
    """
    issued_at = int(now if now is not None else time.time())
    payload = {
        "iat": issued_at,
        "exp": issued_at + jwt_ttl(),
        "roles": [r for r in user.roles.split(",") if r],
        "username": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
    }
    return jwt.encode(payload, jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify signature and expiry of an access token.

    Raises:
        HTTPException: 401 if the token is expired or invalid
    """
    try:
        return jwt.decode(
            token,
            jwt_secret(),
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "username"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise unauthorized("Expired JWT Token") from e
    except jwt.InvalidTokenError as e:
        raise unauthorized("Invalid JWT Token") from e


def unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


# ============================================
# LOGIN / REFRESH
# ============================================


def authenticate(session: Session, email: str, password: str) -> User | None:
    """Return the user matching the credentials, or None."""
    user = session.exec(select(User).where(User.email == email.strip().lower())).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def create_refresh_token(session: Session, user: User, now: datetime | None = None) -> RefreshToken:
    """Store a new random refresh token for the user."""
    now = now or utc_now()
    refresh = RefreshToken(
        refresh_token=secrets.token_hex(64),
        username=user.email,
        valid_until=now + timedelta(seconds=refresh_ttl()),
    )
    session.add(refresh)
    session.commit()
    session.refresh(refresh)
    return refresh


def use_refresh_token(session: Session, value: str, now: datetime | None = None) -> User:
    """
    Resolve a refresh token to its user.

    An expired token is deleted when it is presented.

    Raises:
        HTTPException: 401 if the token is unknown, expired, or its user is gone
    """
    refresh = session.exec(select(RefreshToken).where(RefreshToken.refresh_token == value)).first()
    if not refresh:
        logger.warning("Refresh failed: unknown refresh token")
        raise unauthorized("JWT Refresh Token Not Found")

    if as_utc(refresh.valid_until) < (now or utc_now()):
        logger.warning(f"Refresh failed: refresh token for {refresh.username} expired")
        session.delete(refresh)
        session.commit()
        raise unauthorized("Invalid JWT Refresh Token")

    user = session.exec(select(User).where(User.email == refresh.username)).first()
    if not user:
        raise unauthorized("Invalid JWT Refresh Token")
    return user


def purge_expired_refresh_tokens(session: Session, now: datetime | None = None) -> int:
    """Delete refresh tokens past their validity; returns how many were removed."""
    expired = session.exec(
        select(RefreshToken).where(RefreshToken.valid_until < (now or utc_now()))
    ).all()
    for refresh in expired:
        session.delete(refresh)
    session.commit()
    if expired:
        logger.info(f"Purged {len(expired)} expired refresh tokens")
    return len(expired)
