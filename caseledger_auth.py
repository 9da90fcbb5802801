"""
CaseLedger authentication.

Passwords are hashed with passlib, sessions are bearer JWTs (PyJWT)
backed by a row in the sessions table so logout and password changes
can revoke them before they expire.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

import jwt
from fastapi import Depends, Header, HTTPException, status
from passlib.context import CryptContext

from caseledger_config import config
from caseledger_store import Store, get_store
from caseledger_types import User

logger = logging.getLogger("cl-auth")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


@dataclass
class AuthContext:
    """The authenticated user and the token the request carried."""
    user: User
    token: str


# ============================================================================
# PASSWORDS & TOKENS
# ============================================================================

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def validate_password(password: str):
    if len(password or "") < config.MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "VALIDATION_ERROR",
                "message": f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters long",
            },
        )


def create_access_token(user: User, expires_days: Optional[int] = None) -> Tuple[str, datetime]:
    """Sign a token for the user. Returns (token, expiry)."""
    now = datetime.utcnow()
    expires_at = now + timedelta(days=config.JWT_EXPIRES_DAYS if expires_days is None else expires_days)
    payload = {
        "sub": user.id,
        "email": user.email,
        "iat": now,
        "exp": expires_at,
        "jti": uuid.uuid4().hex,
    }
    token = jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    return token, expires_at


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("TOKEN_EXPIRED", "Token has expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("INVALID_TOKEN", "Invalid token")


def issue_session(store: Store, user: User) -> str:
    token, expires_at = create_access_token(user)
    store.create_session(user.id, token, expires_at)
    return token


# ============================================================================
# ACCOUNT OPERATIONS
# ============================================================================

def register(store: Store, email: str, password: str, first_name: str, last_name: str,
             firm_name: Optional[str] = None, phone: Optional[str] = None) -> Tuple[User, str]:
    """Create an account and sign it in."""
    validate_password(password)
    email = email.lower().strip()
    if store.get_user_by_email(email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "CONFLICT", "message": "User with this email already exists"},
        )
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        firm_name=firm_name,
        phone=phone,
    )
    store.create_user(user)
    token = issue_session(store, user)
    logger.info(f"User registered: {user.id} ({email})")
    return user, token


def login(store: Store, email: str, password: str) -> Tuple[User, str]:
    user = store.get_user_by_email(email)
    if not user or not verify_password(password, user.password_hash):
        logger.warning(f"Failed login for {email.lower().strip()}")
        raise _unauthorized("UNAUTHORIZED", "Invalid email or password")
    if not user.is_active:
        raise _unauthorized("UNAUTHORIZED", "Account is deactivated")
    token = issue_session(store, user)
    store.touch_login(user.id)
    store.audit("user.login", {"user_id": user.id}, actor=user.id)
    return store.get_user(user.id), token


def logout(store: Store, token: str):
    store.delete_session(token)


def change_password(store: Store, ctx: AuthContext, current_password: str, new_password: str) -> int:
    """Swap the password and revoke every other session. Returns sessions revoked."""
    user = store.get_user(ctx.user.id)
    if not verify_password(current_password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "VALIDATION_ERROR", "message": "Current password is incorrect"},
        )
    validate_password(new_password)
    store.set_password(user.id, hash_password(new_password))
    revoked = store.delete_other_sessions(user.id, ctx.token)
    logger.info(f"Password changed for {user.id}, {revoked} other session(s) revoked")
    return revoked


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_current_user(
    authorization: Optional[str] = Header(None),
    store: Store = Depends(get_store),
) -> AuthContext:
    """Resolve the bearer token to an active user with a live session."""
    if not authorization:
        raise _unauthorized("UNAUTHORIZED", "Missing Authorization header")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("UNAUTHORIZED", "Invalid Authorization format")

    token = parts[1]
    payload = decode_token(token)
    if not store.get_session(token):
        raise _unauthorized("INVALID_TOKEN", "Session expired or revoked")
    user = store.get_user(payload.get("sub", ""))
    if not user or not user.is_active:
        raise _unauthorized("INVALID_TOKEN", "User not found or inactive")
    return AuthContext(user=user, token=token)


def require_role(*roles: str):
    """Dependency factory: 403 unless the user's role is one of `roles`."""

    def checker(ctx: AuthContext = Depends(get_current_user)) -> AuthContext:
        if ctx.user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "FORBIDDEN", "message": "Insufficient permissions"},
            )
        return ctx

    return checker
