"""
Security Module for the Jewellery Shop Service
==============================================
- Secret key management
- bcrypt password hashing
- JWT bearer tokens
- Role-based access control with fine-grained permissions
"""

import hashlib
import os
import secrets
import warnings
from datetime import datetime, timedelta
from typing import Dict, Optional, Set

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .db import SessionLocal


# =============================================================================
# CONFIGURATION
# =============================================================================

def get_secret_key() -> str:
    """
    Get secret key from environment with validation.
    A development key is used only outside production.
    """
    secret = os.getenv("JEWEL_SECRET_KEY")

    if not secret:
        env = os.getenv("ENVIRONMENT", "development")
        if env == "production":
            raise RuntimeError(
                "CRITICAL: JEWEL_SECRET_KEY environment variable must be set in production! "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
            )
        warnings.warn(
            "Using development secret key. Set JEWEL_SECRET_KEY for production!",
            RuntimeWarning
        )
        # Deterministic so tokens survive a hot-reload
        secret = hashlib.sha256(b"jewel-core-dev-key").hexdigest()

    if len(secret) < 32:
        raise RuntimeError("JEWEL_SECRET_KEY must be at least 32 characters")

    return secret


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("TOKEN_EXPIRE_MINUTES", "60"))

MIN_PASSWORD_LENGTH = 8


# =============================================================================
# PASSWORD SECURITY
# =============================================================================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt"""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=12)).decode('utf-8')


# =============================================================================
# TOKEN MANAGEMENT
# =============================================================================

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()

    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
        "type": "access"
    })

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )


# =============================================================================
# ROLE-BASED ACCESS CONTROL (RBAC)
# =============================================================================

class Permission:
    """Fine-grained permissions for shop operations"""

    BILL_VIEW = "bill:view"
    BILL_CREATE = "bill:create"
    BILL_UPDATE = "bill:update"
    BILL_DELETE = "bill:delete"

    STOCK_VIEW = "stock:view"
    STOCK_CREATE = "stock:create"
    STOCK_UPDATE = "stock:update"
    STOCK_DELETE = "stock:delete"
    STOCK_ADJUST = "stock:adjust"

    RATE_VIEW = "rate:view"
    RATE_UPDATE = "rate:update"

    REPORT_VIEW = "report:view"
    REPORT_EXPORT = "report:export"

    USER_CREATE = "user:create"


ROLE_PERMISSIONS: Dict[str, Set[str]] = {
    "Admin": {
        Permission.BILL_VIEW, Permission.BILL_CREATE, Permission.BILL_UPDATE, Permission.BILL_DELETE,
        Permission.STOCK_VIEW, Permission.STOCK_CREATE, Permission.STOCK_UPDATE,
        Permission.STOCK_DELETE, Permission.STOCK_ADJUST,
        Permission.RATE_VIEW, Permission.RATE_UPDATE,
        Permission.REPORT_VIEW, Permission.REPORT_EXPORT,
        Permission.USER_CREATE,
    },

    "Manager": {
        Permission.BILL_VIEW, Permission.BILL_CREATE, Permission.BILL_UPDATE,
        Permission.STOCK_VIEW, Permission.STOCK_CREATE, Permission.STOCK_UPDATE,
        Permission.STOCK_ADJUST,
        Permission.RATE_VIEW, Permission.RATE_UPDATE,
        Permission.REPORT_VIEW, Permission.REPORT_EXPORT,
    },

    "Staff": {
        Permission.BILL_VIEW, Permission.BILL_CREATE,
        Permission.STOCK_VIEW,
        Permission.RATE_VIEW,
    },
}

ROLES = tuple(ROLE_PERMISSIONS)


def get_role_permissions(role: str) -> Set[str]:
    return ROLE_PERMISSIONS.get(role, set())


# =============================================================================
# DEPENDENCY INJECTION
# =============================================================================

def get_db():
    """Database session dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
):
    """Get current authenticated user from JWT token."""
    from . import models  # Avoid circular import

    payload = decode_token(token)

    username = payload.get("sub")
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = db.query(models.User).filter(models.User.username == username).first()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled"
        )

    return user


def require_permission(*required_permissions: str):
    async def permission_checker(current_user=Depends(get_current_user)):
        missing = set(required_permissions) - get_role_permissions(current_user.role)
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}"
            )
        return current_user

    return permission_checker
