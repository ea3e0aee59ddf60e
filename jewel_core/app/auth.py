import logging
from json import JSONDecodeError

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from . import models, schemas
from .security import (
    ROLES, Permission, create_access_token, get_current_user, get_db,
    get_password_hash, require_permission, verify_password
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


async def _credentials(request: Request):
    """Username and password from a form-encoded (OAuth2) or JSON body."""
    ctype = (request.headers.get("content-type") or "").lower()
    if "application/json" in ctype:
        try:
            body = await request.json()
        except (JSONDecodeError, UnicodeDecodeError):
            return None, None
        if not isinstance(body, dict):
            return None, None
        return body.get("username"), body.get("password")

    form = await request.form()
    return form.get("username"), form.get("password")


@router.post("/login", response_model=schemas.Token)
async def login(request: Request, db: Session = Depends(get_db)):
    """Accept either form-encoded (OAuth2) login or JSON {username,password}."""
    username, password = await _credentials(request)
    if not username or not password:
        raise HTTPException(status_code=400, detail="Missing username or password")

    user = db.query(models.User).filter(models.User.username == username).first()
    if not user or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", username)
        raise HTTPException(status_code=400, detail="Incorrect username or password")
    if not user.is_active:
        raise HTTPException(status_code=400, detail="User account is disabled")

    access_token = create_access_token({"sub": user.username, "role": user.role})
    return {"access_token": access_token, "token_type": "bearer", "role": user.role}


@router.get("/me", response_model=schemas.UserOut)
def me(current_user: models.User = Depends(get_current_user)):
    return current_user


@router.post("/register", response_model=schemas.UserOut, status_code=201)
def register(
    user_in: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.USER_CREATE))
):
    if user_in.role not in ROLES:
        raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(ROLES)}")
    existing = db.query(models.User).filter(
        (models.User.username == user_in.username) | (models.User.email == user_in.email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="User with that username or email already exists")

    user = models.User(
        full_name=user_in.full_name,
        email=user_in.email,
        username=user_in.username,
        password_hash=get_password_hash(user_in.password),
        role=user_in.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("User %s registered by %s", user.username, current_user.username)
    return user
