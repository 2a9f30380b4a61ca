from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, Request, Response
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import models, schemas
from .config import AuthConfig
from .database import get_db
from .errors import AuthError, ConflictError
from .logger_service import LoggerService, get_logger_service

auth_config = AuthConfig()
logger = LoggerService(__name__)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
router = APIRouter(prefix="/auth", tags=["auth"])


def hash_password(raw_password: str) -> str:
    return pwd_context.hash(raw_password)


def verify_password(raw_password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(raw_password, password_hash)
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def create_token(user_id: str, token_type: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = (
            timedelta(minutes=auth_config.access_token_minutes)
            if token_type == "access"
            else timedelta(days=auth_config.refresh_token_days)
        )
    payload: Dict[str, Any] = {
        "sub": user_id,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    return jwt.encode(payload, auth_config.jwt_secret, algorithm=auth_config.jwt_algorithm)


def decode_token(token: str, token_type: str) -> Dict[str, Any]:
    try:
        decoded = jwt.decode(token, auth_config.jwt_secret, algorithms=[auth_config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("Session expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid session")
    if decoded.get("type") != token_type or not decoded.get("sub"):
        raise AuthError("Invalid session")
    return decoded


def _set_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        httponly=True,
        samesite="lax",
        secure=auth_config.secure_cookies,
        max_age=max_age,
        path="/",
    )


def set_session_cookies(response: Response, user_id: str) -> None:
    _set_cookie(
        response, auth_config.access_cookie, create_token(user_id, "access"),
        auth_config.access_token_minutes * 60,
    )
    _set_cookie(
        response, auth_config.refresh_cookie, create_token(user_id, "refresh"),
        auth_config.refresh_token_days * 86400,
    )


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(key=auth_config.access_cookie, path="/")
    response.delete_cookie(key=auth_config.refresh_cookie, path="/")


def _access_token_from(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get(auth_config.access_cookie)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    token = _access_token_from(request)
    if not token:
        raise AuthError()
    claims = decode_token(token, "access")
    user = db.query(models.User).filter(models.User.id == claims["sub"]).first()
    if not user:
        raise AuthError("Invalid session")
    return user


@router.post("/register", response_model=schemas.DataEnvelope[schemas.UserBody], status_code=201)
def register(payload: schemas.RegisterInput, response: Response, db: Session = Depends(get_db),
             logger: LoggerService = Depends(get_logger_service)):
    if db.query(models.User).filter(models.User.email == payload.email).first():
        raise ConflictError("An account with this email already exists", resource="user")

    user = models.User(
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    set_session_cookies(response, user.id)
    logger.info(f"Registered user {user.id} ({user.email})")
    return {"data": {"user": user}}


@router.post("/login", response_model=schemas.DataEnvelope[schemas.UserBody])
def login(payload: schemas.LoginInput, response: Response, db: Session = Depends(get_db),
          logger: LoggerService = Depends(get_logger_service)):
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.password_hash):
        logger.warning(f"Failed login for {payload.email}")
        raise AuthError("Invalid email or password")

    set_session_cookies(response, user.id)
    logger.info(f"User {user.id} logged in")
    return {"data": {"user": user}}


@router.post("/refresh", response_model=schemas.MessageRead)
def refresh(request: Request, response: Response, db: Session = Depends(get_db),
            logger: LoggerService = Depends(get_logger_service)):
    token = request.cookies.get(auth_config.refresh_cookie)
    if not token:
        raise AuthError("Missing refresh token")
    claims = decode_token(token, "refresh")
    user = db.query(models.User).filter(models.User.id == claims["sub"]).first()
    if not user:
        raise AuthError("Invalid session")

    _set_cookie(
        response, auth_config.access_cookie, create_token(user.id, "access"),
        auth_config.access_token_minutes * 60,
    )
    logger.debug(f"Refreshed access token for user {user.id}")
    return {"message": "Session refreshed"}


@router.post("/logout", response_model=schemas.MessageRead)
def logout(response: Response):
    clear_session_cookies(response)
    return {"message": "Logged out"}


@router.get("/me", response_model=schemas.DataEnvelope[schemas.UserBody])
def me(user: models.User = Depends(get_current_user)):
    return {"data": {"user": user}}
