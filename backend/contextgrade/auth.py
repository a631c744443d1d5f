"""
ContextGrade - Authentication Utilities
Password hashing, session tokens, and credential extraction dependencies
"""
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import get_db
from .models.db_models import UserDB
from .services.access import Caller

# Bearer token security (optional - API keys may arrive in X-API-Key instead)
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """bcrypt hash stored on UserDB.password_hash."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    # An empty stored hash never matches
    if not hashed_password:
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(user_id: str, email: str, settings: Settings) -> str:
    """Create a session JWT."""
    expire = datetime.utcnow() + timedelta(hours=settings.access_token_expire_hours)
    to_encode = {
        "sub": user_id,
        "email": email,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> Optional[dict]:
    """Decode and validate a session JWT. Expired or forged tokens yield None."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def resolve_session_user(token: Optional[str], db: Session, settings: Settings) -> Optional[UserDB]:
    if not token:
        return None
    payload = decode_token(token, settings)
    if payload is None or not payload.get("sub"):
        return None
    return db.query(UserDB).filter(UserDB.id == payload["sub"]).first()


async def get_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Caller:
    """
    Collect the credentials presented by the request.

    Client resolution happens later (ScopeResolver) because the
    administrative key needs the client id from the payload.
    """
    api_key = request.headers.get("x-api-key") or request.query_params.get("apiKey")
    bearer_token = credentials.credentials if credentials else None

    if not api_key and not bearer_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Valid API key or session token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Caller(
        api_key=api_key,
        bearer_token=bearer_token,
        user=resolve_session_user(bearer_token, db, settings),
        requested_client_id=request.headers.get("x-client-id") or None,
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserDB:
    """
    Dependency to get the current session user.
    Validates JWT token and fetches user from database.
    """
    user = resolve_session_user(credentials.credentials if credentials else None, db, settings)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
