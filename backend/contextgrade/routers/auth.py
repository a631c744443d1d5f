"""
ContextGrade - Authentication Router
Session login and identity lookup for dashboard users.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from ..auth import create_access_token, get_current_user, verify_password
from ..config import Settings, get_settings
from ..database import get_db
from ..models.db_models import UserDB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MembershipView(BaseModel):
    client_id: str
    client_name: Optional[str] = None
    role: str
    status: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    memberships: List[MembershipView] = []


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Authenticate user and return a session JWT.
    """
    user = db.query(UserDB).filter(UserDB.email == request.email.lower()).first()

    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(user.id, user.email, settings)

    logger.info(f"User logged in: {user.email}")
    return TokenResponse(access_token=access_token)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: UserDB = Depends(get_current_user)):
    """Current session user with every membership, whatever its status."""
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name,
        memberships=[
            MembershipView(
                client_id=m.client_id,
                client_name=m.client.name if m.client else None,
                role=m.role.value,
                status=m.status.value,
            )
            for m in current_user.memberships
        ],
    )
