"""
Authentication API endpoints.
"""

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..models.user import User
from ..schemas.auth import TokenResponse, UserLogin, UserProfile, UserRegistration
from ..services.user_service import UserService
from ..utils.auth import create_access_token
from ..utils.dependencies import get_current_user


router = APIRouter(prefix="/auth", tags=["authentication"])


def _token_response(user: User) -> TokenResponse:
    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserProfile.model_validate(user)
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_data: UserRegistration,
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Register a staff account and return an access token.

    Raises:
        ValidationError: If the email is already registered
    """
    user = await UserService(db).create_user(user_data)
    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login_user(
    login_data: UserLogin,
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Authenticate with email and password and return an access token."""
    user = await UserService(db).authenticate_user(login_data.email, login_data.password)
    return _token_response(user)


@router.get("/me", response_model=UserProfile)
async def get_current_user_profile(current_user: User = Depends(get_current_user)) -> Any:
    return UserProfile.model_validate(current_user)
