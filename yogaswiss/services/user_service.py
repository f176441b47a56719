"""
User service for staff accounts.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user import User
from ..schemas.auth import UserRegistration
from ..utils.auth import get_password_hash
from ..utils.exceptions import AuthenticationError, ValidationError
from ..utils.logging_config import log_security_event

logger = logging.getLogger(__name__)


class UserService:
    """Service class for user operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_user(self, user_data: UserRegistration) -> User:
        """
        Create a new user.

        Args:
            user_data: User registration data

        Returns:
            The created user

        Raises:
            ValidationError: If the email is already registered
        """
        email = user_data.email.lower()
        if await self.get_user_by_email(email):
            raise ValidationError(
                "Email already registered",
                field_errors={"email": ["already registered"]}
            )

        user = User(
            email=email,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            password_hash=get_password_hash(user_data.password)
        )
        self.db.add(user)
        await self.db.flush()

        logger.info(f"Registered user {user.id}")
        return user

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def authenticate_user(self, email: str, password: str) -> User:
        """
        Check credentials.

        Raises:
            AuthenticationError: On unknown email, wrong password or inactive account
        """
        user = await self.get_user_by_email(email)
        if not user or not user.verify_password(password):
            log_security_event("login_failed", {"email": email.lower()})
            raise AuthenticationError("Incorrect email or password")
        if not user.is_active:
            raise AuthenticationError("User account is inactive")
        return user
