"""
User Service - Business Logic for User Operations
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from backoffice.core.exceptions import ValidationError
from backoffice.core.security import get_password_hash, verify_password
from backoffice.models import User
from backoffice.schemas import RegisterRequest


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def create(self, user_data: RegisterRequest) -> User:
        if self.get_by_username(user_data.username):
            raise ValidationError("Username already registered")
        if self.get_by_email(user_data.email):
            raise ValidationError("Email already registered")

        user = User(
            username=user_data.username,
            email=user_data.email,
            full_name=user_data.full_name,
            hashed_password=get_password_hash(user_data.password),
            is_active=True
        )
        self.db.add(user)
        self.db.flush()
        return user

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """Return the user if the password matches, else None"""
        user = self.get_by_username(username)
        if not user or not verify_password(password, user.hashed_password):
            return None
        user.last_login = datetime.utcnow()
        self.db.flush()
        return user
