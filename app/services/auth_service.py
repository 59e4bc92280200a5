"""
Authentication service for HPS Operations
Handles password hashing and username/password login
"""
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.core.security import AuthError
from app.models.user import User


# New hashes use pbkdf2_sha256; legacy bcrypt hashes still verify
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Unknown or corrupt hash format
        return False


def hash_password(password: str) -> str:
    """Hash a password with the default scheme."""
    return pwd_context.hash(password)


class AuthService:
    """Authentication service."""

    def __init__(self, db: Session):
        self.db = db

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.he_username == username).first()

    def create_user(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        user_level: str = "2",
    ) -> User:
        if self.get_user_by_username(username):
            raise AuthError("Username already taken", 400)

        user = User(
            he_username=username,
            he_password=hash_password(password),
            he_email=email,
            he_full_name=full_name,
            user_level=user_level,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def authenticate(self, username: str, password: str) -> User:
        """
        Check credentials.

        Raises:
            AuthError: unknown user or wrong password. The returned message
            is the same for both cases.
        """
        user = self.get_user_by_username(username)
        if user is None:
            raise AuthError("Invalid username or password")
        if not verify_password(password, user.he_password):
            raise AuthError("Invalid username or password")
        return user
