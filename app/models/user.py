"""
User model for HPS Operations authentication
"""
from sqlalchemy import Column, Integer, String

from app.core.config import settings
from app.db.base import Base


class User(Base):
    """Login account. ``user_level`` "1" is an administrator."""

    __tablename__ = "hps_login"

    he_user_id = Column(Integer, primary_key=True, autoincrement=True)
    he_username = Column(String(100), unique=True, nullable=False, index=True)
    he_password = Column(String(255), nullable=False)
    he_email = Column(String(255), nullable=True)
    he_full_name = Column(String(255), nullable=True)
    user_level = Column(String(10), nullable=False, default="2")

    def __repr__(self) -> str:
        return f"<User {self.he_username}>"

    @property
    def is_admin(self) -> bool:
        return self.user_level == settings.ADMIN_USER_LEVEL
