import logging
from typing import Optional

import bcrypt
from sqlmodel import Session, select

from config import ADMIN_PASSWORD
from database.models import User
from services.settings_service import ensure_default_settings

logger = logging.getLogger(__name__)


class AuthService:
    @staticmethod
    def get_password_hash(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed hash in the users table
            return False

    @staticmethod
    def authenticate(session: Session, username: str, password: str) -> Optional[User]:
        user = session.exec(select(User).where(User.username == username)).first()
        if not user or not user.is_active or not AuthService.verify_password(password, user.password_hash):
            logger.info("Failed login for %s", username)
            return None
        return user

    @staticmethod
    def create_default_user_and_settings(session: Session):
        if not session.exec(select(User)).first():
            admin = User(
                username="admin",
                password_hash=AuthService.get_password_hash(ADMIN_PASSWORD),
                full_name="System Administrator",
                role="admin",
            )
            session.add(admin)
            session.commit()
            logger.warning('Created default admin user "admin". Change its password immediately!')
        ensure_default_settings(session)
