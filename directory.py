# directory.py
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import DuplicateKey
from models import Role, User

logger = logging.getLogger(__name__)

UNIQUE_FIELDS = ("email", "document_id")


def collided_field(exc: IntegrityError) -> str:
    """Name the unique column an insert tripped over, as reported by the driver."""
    detail = str(exc.orig).lower()
    for field in UNIQUE_FIELDS:
        if field in detail:
            return field
    return "email"


class UserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def find_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def find_by_id_and_role(self, user_id: int, role: Role) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id, User.role == role).first()

    def create(self, **fields) -> User:
        user = User(**fields)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            field = collided_field(e)
            logger.warning(f"Duplicate {field} on user creation")
            raise DuplicateKey(field) from e
        self.db.refresh(user)
        logger.info(f"User {user.id} created with role {user.role.value}")
        return user
