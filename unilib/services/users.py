import logging
import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from unilib.errors import AuthenticationError, DomainRuleError, NotFoundError, ValidationError
from unilib.models.models import User, UserRole, UserStatus
from unilib.schemas.schemas import UserCreate
from unilib.security.auth import hash_password, verify_password

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)+$")


def register_user(db: Session, data: UserCreate) -> User:
    """New accounts start PENDING until an admin approves them."""
    email = data.email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")

    if db.query(User).filter(User.email == email).first():
        raise DomainRuleError("An account with this email already exists", error="User already exists")
    if db.query(User).filter(User.university_id == data.university_id).first():
        raise DomainRuleError(
            "An account with this university ID already exists", error="User already exists"
        )

    user = User(
        full_name=data.full_name.strip(),
        email=email,
        university_id=data.university_id,
        password_hash=hash_password(data.password),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # concurrent sign-up with the same e-mail or university ID
        db.rollback()
        raise DomainRuleError(
            "An account with this email or university ID already exists", error="User already exists"
        )
    db.refresh(user)
    logger.info(f"User {user.id} registered, awaiting approval")
    return user


def authenticate_user(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def set_user_status(db: Session, user_id: int, status: UserStatus) -> User:
    user = get_user(db, user_id)
    user.status = status
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} status set to {status.value}")
    return user


def set_user_role(db: Session, user_id: int, role: UserRole) -> User:
    user = get_user(db, user_id)
    user.role = role
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} role set to {role.value}")
    return user
