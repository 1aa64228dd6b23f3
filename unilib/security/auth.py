import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from unilib.config.db import get_db
from unilib.config.settings import settings
from unilib.errors import AuthenticationError, AuthorizationError
from unilib.models.models import User, UserRole
from unilib.schemas.schemas import SessionClaims
from unilib.utils import utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/sign-in", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(user: User) -> str:
    role = user.role.value if user.role else None
    claims = SessionClaims(user_id=user.id, email=user.email, role=role).as_dict()
    claims["exp"] = utcnow() + timedelta(minutes=settings.jwt_expiration_minutes)
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[SessionClaims]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        return None
    return SessionClaims(
        user_id=int(subject), email=payload.get("email", ""), role=payload.get("role")
    )


async def get_session(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[SessionClaims]:
    """
    Resolves the bearer token of the current request into session claims.

    Parameters:
        token (str): The bearer token, if the client sent one.

    Returns:
        SessionClaims: The decoded claims, or None for a missing or invalid token.
    """
    if not token:
        return None
    return decode_access_token(token)


async def get_current_user(
    session: Optional[SessionClaims] = Depends(get_session), db: Session = Depends(get_db)
) -> User:
    """
    Retrieves the user behind the current session.

    Raises:
        AuthenticationError: If there is no valid session or the user no longer exists.
    """
    if session is None:
        raise AuthenticationError()
    user = db.query(User).filter(User.id == session.user_id).first()
    if not user:
        raise AuthenticationError("Session user no longer exists")
    return user


def require_admin_role(session: Optional[SessionClaims], db: Session) -> SessionClaims:
    """
    Admin check in two steps: trust the role claim, then verify against the database.

    A token minted before a promotion carries a stale role, so a non-admin claim
    is re-checked with a fresh lookup before access is refused.

    Parameters:
        session (SessionClaims): The caller's session, or None.
        db (Session): The database session.

    Returns:
        SessionClaims: The session that was granted access.

    Raises:
        AuthenticationError: If there is no session.
        AuthorizationError: If neither the claim nor the stored role is ADMIN.
    """
    if session is None:
        raise AuthenticationError()

    if session.role == UserRole.ADMIN.value:
        return session

    stored_role = db.query(User.role).filter(User.id == session.user_id).scalar()
    if stored_role == UserRole.ADMIN:
        logger.info(f"Admin role for user {session.user_id} confirmed from database")
        return session

    raise AuthorizationError()


async def get_admin_session(
    session: Optional[SessionClaims] = Depends(get_session), db: Session = Depends(get_db)
) -> SessionClaims:
    return require_admin_role(session, db)
