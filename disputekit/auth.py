"""Identity provider: accounts, session tokens and the current-user dependency"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from disputekit import config
from disputekit.database import get_db
from disputekit.errors import Unauthenticated, ValidationFailed
from disputekit.models import RevokedToken, User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE = "access_token"

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def sign_up(db: Session, email: Optional[str], password: Optional[str]) -> User:
    if not email or not password:
        raise ValidationFailed("Email and password are required")

    email = email.strip().lower()
    if db.query(User).filter_by(email=email).first():
        raise ValidationFailed("User already registered")

    user = User(email=email, password_hash=hash_password(password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.id}")
    return user


def sign_in(db: Session, email: Optional[str], password: Optional[str]) -> User:
    if not email or not password:
        raise ValidationFailed("Email and password are required")

    user = db.query(User).filter_by(email=email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        raise ValidationFailed("Invalid login credentials")
    return user


def create_access_token(user: User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=config.jwt_expire_hours())
    claims = {
        "sub": user.id,
        "email": user.email,
        "jti": uuid.uuid4().hex,
        "exp": expire,
    }
    return jwt.encode(claims, config.require("JWT_SECRET"), algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode a session token; None when it is invalid or expired."""
    try:
        return jwt.decode(token, config.require("JWT_SECRET"), algorithms=[ALGORITHM])
    except JWTError:
        return None


def sign_out(db: Session, token: Optional[str]) -> None:
    """Revoke a session token. Signing out without a valid session is a no-op."""
    if not token:
        return
    claims = decode_token(token)
    if not claims or not claims.get("jti"):
        return
    if db.get(RevokedToken, claims["jti"]) is None:
        db.add(RevokedToken(jti=claims["jti"], user_id=claims.get("sub")))
        db.commit()


def session_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    access_token: Optional[str] = Cookie(None),
) -> Optional[str]:
    """Session token from the bearer header, falling back to the session cookie"""
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return access_token


def resolve_user(db: Session, token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    claims = decode_token(token)
    if not claims or not claims.get("sub"):
        return None
    if claims.get("jti") and db.get(RevokedToken, claims["jti"]) is not None:
        return None
    return db.get(User, claims["sub"])


def get_current_user(
    token: Optional[str] = Depends(session_token),
    db: Session = Depends(get_db),
) -> User:
    user = resolve_user(db, token)
    if user is None:
        raise Unauthenticated()
    return user


def get_optional_user(
    token: Optional[str] = Depends(session_token),
    db: Session = Depends(get_db),
) -> Optional[User]:
    return resolve_user(db, token)
