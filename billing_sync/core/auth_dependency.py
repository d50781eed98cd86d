"""
Request dependencies: database session and the bearer-token caller.

Tokens are issued by the account service; this service only verifies them
and maps the `sub` claim (an email) onto a local user.
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from sqlalchemy import func
from sqlalchemy.orm import Session

from billing_sync.core.config import SECRET_KEY, ALGORITHM
from billing_sync.db.session import SessionLocal
from billing_sync.db.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Email carried by the caller's JWT, normalized to lower case."""
    if credentials is None or not SECRET_KEY:
        raise _unauthorized()

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise _unauthorized()

    email = payload.get("sub")
    if not isinstance(email, str) or not email.strip():
        raise _unauthorized()
    return email.strip().lower()


def get_current_user_obj(
    email: str = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    """Local account for the caller; emails match case-insensitively as at checkout."""
    user = db.query(User).filter(func.lower(User.email) == email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
