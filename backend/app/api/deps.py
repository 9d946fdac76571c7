from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.security import decode_access_token
from app.db.models import User
from app.db.session import get_db
from app.services.auth_service import get_user_by_id
from app.services.presence_service import MemoryKeyValueStore, RedisKeyValueStore, key_value_store

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_access_token(request: Request, bearer_token: str | None = Depends(oauth2_scheme)) -> str | None:
    if bearer_token:
        return bearer_token
    settings = get_settings()
    return request.cookies.get(settings.access_token_cookie_name)


def get_optional_user(
    token: str | None = Depends(get_access_token),
    db: Session = Depends(get_db),
) -> User | None:
    if not token:
        return None
    user_id = decode_access_token(token)
    if not user_id:
        return None
    return get_user_by_id(db, user_id)


def get_current_user(
    token: str | None = Depends(get_access_token),
    db: Session = Depends(get_db),
) -> User:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    user_id = decode_access_token(token)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    user = get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_key_value_store() -> MemoryKeyValueStore | RedisKeyValueStore:
    return key_value_store
