import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_key_value_store
from app.core.config import get_settings
from app.core.request_meta import extract_client_ip
from app.core.security import create_access_token
from app.db.models import User
from app.db.session import get_db
from app.schemas.auth import (
    AvailabilityRead,
    LoginRequest,
    PasswordResetConfirmRead,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    PasswordResetStatusRead,
    RegisterRequest,
    TokenResponse,
    UserRead,
)
from app.services.auth_service import (
    authenticate_user,
    create_user,
    get_user_by_email,
    get_user_by_nickname,
    issue_password_reset_code,
    reset_password_with_code,
)
from app.services.presence_service import MemoryKeyValueStore, RedisKeyValueStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> UserRead:
    if get_user_by_email(db, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already in use")
    if get_user_by_nickname(db, payload.nickname):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Nickname already in use")
    user = create_user(db, payload)
    return UserRead.model_validate(user)


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> TokenResponse:
    settings = get_settings()
    user = authenticate_user(db, payload.email, payload.password)
    if not user:
        logger.warning(
            "Failed login for %s from %s", payload.email.lower(), extract_client_ip(request)
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    access_token = create_access_token(user.id)
    response.set_cookie(
        key=settings.access_token_cookie_name,
        value=access_token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.access_token_cookie_secure,
        samesite="lax",
    )
    return TokenResponse(
        access_token=access_token,
        user_id=user.id,
        nickname=user.nickname,
        image_url=user.image_url,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout() -> Response:
    settings = get_settings()
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.access_token_cookie_name)
    return response


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.get("/check-email", response_model=AvailabilityRead)
def check_email(email: str = Query(min_length=3, max_length=255), db: Session = Depends(get_db)) -> AvailabilityRead:
    return AvailabilityRead(available=get_user_by_email(db, email) is None)


@router.get("/check-nickname", response_model=AvailabilityRead)
def check_nickname(
    nickname: str = Query(min_length=2, max_length=40),
    db: Session = Depends(get_db),
) -> AvailabilityRead:
    return AvailabilityRead(available=get_user_by_nickname(db, nickname) is None)


@router.post("/password-reset/request", response_model=PasswordResetStatusRead)
async def request_password_reset(
    payload: PasswordResetRequest,
    db: Session = Depends(get_db),
    store: MemoryKeyValueStore | RedisKeyValueStore = Depends(get_key_value_store),
) -> PasswordResetStatusRead:
    await issue_password_reset_code(db, store, payload.email)
    return PasswordResetStatusRead(
        message="If this account exists, a verification code has been sent",
    )


@router.post("/password-reset/confirm", response_model=PasswordResetConfirmRead)
async def confirm_password_reset(
    payload: PasswordResetConfirmRequest,
    db: Session = Depends(get_db),
    store: MemoryKeyValueStore | RedisKeyValueStore = Depends(get_key_value_store),
) -> PasswordResetConfirmRead:
    try:
        password = await reset_password_with_code(db, store, payload.email, payload.code)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PasswordResetConfirmRead(password=password)
