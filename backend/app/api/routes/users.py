from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.config import get_settings
from app.db.models import User
from app.db.session import get_db
from app.schemas.auth import (
    PasswordUpdateRequest,
    UserBriefRead,
    UserRead,
    UserTargetRequest,
    UserUpdateRequest,
)
from app.services.auth_service import change_password, delete_user, update_user
from app.services.relation_service import (
    block_user,
    follow_user,
    list_blocked_users,
    list_neighbors,
    unblock_user,
    unfollow_user,
)

router = APIRouter()


def _add_relation(action, db: Session, current_user: User, target_id: str, conflict_detail: str) -> None:
    try:
        created = action(db, current_user, target_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if not created:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=conflict_detail)


@router.patch("/me", response_model=UserRead)
def update_me(
    payload: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserRead:
    try:
        user = update_user(db, current_user, payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return UserRead.model_validate(user)


@router.patch("/me/password", status_code=status.HTTP_204_NO_CONTENT)
def update_my_password(
    payload: PasswordUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    change_password(db, current_user, payload.password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_me(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    delete_user(db, current_user)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(get_settings().access_token_cookie_name)
    return response


@router.get("/me/blocks", response_model=list[UserBriefRead])
def read_blocks(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserBriefRead]:
    return [UserBriefRead.model_validate(user) for user in list_blocked_users(db, current_user)]


@router.post("/me/blocks", status_code=status.HTTP_201_CREATED)
def create_block(
    payload: UserTargetRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    _add_relation(block_user, db, current_user, payload.user_id, "Already blocked user")
    return {"blocked_user_id": payload.user_id}


@router.delete("/me/blocks/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_block(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    if not unblock_user(db, current_user, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User is not blocked")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me/neighbors", response_model=list[UserBriefRead])
def read_neighbors(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserBriefRead]:
    return [UserBriefRead.model_validate(user) for user in list_neighbors(db, current_user)]


@router.post("/me/neighbors", status_code=status.HTTP_201_CREATED)
def create_neighbor(
    payload: UserTargetRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    _add_relation(follow_user, db, current_user, payload.user_id, "Already following this user")
    return {"follows_to": payload.user_id}


@router.delete("/me/neighbors/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_neighbor(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    if not unfollow_user(db, current_user, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User is not a neighbor")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
