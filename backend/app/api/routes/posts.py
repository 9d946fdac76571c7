from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_optional_user
from app.core.config import get_settings
from app.db.models import Post, User
from app.db.session import get_db
from app.schemas.post import (
    PostCreateRequest,
    PostDetailRead,
    PostPageRead,
    PostSummaryRead,
    PostToggleRead,
    PostUpdateRequest,
)
from app.services.post_service import post_service

router = APIRouter()


def _get_post_or_404(db: Session, post_id: str) -> Post:
    post = post_service.get_post(db, post_id)
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return post


@router.post("", response_model=PostDetailRead, status_code=status.HTTP_201_CREATED)
def create_post(
    payload: PostCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PostDetailRead:
    post = post_service.create_post(db, current_user, payload)
    return PostDetailRead(**post_service.serialize_detail(db, post, current_user.id))


@router.get("", response_model=PostPageRead)
def list_posts(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    order: str = Query(default="latest"),
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> PostPageRead:
    settings = get_settings()
    size = min(page_size or settings.posts_page_size, settings.posts_max_page_size)
    viewer_id = current_user.id if current_user else None
    try:
        posts, has_more = post_service.list_posts(
            db, page=page, page_size=size, order=order, viewer_id=viewer_id
        )
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PostPageRead(
        posts=[PostSummaryRead(**post_service.serialize_summary(db, post, viewer_id)) for post in posts],
        has_more=has_more,
    )


@router.get("/{post_id}", response_model=PostDetailRead)
def read_post(
    post_id: str,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> PostDetailRead:
    post = post_service.view_post(db, _get_post_or_404(db, post_id))
    viewer_id = current_user.id if current_user else None
    return PostDetailRead(**post_service.serialize_detail(db, post, viewer_id))


@router.patch("/{post_id}", response_model=PostDetailRead)
def update_post(
    post_id: str,
    payload: PostUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PostDetailRead:
    post = _get_post_or_404(db, post_id)
    try:
        post = post_service.update_post(db, post, current_user, payload)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return PostDetailRead(**post_service.serialize_detail(db, post, current_user.id))


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    post = _get_post_or_404(db, post_id)
    try:
        post_service.delete_post(db, post, current_user)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{post_id}/like", response_model=PostToggleRead)
def toggle_like(
    post_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PostToggleRead:
    post = _get_post_or_404(db, post_id)
    action = post_service.toggle_like(db, post, current_user)
    return PostToggleRead(post_id=post.id, action=action, like_count=post.like_count)


@router.post("/{post_id}/bookmark", response_model=PostToggleRead)
def toggle_bookmark(
    post_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PostToggleRead:
    post = _get_post_or_404(db, post_id)
    action = post_service.toggle_bookmark(db, post, current_user)
    return PostToggleRead(post_id=post.id, action=action)
