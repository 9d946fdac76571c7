from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.db.models import Discussion, User
from app.db.session import get_db
from app.schemas.discussion import DiscussionCreateRequest, DiscussionRead, DiscussionUpdateRequest
from app.services.discussion_service import (
    create_discussion,
    decode_progress,
    get_discussion,
    update_discussion,
)

router = APIRouter()


def _to_read(discussion: Discussion) -> DiscussionRead:
    return DiscussionRead(
        id=discussion.id,
        author_id=discussion.author_id,
        title=discussion.title,
        content=discussion.content,
        progress=decode_progress(discussion.progress_json),
        created_at=discussion.created_at,
        updated_at=discussion.updated_at,
    )


@router.post("", response_model=DiscussionRead, status_code=status.HTTP_201_CREATED)
def create(
    payload: DiscussionCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DiscussionRead:
    return _to_read(create_discussion(db, author=current_user, payload=payload))


@router.get("/{discussion_id}", response_model=DiscussionRead)
def read(discussion_id: str, db: Session = Depends(get_db)) -> DiscussionRead:
    discussion = get_discussion(db, discussion_id)
    if not discussion:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discussion not found")
    return _to_read(discussion)


@router.patch("/{discussion_id}", response_model=DiscussionRead)
def update(
    discussion_id: str,
    payload: DiscussionUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DiscussionRead:
    discussion = get_discussion(db, discussion_id)
    if not discussion:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discussion not found")
    try:
        updated = update_discussion(db, discussion, editor=current_user, payload=payload)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return _to_read(updated)
