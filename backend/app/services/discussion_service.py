from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import Discussion, DiscussionUser, User
from app.db.session import SessionLocal
from app.schemas.discussion import DiscussionCreateRequest, DiscussionUpdateRequest


@dataclass(frozen=True)
class ParticipantIdentity:
    user_id: str
    nickname: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _identity_for(user: User) -> ParticipantIdentity:
    return ParticipantIdentity(user_id=user.id, nickname=user.nickname)


def decode_progress(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def create_discussion(db: Session, *, author: User, payload: DiscussionCreateRequest) -> Discussion:
    discussion = Discussion(
        author_id=author.id,
        title=payload.title.strip(),
        content=payload.content,
        progress_json=json.dumps(payload.progress),
    )
    db.add(discussion)
    db.flush()
    db.add(DiscussionUser(discussion_id=discussion.id, user_id=author.id))
    db.commit()
    db.refresh(discussion)
    return discussion


def get_discussion(db: Session, discussion_id: str) -> Discussion | None:
    return db.get(Discussion, discussion_id)


def update_discussion(
    db: Session,
    discussion: Discussion,
    *,
    editor: User,
    payload: DiscussionUpdateRequest,
) -> Discussion:
    if discussion.author_id != editor.id:
        raise PermissionError("Only the author can edit this discussion")
    if payload.title is not None:
        discussion.title = payload.title.strip()
    if payload.content is not None:
        discussion.content = payload.content
    discussion.updated_at = _utc_now()
    db.add(discussion)
    db.commit()
    db.refresh(discussion)
    return discussion


class DiscussionRegistry:
    """Async view of discussion metadata, membership and bans for the realtime core."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def _participant_row(self, db: Session, discussion_id: str, user_id: str) -> DiscussionUser | None:
        return db.scalar(
            select(DiscussionUser).where(
                DiscussionUser.discussion_id == discussion_id,
                DiscussionUser.user_id == user_id,
            )
        )

    def _identities(self, db: Session, user_ids: list[str]) -> set[ParticipantIdentity]:
        if not user_ids:
            return set()
        users = db.scalars(select(User).where(User.id.in_(user_ids))).all()
        return {_identity_for(user) for user in users}

    async def exists(self, discussion_id: str) -> bool:
        if not discussion_id:
            return False
        db = self._session_factory()
        try:
            return db.get(Discussion, discussion_id) is not None
        finally:
            db.close()

    async def get_author_id(self, discussion_id: str) -> str | None:
        db = self._session_factory()
        try:
            discussion = db.get(Discussion, discussion_id)
            return discussion.author_id if discussion else None
        finally:
            db.close()

    async def verify_author(self, discussion_id: str, identity: ParticipantIdentity | None) -> bool:
        if identity is None:
            return False
        return await self.get_author_id(discussion_id) == identity.user_id

    async def get_ban_list(self, discussion_id: str) -> set[ParticipantIdentity]:
        db = self._session_factory()
        try:
            user_ids = db.scalars(
                select(DiscussionUser.user_id).where(
                    DiscussionUser.discussion_id == discussion_id,
                    DiscussionUser.is_banned.is_(True),
                )
            ).all()
            return self._identities(db, list(user_ids))
        finally:
            db.close()

    async def is_banned(self, discussion_id: str, identity: ParticipantIdentity) -> bool:
        db = self._session_factory()
        try:
            row = self._participant_row(db, discussion_id, identity.user_id)
            return bool(row and row.is_banned)
        finally:
            db.close()

    async def add_ban(self, discussion_id: str, identity: ParticipantIdentity) -> None:
        db = self._session_factory()
        try:
            row = self._participant_row(db, discussion_id, identity.user_id)
            if row is None:
                row = DiscussionUser(discussion_id=discussion_id, user_id=identity.user_id)
            row.is_banned = True
            row.banned_at = _utc_now()
            db.add(row)
            db.commit()
        finally:
            db.close()

    async def remove_ban(self, discussion_id: str, identity: ParticipantIdentity) -> bool:
        db = self._session_factory()
        try:
            row = self._participant_row(db, discussion_id, identity.user_id)
            if row is None or not row.is_banned:
                return False
            row.is_banned = False
            row.banned_at = None
            db.add(row)
            db.commit()
            return True
        finally:
            db.close()

    async def set_progress(self, discussion_id: str, progress: Any) -> None:
        db = self._session_factory()
        try:
            discussion = db.get(Discussion, discussion_id)
            if discussion is None:
                return
            discussion.progress_json = json.dumps(progress)
            discussion.updated_at = _utc_now()
            db.add(discussion)
            db.commit()
        finally:
            db.close()

    async def get_progress(self, discussion_id: str) -> Any:
        db = self._session_factory()
        try:
            discussion = db.get(Discussion, discussion_id)
            return decode_progress(discussion.progress_json) if discussion else None
        finally:
            db.close()

    async def list_known_members(self, discussion_id: str) -> set[ParticipantIdentity]:
        db = self._session_factory()
        try:
            user_ids = db.scalars(
                select(DiscussionUser.user_id).where(DiscussionUser.discussion_id == discussion_id)
            ).all()
            return self._identities(db, list(user_ids))
        finally:
            db.close()

    async def record_member(self, discussion_id: str, identity: ParticipantIdentity) -> None:
        db = self._session_factory()
        try:
            if self._participant_row(db, discussion_id, identity.user_id) is not None:
                return
            db.add(DiscussionUser(discussion_id=discussion_id, user_id=identity.user_id))
            db.commit()
        finally:
            db.close()

    async def resolve_nickname(self, nickname: str) -> ParticipantIdentity | None:
        normalized = nickname.strip() if isinstance(nickname, str) else ""
        if not normalized:
            return None
        db = self._session_factory()
        try:
            user = db.scalar(select(User).where(User.nickname == normalized))
            return _identity_for(user) if user else None
        finally:
            db.close()
