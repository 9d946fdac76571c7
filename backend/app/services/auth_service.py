import logging

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.security import (
    generate_random_password,
    generate_reset_code,
    hash_password,
    verify_password,
)
from app.db.models import (
    Bookmark,
    Discussion,
    DiscussionUser,
    Neighbor,
    Post,
    PostCategory,
    PostImage,
    PostLike,
    User,
    UserBlock,
)
from app.schemas.auth import RegisterRequest, UserUpdateRequest
from app.services.presence_service import MemoryKeyValueStore, RedisKeyValueStore, reset_code_key

logger = logging.getLogger(__name__)


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == email.strip().lower()))


def get_user_by_nickname(db: Session, nickname: str) -> User | None:
    return db.scalar(select(User).where(User.nickname == nickname.strip()))


def create_user(db: Session, payload: RegisterRequest) -> User:
    user = User(
        email=payload.email.lower(),
        nickname=payload.nickname.strip(),
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    user = get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def update_user(db: Session, user: User, payload: UserUpdateRequest) -> User:
    if payload.nickname is not None:
        nickname = payload.nickname.strip()
        existing = get_user_by_nickname(db, nickname)
        if existing and existing.id != user.id:
            raise ValueError("Nickname already in use")
        user.nickname = nickname
    if payload.image_url is not None:
        user.image_url = payload.image_url.strip() or None
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user: User) -> None:
    """Removes the account together with its posts, authored discussions and relations."""
    own_post_ids = select(Post.id).where(Post.user_id == user.id)
    db.execute(delete(PostCategory).where(PostCategory.post_id.in_(own_post_ids)))
    db.execute(delete(PostImage).where(PostImage.post_id.in_(own_post_ids)))
    db.execute(delete(PostLike).where(PostLike.post_id.in_(own_post_ids)))
    db.execute(delete(Bookmark).where(Bookmark.post_id.in_(own_post_ids)))
    db.execute(delete(Post).where(Post.user_id == user.id))

    liked_post_ids = select(PostLike.post_id).where(PostLike.user_id == user.id)
    db.execute(
        update(Post)
        .where(Post.id.in_(liked_post_ids), Post.like_count > 0)
        .values(like_count=Post.like_count - 1)
    )
    db.execute(delete(PostLike).where(PostLike.user_id == user.id))
    db.execute(delete(Bookmark).where(Bookmark.user_id == user.id))

    own_discussion_ids = select(Discussion.id).where(Discussion.author_id == user.id)
    db.execute(delete(DiscussionUser).where(DiscussionUser.discussion_id.in_(own_discussion_ids)))
    db.execute(delete(Discussion).where(Discussion.author_id == user.id))
    db.execute(delete(DiscussionUser).where(DiscussionUser.user_id == user.id))

    db.execute(
        delete(UserBlock).where(or_(UserBlock.user_id == user.id, UserBlock.blocked_user_id == user.id))
    )
    db.execute(delete(Neighbor).where(or_(Neighbor.user_id == user.id, Neighbor.follows_to == user.id)))
    db.delete(user)
    db.commit()


def change_password(db: Session, user: User, password: str) -> None:
    user.hashed_password = hash_password(password)
    db.add(user)
    db.commit()


def send_password_reset_mail(email: str, code: str) -> None:
    # Mail delivery is handled outside this service; the code is logged for operators.
    logger.info("Password reset code for %s: %s", email, code)


async def issue_password_reset_code(
    db: Session,
    store: MemoryKeyValueStore | RedisKeyValueStore,
    email: str,
) -> bool:
    settings = get_settings()
    user = get_user_by_email(db, email)
    if not user:
        return False
    code = generate_reset_code(settings.password_reset_code_length)
    await store.set(reset_code_key(user.email), code, ttl=settings.password_reset_code_ttl_seconds)
    send_password_reset_mail(user.email, code)
    return True


async def reset_password_with_code(
    db: Session,
    store: MemoryKeyValueStore | RedisKeyValueStore,
    email: str,
    code: str,
) -> str:
    user = get_user_by_email(db, email)
    if not user:
        raise ValueError("No user matches this email")
    key = reset_code_key(user.email)
    expected = await store.get(key)
    if expected is None or expected != code.strip().upper():
        raise ValueError("Verification code does not match")
    await store.delete(key)

    password = generate_random_password()
    user.hashed_password = hash_password(password)
    db.add(user)
    db.commit()
    return password
