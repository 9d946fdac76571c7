from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import Neighbor, User, UserBlock


def _require_other_user(db: Session, user: User, target_id: str, action: str) -> User:
    if target_id == user.id:
        raise ValueError(f"You cannot {action} yourself")
    target = db.get(User, target_id)
    if not target:
        raise LookupError("User not found")
    return target


def list_blocked_users(db: Session, user: User) -> list[User]:
    blocked_ids = select(UserBlock.blocked_user_id).where(UserBlock.user_id == user.id)
    return list(db.scalars(select(User).where(User.id.in_(blocked_ids)).order_by(User.nickname)).all())


def blocked_user_ids(db: Session, user_id: str) -> list[str]:
    return list(db.scalars(select(UserBlock.blocked_user_id).where(UserBlock.user_id == user_id)).all())


def block_user(db: Session, user: User, target_id: str) -> bool:
    """Returns False when the target is already blocked."""
    target = _require_other_user(db, user, target_id, "block")
    existing = db.scalar(
        select(UserBlock).where(UserBlock.user_id == user.id, UserBlock.blocked_user_id == target.id)
    )
    if existing:
        return False
    db.add(UserBlock(user_id=user.id, blocked_user_id=target.id))
    db.commit()
    return True


def unblock_user(db: Session, user: User, target_id: str) -> bool:
    existing = db.scalar(
        select(UserBlock).where(UserBlock.user_id == user.id, UserBlock.blocked_user_id == target_id)
    )
    if not existing:
        return False
    db.delete(existing)
    db.commit()
    return True


def list_neighbors(db: Session, user: User) -> list[User]:
    followed_ids = select(Neighbor.follows_to).where(Neighbor.user_id == user.id)
    return list(db.scalars(select(User).where(User.id.in_(followed_ids)).order_by(User.nickname)).all())


def follow_user(db: Session, user: User, target_id: str) -> bool:
    """Returns False when the target is already followed."""
    target = _require_other_user(db, user, target_id, "follow")
    existing = db.scalar(
        select(Neighbor).where(Neighbor.user_id == user.id, Neighbor.follows_to == target.id)
    )
    if existing:
        return False
    db.add(Neighbor(user_id=user.id, follows_to=target.id))
    db.commit()
    return True


def unfollow_user(db: Session, user: User, target_id: str) -> bool:
    existing = db.scalar(
        select(Neighbor).where(Neighbor.user_id == user.id, Neighbor.follows_to == target_id)
    )
    if not existing:
        return False
    db.delete(existing)
    db.commit()
    return True
