from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import hash_password
from app.db import models
from app.db.base import Base


def make_session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_user(
    session_factory,
    nickname: str,
    *,
    email: str | None = None,
    password: str = "password123",
) -> models.User:
    db = session_factory()
    try:
        user = models.User(
            email=email or f"{nickname.lower()}@example.com",
            nickname=nickname,
            hashed_password=hash_password(password),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    finally:
        db.close()


def add_discussion(session_factory, author: models.User, title: str = "Weekly sync") -> models.Discussion:
    db = session_factory()
    try:
        discussion = models.Discussion(author_id=author.id, title=title, content="")
        db.add(discussion)
        db.flush()
        db.add(models.DiscussionUser(discussion_id=discussion.id, user_id=author.id))
        db.commit()
        db.refresh(discussion)
        return discussion
    finally:
        db.close()
