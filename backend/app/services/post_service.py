from datetime import datetime, timezone

from sqlalchemy import asc, delete, desc, select
from sqlalchemy.orm import Session

from app.db.models import Bookmark, Neighbor, Post, PostCategory, PostImage, PostLike, User, UserBlock
from app.schemas.post import PostCreateRequest, PostUpdateRequest

POST_ORDERINGS = {
    "latest": desc(Post.created_at),
    "oldest": asc(Post.created_at),
    "views": desc(Post.view_count),
    "likes": desc(Post.like_count),
}
NEIGHBOR_ORDER = "neighbor"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_categories(categories: list[str]) -> list[str]:
    seen: list[str] = []
    for category in categories:
        value = category.strip()[:40]
        if value and value not in seen:
            seen.append(value)
    return seen


class PostService:
    def _categories(self, db: Session, post_id: str) -> list[str]:
        return list(
            db.scalars(select(PostCategory.category).where(PostCategory.post_id == post_id)).all()
        )

    def _images(self, db: Session, post_id: str) -> list[str]:
        return list(
            db.scalars(
                select(PostImage.image_url)
                .where(PostImage.post_id == post_id)
                .order_by(PostImage.position)
            ).all()
        )

    def _replace_images(self, db: Session, post_id: str, images: list[str]) -> None:
        db.execute(delete(PostImage).where(PostImage.post_id == post_id))
        for position, image_url in enumerate(images):
            db.add(PostImage(post_id=post_id, position=position, image_url=image_url))

    def _nickname(self, db: Session, user_id: str) -> str:
        user = db.get(User, user_id)
        return user.nickname if user else ""

    def _is_liked(self, db: Session, viewer_id: str | None, post_id: str) -> bool:
        if not viewer_id:
            return False
        return db.scalar(
            select(PostLike.id).where(PostLike.user_id == viewer_id, PostLike.post_id == post_id)
        ) is not None

    def _is_bookmarked(self, db: Session, viewer_id: str | None, post_id: str) -> bool:
        if not viewer_id:
            return False
        return db.scalar(
            select(Bookmark.id).where(Bookmark.user_id == viewer_id, Bookmark.post_id == post_id)
        ) is not None

    def serialize_summary(self, db: Session, post: Post, viewer_id: str | None) -> dict:
        return {
            "id": post.id,
            "title": post.title,
            "content": post.content,
            "thumbnail": post.thumbnail,
            "nickname": self._nickname(db, post.user_id),
            "categories": self._categories(db, post.id),
            "view_count": post.view_count,
            "like_count": post.like_count,
            "liked": self._is_liked(db, viewer_id, post.id),
            "bookmarked": self._is_bookmarked(db, viewer_id, post.id),
            "created_at": post.created_at,
        }

    def serialize_detail(self, db: Session, post: Post, viewer_id: str | None) -> dict:
        payload = self.serialize_summary(db, post, viewer_id)
        payload["user_id"] = post.user_id
        payload["images"] = self._images(db, post.id)
        payload["updated_at"] = post.updated_at
        return payload

    def create_post(self, db: Session, author: User, payload: PostCreateRequest) -> Post:
        post = Post(
            user_id=author.id,
            title=payload.title.strip(),
            content=payload.content,
            thumbnail=payload.thumbnail,
            view_count=0,
            like_count=0,
        )
        db.add(post)
        db.flush()
        for category in _normalize_categories(payload.categories):
            db.add(PostCategory(post_id=post.id, category=category))
        self._replace_images(db, post.id, payload.images)
        db.commit()
        db.refresh(post)
        return post

    def get_post(self, db: Session, post_id: str) -> Post | None:
        return db.get(Post, post_id)

    def view_post(self, db: Session, post: Post) -> Post:
        post.view_count += 1
        db.add(post)
        db.commit()
        db.refresh(post)
        return post

    def list_posts(
        self,
        db: Session,
        *,
        page: int,
        page_size: int,
        order: str = "latest",
        viewer_id: str | None = None,
    ) -> tuple[list[Post], bool]:
        """Blocked authors are hidden from the viewer; ``neighbor`` lists followed authors, newest first."""
        if order == NEIGHBOR_ORDER:
            if not viewer_id:
                raise PermissionError("Sign in to see posts from your neighbors")
            ordering = desc(Post.created_at)
        else:
            ordering = POST_ORDERINGS.get(order)
            if ordering is None:
                raise ValueError(f"Unsupported order: {order}")

        stmt = select(Post)
        if viewer_id:
            blocked_ids = select(UserBlock.blocked_user_id).where(UserBlock.user_id == viewer_id)
            stmt = stmt.where(Post.user_id.not_in(blocked_ids))
        if order == NEIGHBOR_ORDER:
            followed_ids = select(Neighbor.follows_to).where(Neighbor.user_id == viewer_id)
            stmt = stmt.where(Post.user_id.in_(followed_ids))

        offset = (max(1, page) - 1) * page_size
        stmt = stmt.order_by(ordering, desc(Post.id)).offset(offset).limit(page_size + 1)
        rows = list(db.scalars(stmt).all())
        has_more = len(rows) > page_size
        return rows[:page_size], has_more

    def update_post(self, db: Session, post: Post, editor: User, payload: PostUpdateRequest) -> Post:
        if post.user_id != editor.id:
            raise PermissionError("Only the author can edit this post")
        if payload.title is not None:
            post.title = payload.title.strip()
        if payload.content is not None:
            post.content = payload.content
        if payload.thumbnail is not None:
            post.thumbnail = payload.thumbnail or None
        if payload.images is not None:
            # images are rewritten wholesale
            self._replace_images(db, post.id, payload.images)
        post.updated_at = _utc_now()
        db.add(post)
        db.commit()
        db.refresh(post)
        return post

    def delete_post(self, db: Session, post: Post, editor: User) -> None:
        if post.user_id != editor.id:
            raise PermissionError("Only the author can delete this post")
        db.execute(delete(PostCategory).where(PostCategory.post_id == post.id))
        db.execute(delete(PostImage).where(PostImage.post_id == post.id))
        db.execute(delete(PostLike).where(PostLike.post_id == post.id))
        db.execute(delete(Bookmark).where(Bookmark.post_id == post.id))
        db.delete(post)
        db.commit()

    def toggle_like(self, db: Session, post: Post, user: User) -> str:
        existing = db.scalar(
            select(PostLike).where(PostLike.user_id == user.id, PostLike.post_id == post.id)
        )
        if existing:
            db.delete(existing)
            post.like_count = max(0, post.like_count - 1)
            action = "cancel"
        else:
            db.add(PostLike(user_id=user.id, post_id=post.id))
            post.like_count += 1
            action = "like"
        db.add(post)
        db.commit()
        db.refresh(post)
        return action

    def toggle_bookmark(self, db: Session, post: Post, user: User) -> str:
        existing = db.scalar(
            select(Bookmark).where(Bookmark.user_id == user.id, Bookmark.post_id == post.id)
        )
        if existing:
            db.delete(existing)
            action = "remove"
        else:
            db.add(Bookmark(user_id=user.id, post_id=post.id))
            action = "add"
        db.commit()
        return action


post_service = PostService()
