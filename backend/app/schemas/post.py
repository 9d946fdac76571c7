from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class PostCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(default="", max_length=50000)
    categories: list[str] = Field(default_factory=list, max_length=10)
    images: list[str] = Field(default_factory=list, max_length=20)
    thumbnail: str | None = Field(default=None, max_length=500)


class PostUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    content: str | None = Field(default=None, max_length=50000)
    images: list[str] | None = Field(default=None, max_length=20)
    thumbnail: str | None = Field(default=None, max_length=500)


class PostSummaryRead(BaseModel):
    id: str
    title: str
    content: str
    thumbnail: str | None = None
    nickname: str
    categories: list[str]
    view_count: int
    like_count: int
    liked: bool
    bookmarked: bool
    created_at: datetime


class PostDetailRead(PostSummaryRead):
    user_id: str
    images: list[str]
    updated_at: datetime


class PostPageRead(BaseModel):
    posts: list[PostSummaryRead]
    has_more: bool


class PostToggleRead(BaseModel):
    post_id: str
    action: Literal["like", "cancel", "add", "remove"]
    like_count: int | None = None
