from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class DiscussionCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(default="", max_length=20000)
    progress: Any = None


class DiscussionUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    content: str | None = Field(default=None, max_length=20000)


class DiscussionRead(BaseModel):
    id: str
    author_id: str
    title: str
    content: str
    progress: Any = None
    created_at: datetime
    updated_at: datetime
