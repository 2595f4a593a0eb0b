from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RequestBody(BaseModel):
    # Accepts both camelCase (web client) and snake_case keys.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BlogCreate(RequestBody):
    title: str = Field(max_length=300)
    content: Any = None
    description: str | None = None
    thumbnail_url: str | None = Field(default=None, max_length=1024)
    status: Literal["draft", "published"] = "draft"
    topic_ids: list[int] = Field(default_factory=list)


class BlogStatusUpdate(RequestBody):
    status: Literal["draft", "published", "archived"]
    topic_ids: list[int] = Field(default_factory=list)


class CommentCreate(RequestBody):
    blog_id: int
    comment: str
    parent_comment_id: int | None = None


class CommentUpdate(RequestBody):
    comment: str
