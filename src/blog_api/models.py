"""Pydantic models for blog posts: persisted documents and wire payloads."""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StringConstraints

UPDATABLE_FIELDS = frozenset({"author", "title", "content"})

# At least one non-whitespace character
NonBlankStr = Annotated[str, StringConstraints(pattern=r"^\s*\S")]


def utcnow() -> datetime:
    return datetime.now(UTC)


class Author(BaseModel):
    """Structured author name, embedded in every post."""

    model_config = ConfigDict(strict=True, populate_by_name=True)

    first_name: NonBlankStr = Field(alias="firstName")
    last_name: NonBlankStr = Field(alias="lastName")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class BlogPost(BaseModel):
    """A persisted blog post document."""

    model_config = ConfigDict(strict=True)

    id: str = Field(description="Store-generated identifier, immutable")
    author: Author
    title: NonBlankStr
    content: NonBlankStr
    created: AwareDatetime = Field(default_factory=utcnow, description="Creation time (UTC)")

    @property
    def author_name(self) -> str:
        return self.author.display_name


class PostCreate(BaseModel):
    """Body of POST /posts. ``id`` and ``created`` are assigned by the store."""

    model_config = ConfigDict(strict=True)

    author: Author
    title: NonBlankStr
    content: NonBlankStr


class PostUpdate(BaseModel):
    """Body of PUT /posts/{id}. Only the supplied fields are changed."""

    model_config = ConfigDict(strict=True)

    id: str = Field(description="Must match the id in the request path")
    author: Author | None = None
    title: NonBlankStr | None = None
    content: NonBlankStr | None = None

    def changes(self) -> dict[str, Any]:
        """Return the supplied updatable fields, keyed by name."""
        return {
            name: getattr(self, name)
            for name in sorted(UPDATABLE_FIELDS)
            if getattr(self, name) is not None
        }


class PostResponse(BaseModel):
    """Wire representation of a post; ``author`` is the display name."""

    id: str
    author: str
    title: str
    content: str
    created: datetime

    @classmethod
    def from_post(cls, post: BlogPost) -> "PostResponse":
        return cls(
            id=post.id,
            author=post.author_name,
            title=post.title,
            content=post.content,
            created=post.created,
        )
