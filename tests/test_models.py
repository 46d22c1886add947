"""Tests for post models and the author display projection."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from blog_api.models import Author, BlogPost, PostCreate, PostResponse, PostUpdate

AUTHOR = {"firstName": "Octavia", "lastName": "Butler"}


def _make_post(**overrides: object) -> BlogPost:
    data: dict[str, object] = {
        "id": "abc123",
        "author": Author.model_validate(AUTHOR),
        "title": "Kindred",
        "content": "A novel.",
        "created": datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
    }
    return BlogPost.model_validate(data | overrides)


def test_author_display_name() -> None:
    assert Author.model_validate(AUTHOR).display_name == "Octavia Butler"


def test_author_accepts_field_names() -> None:
    author = Author(first_name="Ursula", last_name="Le Guin")
    assert author.model_dump(by_alias=True) == {"firstName": "Ursula", "lastName": "Le Guin"}


@pytest.mark.parametrize(
    "bad",
    [{"firstName": "Only"}, {"firstName": "", "lastName": "X"}, {"firstName": " ", "lastName": "X"}],
)
def test_author_requires_both_names(bad: dict[str, str]) -> None:
    with pytest.raises(ValidationError):
        Author.model_validate(bad)


def test_blog_post_author_name() -> None:
    assert _make_post().author_name == "Octavia Butler"


def test_blog_post_json_keeps_structured_author() -> None:
    post = _make_post()
    restored = BlogPost.model_validate_json(post.model_dump_json(by_alias=True))
    assert restored == post
    assert restored.author.first_name == "Octavia"


def test_post_create_is_strict() -> None:
    with pytest.raises(ValidationError):
        PostCreate.model_validate({"author": AUTHOR, "title": 1, "content": "x"})


def test_post_update_changes_only_supplied_fields() -> None:
    update = PostUpdate.model_validate({"id": "abc123", "content": "Revised"})
    assert update.changes() == {"content": "Revised"}


def test_post_update_changes_all_fields() -> None:
    update = PostUpdate.model_validate(
        {"id": "abc123", "title": "T", "content": "C", "author": AUTHOR}
    )
    changes = update.changes()
    assert set(changes) == {"author", "title", "content"}
    assert changes["author"] == Author.model_validate(AUTHOR)


def test_post_response_projects_author() -> None:
    post = _make_post()
    resp = PostResponse.from_post(post)
    assert resp.author == "Octavia Butler"
    assert resp.model_dump(mode="json") == {
        "id": "abc123",
        "author": "Octavia Butler",
        "title": "Kindred",
        "content": "A novel.",
        "created": "2024-01-02T03:04:05Z",
    }


@pytest.mark.parametrize("blank", ["", " ", "\n\t "])
@pytest.mark.parametrize("field", ["title", "content"])
def test_post_create_rejects_blank_text(field: str, blank: str) -> None:
    data = {"author": AUTHOR, "title": "T", "content": "C"} | {field: blank}
    with pytest.raises(ValidationError):
        PostCreate.model_validate(data)


def test_post_update_rejects_blank_title() -> None:
    with pytest.raises(ValidationError):
        PostUpdate.model_validate({"id": "abc123", "title": "   "})


def test_text_keeps_surrounding_whitespace() -> None:
    post = PostCreate.model_validate({"author": AUTHOR, "title": " T", "content": "C\n"})
    assert post.title == " T"
    assert post.content == "C\n"


def test_blog_post_rejects_naive_created() -> None:
    with pytest.raises(ValidationError):
        _make_post(created=datetime(2024, 1, 2, 3, 4, 5))
