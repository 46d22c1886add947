"""Shared test constants, fixtures, and factory functions."""

from collections.abc import AsyncIterator
from typing import Any

import fakeredis
import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient

from blog_api.config import Settings
from blog_api.main import app, close_server, run_server
from blog_api.store import BlogPostStore, MemoryBlogPostStore, RedisBlogPostStore

# -- Constants --

REDIS_URL = "redis://localhost:6379/0"
SEED_COUNT = 10
POST_KEYS = {"id", "author", "content", "title", "created"}

fake = Faker()


# -- Factories --


def make_settings(**overrides: Any) -> Settings:
    """Create a Settings instance with test defaults. Override any field."""
    defaults: dict[str, Any] = {"store_backend": "memory", "database_url": None}
    return Settings(**(defaults | overrides))


def make_post_data(**overrides: Any) -> dict[str, Any]:
    """Generate a random post body in wire format (camelCase author)."""
    data: dict[str, Any] = {
        "author": {"firstName": fake.first_name(), "lastName": fake.last_name()},
        "title": fake.sentence(nb_words=4),
        "content": "\n\n".join(fake.paragraphs(nb=3)),
    }
    return data | overrides


def make_fake_redis() -> fakeredis.FakeAsyncRedis:
    """Fake Redis client on its own server, so tests never share keys."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())


# -- Fixtures --


@pytest.fixture
def env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pin env vars so Settings() picks the in-memory store."""
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.delenv("DATABASE_URL", raising=False)


@pytest.fixture
async def store() -> AsyncIterator[MemoryBlogPostStore]:
    s = MemoryBlogPostStore()
    yield s
    await s.drop_all()


@pytest.fixture(params=["memory", "redis"])
async def any_store(request: pytest.FixtureRequest) -> AsyncIterator[BlogPostStore]:
    """Each store implementation in turn; Redis runs against fakeredis."""
    s: BlogPostStore
    if request.param == "redis":
        s = RedisBlogPostStore(make_fake_redis())
    else:
        s = MemoryBlogPostStore()
    yield s
    await s.drop_all()
    await s.aclose()


@pytest.fixture
async def seeded_store(store: MemoryBlogPostStore) -> MemoryBlogPostStore:
    """Store pre-filled with SEED_COUNT random posts."""
    await store.insert_many(make_post_data() for _ in range(SEED_COUNT))
    return store


@pytest.fixture
async def client(seeded_store: MemoryBlogPostStore) -> AsyncIterator[AsyncClient]:
    """AsyncClient wired to the FastAPI app with a seeded in-memory store."""
    app.state.settings = make_settings()
    await run_server(app, seeded_store)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await close_server(app)
