"""Storage for blog posts: Protocol + Memory + Redis implementations."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import uuid4

import structlog
from pydantic import AwareDatetime, TypeAdapter
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from blog_api.models import UPDATABLE_FIELDS, BlogPost, PostCreate, utcnow

if TYPE_CHECKING:
    from redis.asyncio import Redis

log = structlog.get_logger()

_POST_PREFIX = "post:"
_INDEX_KEY = "posts:index"  # sorted set: post id scored by creation timestamp
_DROP_BATCH = 500

NewPost = PostCreate | Mapping[str, Any]

_CREATED = TypeAdapter(AwareDatetime)


class PostNotFoundError(LookupError):
    """Raised when an update targets a post id that does not exist."""

    def __init__(self, post_id: str) -> None:
        super().__init__(f"Post {post_id} not found")
        self.post_id = post_id


class StoreUnavailableError(RuntimeError):
    """Raised when the backing database cannot be reached."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Post store unavailable during {operation}")
        self.operation = operation


@runtime_checkable
class BlogPostStore(Protocol):
    """Protocol for blog post persistence backends."""

    async def ping(self) -> None: ...

    async def insert(self, doc: NewPost) -> BlogPost: ...

    async def insert_many(self, docs: Iterable[NewPost]) -> list[BlogPost]: ...

    async def find_by_id(self, post_id: str) -> BlogPost | None: ...

    async def find_one(self) -> BlogPost | None: ...

    async def find_all(self) -> list[BlogPost]: ...

    async def update_by_id(self, post_id: str, fields: Mapping[str, Any]) -> BlogPost: ...

    async def delete_by_id(self, post_id: str) -> None: ...

    async def drop_all(self) -> None: ...

    async def aclose(self) -> None: ...


def new_post(doc: NewPost) -> BlogPost:
    """Build a persisted post from client fields, assigning ``id`` and ``created``.

    Mappings may carry an explicit ``created`` timestamp (fixture seeding), as
    an aware datetime or an ISO 8601 string; it is stored in UTC and a naive
    value is rejected. Any ``id`` they carry is ignored.
    """
    created: datetime | None = None
    if not isinstance(doc, PostCreate):
        if doc.get("created") is not None:
            created = _CREATED.validate_python(doc["created"]).astimezone(UTC)
        doc = PostCreate.model_validate(
            {k: v for k, v in doc.items() if k not in ("id", "created")}
        )
    return BlogPost(
        id=uuid4().hex,
        author=doc.author,
        title=doc.title,
        content=doc.content,
        created=created or utcnow(),
    )


def apply_update(post: BlogPost, fields: Mapping[str, Any]) -> BlogPost:
    """Return *post* with the updatable *fields* replaced; ``id`` and ``created`` are kept."""
    updates = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
    return BlogPost.model_validate({**post.model_dump(), **updates})


class MemoryBlogPostStore:
    """In-memory post store for local runs and testing."""

    def __init__(self) -> None:
        self._data: dict[str, BlogPost] = {}

    async def ping(self) -> None:
        return None

    async def insert(self, doc: NewPost) -> BlogPost:
        post = new_post(doc)
        self._data[post.id] = post
        return post

    async def insert_many(self, docs: Iterable[NewPost]) -> list[BlogPost]:
        return [await self.insert(doc) for doc in docs]

    async def find_by_id(self, post_id: str) -> BlogPost | None:
        return self._data.get(post_id)

    async def find_one(self) -> BlogPost | None:
        return next(iter(self._data.values()), None)

    async def find_all(self) -> list[BlogPost]:
        return sorted(self._data.values(), key=lambda p: p.created)

    async def update_by_id(self, post_id: str, fields: Mapping[str, Any]) -> BlogPost:
        post = self._data.get(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        updated = apply_update(post, fields)
        self._data[post_id] = updated
        return updated

    async def delete_by_id(self, post_id: str) -> None:
        self._data.pop(post_id, None)

    async def drop_all(self) -> None:
        self._data.clear()

    async def aclose(self) -> None:
        self._data.clear()


class RedisBlogPostStore:
    """Redis-backed post store.

    Each post is a JSON string under ``post:<id>``. A sorted set indexes ids
    by creation time so listing needs no key scan. Connection failures are
    raised as ``StoreUnavailableError`` and never retried here.
    """

    def __init__(self, client: Redis) -> None:
        self._client: Redis = client

    def _key(self, post_id: str) -> str:
        return f"{_POST_PREFIX}{post_id}"

    async def ping(self) -> None:
        async with self._guard("ping"):
            await self._client.ping()

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            log.warning("redis_store_unreachable", op=operation)
            raise StoreUnavailableError(operation) from exc

    async def insert(self, doc: NewPost) -> BlogPost:
        post = new_post(doc)
        async with self._guard("insert"), self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._key(post.id), post.model_dump_json(by_alias=True))
            pipe.zadd(_INDEX_KEY, {post.id: post.created.timestamp()})
            await pipe.execute()
        return post

    async def insert_many(self, docs: Iterable[NewPost]) -> list[BlogPost]:
        posts = [new_post(doc) for doc in docs]
        if not posts:
            return []
        async with self._guard("insert_many"), self._client.pipeline(transaction=True) as pipe:
            for post in posts:
                pipe.set(self._key(post.id), post.model_dump_json(by_alias=True))
            pipe.zadd(_INDEX_KEY, {p.id: p.created.timestamp() for p in posts})
            await pipe.execute()
        return posts

    async def find_by_id(self, post_id: str) -> BlogPost | None:
        async with self._guard("find_by_id"):
            val = await self._client.get(self._key(post_id))
        if val is None:
            return None
        return BlogPost.model_validate_json(val)

    async def find_one(self) -> BlogPost | None:
        async with self._guard("find_one"):
            ids = await self._client.zrange(_INDEX_KEY, 0, 0)
        if not ids:
            return None
        return await self.find_by_id(_decode(ids[0]))

    async def find_all(self) -> list[BlogPost]:
        async with self._guard("find_all"):
            ids = await self._client.zrange(_INDEX_KEY, 0, -1)
            if not ids:
                return []
            values = await self._client.mget([self._key(_decode(i)) for i in ids])
        # Entries deleted between the two reads come back as None
        return [BlogPost.model_validate_json(v) for v in values if v is not None]

    async def update_by_id(self, post_id: str, fields: Mapping[str, Any]) -> BlogPost:
        """Read, modify and write the post under WATCH.

        A concurrent write or delete of the same post aborts the transaction
        and the update is retried against the fresh document.
        """
        key = self._key(post_id)
        async with self._guard("update_by_id"), self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    val = await pipe.get(key)
                    if val is None:
                        raise PostNotFoundError(post_id)
                    updated = apply_update(BlogPost.model_validate_json(val), fields)
                    pipe.multi()
                    pipe.set(key, updated.model_dump_json(by_alias=True))
                    await pipe.execute()
                    return updated
                except WatchError:
                    await log.adebug("post_update_conflict", post_id=post_id)

    async def delete_by_id(self, post_id: str) -> None:
        async with self._guard("delete_by_id"), self._client.pipeline(transaction=True) as pipe:
            pipe.delete(self._key(post_id))
            pipe.zrem(_INDEX_KEY, post_id)
            await pipe.execute()

    async def drop_all(self) -> None:
        async with self._guard("drop_all"):
            batch: list[str | bytes] = [_INDEX_KEY]
            async for key in self._client.scan_iter(match=f"{_POST_PREFIX}*"):
                batch.append(key)
                if len(batch) >= _DROP_BATCH:
                    await self._client.delete(*batch)
                    batch = []
            if batch:
                await self._client.delete(*batch)

    async def aclose(self) -> None:
        """Close the underlying Redis connection."""
        await self._client.aclose()


def _decode(val: str | bytes) -> str:
    return val.decode() if isinstance(val, bytes) else str(val)


def create_store(backend: str, database_url: str | None = None) -> BlogPostStore:
    """Factory: create a BlogPostStore for the given backend."""
    if backend == "redis":
        import redis.asyncio as aioredis

        if not database_url:
            msg = "database_url is required when backend='redis'"
            raise ValueError(msg)
        return RedisBlogPostStore(aioredis.from_url(database_url))
    return MemoryBlogPostStore()
