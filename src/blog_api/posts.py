"""HTTP endpoints for the /posts resource."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from blog_api.metrics import posts_written_total
from blog_api.models import PostCreate, PostResponse, PostUpdate
from blog_api.store import BlogPostStore, PostNotFoundError

log = structlog.get_logger()

router = APIRouter(prefix="/posts", tags=["posts"])


def get_store(request: Request) -> BlogPostStore:
    """FastAPI dependency: the store attached by ``run_server``."""
    store: BlogPostStore = request.app.state.store
    return store


@router.get("", response_model=list[PostResponse])
async def list_posts(store: BlogPostStore = Depends(get_store)) -> list[PostResponse]:
    return [PostResponse.from_post(p) for p in await store.find_all()]


@router.get("/{post_id}", response_model=PostResponse)
async def read_post(post_id: str, store: BlogPostStore = Depends(get_store)) -> PostResponse:
    post = await store.find_by_id(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return PostResponse.from_post(post)


@router.post("", status_code=201, response_model=PostResponse)
async def create_post(
    body: PostCreate, store: BlogPostStore = Depends(get_store)
) -> PostResponse:
    post = await store.insert(body)
    posts_written_total.add(1, {"operation": "create"})
    await log.ainfo("post_created", post_id=post.id)
    return PostResponse.from_post(post)


@router.put("/{post_id}", status_code=204)
async def update_post(
    post_id: str, body: PostUpdate, store: BlogPostStore = Depends(get_store)
) -> Response:
    if body.id != post_id:
        detail = f"Request path id ({post_id}) and request body id ({body.id}) must match"
        await log.awarning("post_update_id_mismatch", path_id=post_id, body_id=body.id)
        raise HTTPException(status_code=400, detail=detail)
    changes = body.changes()
    try:
        await store.update_by_id(post_id, changes)
    except PostNotFoundError:
        raise HTTPException(status_code=404, detail="Post not found") from None
    posts_written_total.add(1, {"operation": "update"})
    await log.ainfo("post_updated", post_id=post_id, fields=sorted(changes))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{post_id}", status_code=204)
async def delete_post(post_id: str, store: BlogPostStore = Depends(get_store)) -> Response:
    await store.delete_by_id(post_id)
    posts_written_total.add(1, {"operation": "delete"})
    await log.ainfo("post_deleted", post_id=post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
