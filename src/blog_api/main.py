"""FastAPI application entrypoint."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from blog_api.config import Settings
from blog_api.metrics import store_errors_total
from blog_api.posts import router as posts_router
from blog_api.store import BlogPostStore, StoreUnavailableError, create_store
from blog_api.telemetry import (
    add_trace_context,
    configure_stdlib_logging,
    emit_to_otel_logs,
    init_telemetry,
    shutdown_telemetry,
)

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_trace_context,  # type: ignore[list-item]
        emit_to_otel_logs,  # type: ignore[list-item]
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(),
    ],
)

log = structlog.get_logger()


async def run_server(app: FastAPI, store: BlogPostStore) -> None:
    """Attach an opened store to *app*. Fails fast if the database is unreachable."""
    await store.ping()
    app.state.store = store
    await log.ainfo("store_opened", store=type(store).__name__)


async def close_server(app: FastAPI) -> None:
    """Close and detach the store attached by ``run_server``."""
    store: BlogPostStore | None = getattr(app.state, "store", None)
    if store is None:
        return
    del app.state.store
    await store.aclose()
    await log.ainfo("store_closed", store=type(store).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_telemetry()
    settings = Settings()
    configure_stdlib_logging(settings.log_level)
    app.state.settings = settings

    store = create_store(settings.store_backend, settings.database_url)
    try:
        await run_server(app, store)
    except Exception:
        await log.aexception("startup_failed", store_backend=settings.store_backend)
        await store.aclose()
        shutdown_telemetry()
        raise
    await log.ainfo("service started", store_backend=settings.store_backend)
    yield

    try:
        await close_server(app)
    except Exception:
        await log.aexception("store_close_failed")
    await log.ainfo("service stopped")
    shutdown_telemetry()


app = FastAPI(title="Blog Post API", lifespan=lifespan)
app.include_router(posts_router)
FastAPIInstrumentor.instrument_app(app)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    store_errors_total.add(1, {"operation": exc.operation})
    await log.aerror("store_unavailable", operation=exc.operation, path=request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Post store unavailable"})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    _settings = Settings()
    uvicorn.run(app, host=_settings.host, port=_settings.port, log_level=_settings.log_level)
