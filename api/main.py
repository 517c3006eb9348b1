"""
FastAPI Application — queue REST API + Server-Sent Events stream.

Provides:
- POST /queue    producers submit content
- GET  /pending  long-poll consumers take the oldest item (204 when empty)
- GET  /stream   SSE consumers get items pushed as they arrive
- GET  /peek     ordered, capped, non-destructive view of the queue
- GET  /health   liveness, the only route without auth
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Any

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import require_token
from api.stream import SSE_HEADERS, StreamSession
from config.settings import Settings, get_settings
from database.store_base import BaseItemStore, StoreError
from database.store_factory import create_store
from models.schemas import PeekResponse, QueueItem, QueueSubmission

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Dependencies
# ──────────────────────────────────────────────────────────────

def get_store(request: Request) -> BaseItemStore:
    return request.app.state.store


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid submission"
    first = errors[0]
    field = first["loc"][0] if first.get("loc") else ""
    if field == "content":
        return "content required"
    return f"{field}: {first['msg']}"


# ──────────────────────────────────────────────────────────────
#  Error rendering: every error body is {"error": message}
# ──────────────────────────────────────────────────────────────

async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "invalid request"}, status_code=400)


async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("store_error", path=request.url.path, error=str(exc))
    return JSONResponse({"error": str(exc)}, status_code=500)


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(settings: Settings = None, store: BaseItemStore = None) -> FastAPI:
    """Build the app around exactly one store instance."""
    settings = settings or get_settings()
    store = store or create_store(settings.store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.connect()
        if not settings.auth.token:
            logger.warning("auth_token_missing",
                           detail="no secret configured, every guarded request will be rejected")
        logger.info("thymer_queue_started",
                    store_backend=type(store).__name__,
                    queued=await store.count())
        yield
        await store.close()
        logger.info("thymer_queue_stopped")

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Ordered, authenticated delivery queue for Thymer content",
        version="1.0.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(StoreError, _store_error)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # ══════════════════════════════════════════════════════════
    #  PRODUCER
    # ══════════════════════════════════════════════════════════

    @app.post("/queue", dependencies=[Depends(require_token)])
    async def enqueue(request: Request, store: BaseItemStore = Depends(get_store)):
        # Body parsed by hand so auth is always checked first
        try:
            raw = await request.json()
        except ValueError:
            raise HTTPException(400, "invalid JSON body")
        if not isinstance(raw, dict):
            raise HTTPException(400, "body must be a JSON object")

        try:
            submission = QueueSubmission.model_validate(raw)
        except ValidationError as e:
            raise HTTPException(400, _validation_message(e))

        item = QueueItem.from_submission(submission)
        await store.insert(item)
        logger.info("item_queued",
                    item_id=item.id,
                    action=item.action.value,
                    bytes=len(item.content.encode()))
        return {"success": True, "id": item.id}

    # ══════════════════════════════════════════════════════════
    #  CONSUMERS
    # ══════════════════════════════════════════════════════════

    @app.get("/pending", dependencies=[Depends(require_token)])
    async def pending(store: BaseItemStore = Depends(get_store)):
        item = await store.pop_oldest()
        if item is None:
            return Response(status_code=204)
        # Removed already; a failed write below loses the item (at-most-once)
        logger.info("item_delivered", item_id=item.id, transport="poll")
        return JSONResponse(item.to_wire())

    @app.get("/stream", dependencies=[Depends(require_token)])
    async def stream(request: Request, store: BaseItemStore = Depends(get_store)):
        cfg = request.app.state.settings.stream
        session = StreamSession(
            store,
            request.is_disconnected,
            poll_interval=cfg.poll_interval,
            session_timeout=cfg.session_timeout,
        )
        return StreamingResponse(
            session.events(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    # ══════════════════════════════════════════════════════════
    #  DIAGNOSTICS
    # ══════════════════════════════════════════════════════════

    @app.get("/peek", dependencies=[Depends(require_token)])
    async def peek(request: Request, store: BaseItemStore = Depends(get_store)) -> dict[str, Any]:
        limit = request.app.state.settings.peek_limit
        count = await store.count()
        items = await store.list(limit=limit)
        return PeekResponse(
            count=count,
            items=[item.to_wire() for item in items],
        ).model_dump()


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

def run():
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
