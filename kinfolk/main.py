import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from .database import init_db, async_session_maker
from .routers import people, relationships
from .services.engine import RelationshipEngine
from .services.exceptions import KinfolkError
from .settings.config import settings

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)


def create_app(session_maker: Optional[async_sessionmaker] = None) -> FastAPI:
    app = FastAPI(title="Kinfolk")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Update for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ----------------------
    # Route Includes
    # ----------------------
    app.include_router(people.router)
    app.include_router(relationships.router)

    # One engine per process: its lock is the single-writer section for fact mutations
    engine = RelationshipEngine(session_maker or async_session_maker)
    engine.reconciler.add_listener(
        lambda n: logger.debug("derived relationship set replaced (%s rows)", n)
    )
    app.state.relationship_engine = engine

    # -----------------------------------------------------
    # Engine errors -> JSON. 5xx bodies stay generic and retryable.
    # -----------------------------------------------------
    @app.exception_handler(KinfolkError)
    async def _kinfolk_error_handler(request: Request, exc: KinfolkError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc.original_error)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.on_event("startup")
    async def on_startup():
        from . import models  # noqa: F401  Required for SQLAlchemy model detection
        if session_maker is None:
            await init_db()

    @app.get("/healthz")
    async def healthz():
        err = engine.last_background_error
        return {"ok": True, "recompute_error": type(err).__name__ if err else None}

    return app


app = create_app()
