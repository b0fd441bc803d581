from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from .api.oauth import router as oauth_router
from .auth.errors import BreachLookupFailure
from .breaches import BreachClient
from .db import create_engine_from_url, create_session_factory, init_models
from .logging_config import configure_logging
from .middleware import RequestIDMiddleware, register_error_handlers
from .pilot_list import PilotListChecker
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_engine_from_url(settings.DATABASE_URL)
        await init_models(engine)
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
        app.state.pilot_checker = PilotListChecker(settings.PILOT_HASH_FILE or None)
        app.state.breaches = []
        if settings.LOAD_BREACHES_ON_STARTUP:
            try:
                app.state.breaches = await BreachClient(settings).load_breaches()
            except BreachLookupFailure as exc:
                # Reports sent before the catalog loads list no breaches
                logger.error("Breach catalog unavailable at startup", extra={"meta": {"reason": exc.reason}})
        try:
            yield
        finally:
            await engine.dispose()

    return lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """Composition root for the FastAPI application."""
    settings = settings or get_settings()
    app = FastAPI(title="breachwatch", lifespan=_lifespan(settings))
    app.state.settings = settings

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET,
        session_cookie=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_MAX_AGE,
        same_site="lax",
        https_only=settings.SESSION_HTTPS_ONLY,
    )
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(oauth_router)

    @app.get("/healthz", include_in_schema=False)
    async def healthz():
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 6060))
    uvicorn.run(create_app(), host=host, port=port)
