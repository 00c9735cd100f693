import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from voc_tracker.api.deps import get_tracker
from voc_tracker.api.routers import catalog, emissions, usage
from voc_tracker.config import configure_logging, settings
from voc_tracker.errors import ConfigurationError, UpstreamUnavailable, ValidationError, VocTrackerError
from voc_tracker.services.tracker import EmissionsTracker

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    ConfigurationError: 500,
    UpstreamUnavailable: 503,
}


def create_app(tracker: EmissionsTracker | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if app.state.tracker is None:
            app.state.tracker = EmissionsTracker.from_settings(settings)
        await app.state.tracker.refresh()
        try:
            yield
        finally:
            await app.state.tracker.source.aclose()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.tracker = tracker

    @app.exception_handler(VocTrackerError)
    async def tracker_error_handler(request: Request, exc: VocTrackerError):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        if status >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.ENV}

    @app.get("/status")
    async def status(t: EmissionsTracker = Depends(get_tracker)):
        return t.status()

    @app.post("/status/refresh")
    async def refresh(t: EmissionsTracker = Depends(get_tracker)):
        ok = await t.refresh()
        return {"refreshed": ok, **t.status()}

    app.include_router(emissions.router, prefix="/emissions", tags=["Emissions"])
    app.include_router(catalog.router, prefix="/catalog", tags=["Catalog"])
    app.include_router(usage.router, prefix="/usage", tags=["Usage"])
    return app


app = create_app()
