"""
CRM automation service.

Hosts the automation engine (event dispatch, cron schedules, recorded runs)
behind a small FastAPI app exposing run history and manual triggering.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.config import Settings
from core.logging import configure_logging, get_logger
from routers import automation_runs

settings = Settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Database first, then the engine; torn down in reverse."""
    database = container.database()
    engine = container.automation_engine()

    await database.startup()
    await engine.start()
    logger.info("Automation service ready",
                scheduled_rules=len(engine.triggers.get_schedules()),
                concurrency=settings.automation_concurrency)
    yield

    await engine.stop()
    await database.shutdown()
    logger.info("Automation service stopped")


app = FastAPI(
    title="CRM Automation",
    version="1.0.0",
    description="Rule-driven workflow automation for the CRM",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """Last-resort JSON 500 for errors no route handled."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path,
                         error_type=type(e).__name__, error=str(e), exc_info=True)
            return ORJSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": f"{type(e).__name__}: {e}", "detail": "Internal server error"}
            )


app.add_middleware(UnhandledErrorMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(automation_runs.router)


@app.get("/health")
async def health_check():
    engine = container.automation_engine()
    return {
        "status": "OK" if engine.started else "STARTING",
        "service": "automation",
        "engine_started": engine.started,
        "scheduled_rules": [s.to_dict() for s in engine.triggers.get_schedules()],
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
