import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .apps.api import router
from .config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _pump_session(interval: float) -> None:
    """Apply finished git work and start queued work, forever."""
    while True:
        session = router._staging_session
        if session is not None:
            try:
                session.tick()
            except Exception:
                logger.exception("Session tick failed")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pump = asyncio.create_task(_pump_session(settings.TICK_INTERVAL_SECONDS))
    try:
        yield
    finally:
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        router.close_staging_session()


app = FastAPI(
    title="QuickStage API",
    version="0.1.0",
    description="Selection-scoped git staging, unstaging and committing for a project folder",
    lifespan=lifespan,
)

app.include_router(router.router, prefix="/api")


@app.get("/health")
async def health_check():
    """
    Simple health check endpoint to confirm the API is running.
    """
    return {"status": "ok"}
