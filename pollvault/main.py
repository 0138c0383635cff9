"""
pollvault/main.py
FastAPI application: routers, error contract, rate limiting and the
optional background status sweep.
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from pollvault import __version__
from pollvault.config.feature_flags import feature_flags
from pollvault.core.rate_limit import limiter
from pollvault.database import AsyncSessionLocal, close_db, init_db
from pollvault.errors import register_exception_handlers
from pollvault.routes import router
from pollvault.tasks.status_reconciler import start_reconcile_task

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    try:
        await init_db()
        logger.info("Database connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {str(e)}")
        raise

    reconcile_task = None
    if feature_flags.FEATURE_AUTO_RECONCILE:
        reconcile_task = start_reconcile_task(AsyncSessionLocal, feature_flags.RECONCILE_INTERVAL_SECONDS)

    yield

    logger.info("Shutting down application...")
    if reconcile_task is not None:
        reconcile_task.cancel()
        try:
            await reconcile_task
        except asyncio.CancelledError:
            pass
    try:
        await close_db()
    except Exception as e:
        logger.error(f"Error closing database connection: {str(e)}")


def create_app() -> FastAPI:
    app = FastAPI(
        title="pollvault",
        description="Hackathon voting core: lifecycle, ballots, tallies and integrity commitments",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    origins = [o for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "flags": feature_flags.get_all_flags(),
        }

    app.include_router(router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))

    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run("pollvault.main:app", host=host, port=port, log_level="info")
