"""Main FastAPI application for the smart email engine."""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from smart_email.api import router
from smart_email.config import settings
from smart_email.db import init_db
from smart_email.errors import SmartEmailError
from smart_email.services import get_cleanup_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting smart email engine...")
    init_db()
    cleanup_task = asyncio.create_task(get_cleanup_service().run_forever())
    logger.info("All systems ready")

    yield

    # Shutdown
    logger.info("Shutting down...")
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    logger.info("Shutdown complete")


app = FastAPI(
    title="Smart Email Engine",
    description="Conversational orchestration for personalized donor email instructions",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SmartEmailError)
async def smart_email_error_handler(request: Request, exc: SmartEmailError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


# Include API routes
app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Smart Email Engine",
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "smart_email.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
