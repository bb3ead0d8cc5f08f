"""FastAPI application entry point for mediabot."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_database
from .routers import scan_router, rename_router, undo_router, settings_router, metadata_router
from .routers.rename import close_session

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting mediabot...")
    init_database()
    logger.info("Database initialized")

    yield

    # Shutdown
    await close_session()
    logger.info("Shutting down mediabot...")


# Create FastAPI application
app = FastAPI(
    title="MediaBot",
    description="Identify, rename and organize movie and TV files",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(scan_router)
app.include_router(rename_router)
app.include_router(undo_router)
app.include_router(settings_router)
app.include_router(metadata_router)


@app.get("/")
async def root():
    return {
        "message": "MediaBot API",
        "docs": "/docs",
        "version": "0.1.0",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mediabot.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
