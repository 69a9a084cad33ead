"""
Main FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import router
from .core import Settings, settings as default_settings
from .services import UploadSessionController

# Configure logging
logging.basicConfig(
    level=getattr(logging, default_settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app around one settings object (one storage root)"""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown"""
        logger.info("🚀 Starting Upload Server...")

        controller = UploadSessionController.from_settings(settings)
        settings.COMPLETE_DIR.mkdir(parents=True, exist_ok=True)
        logger.info(f"✅ Storage ready at {settings.UPLOAD_DIR}")

        controller.hash_index.import_legacy(settings.LEGACY_HASH_FILE)
        sessions = controller.recover_sessions()
        logger.info(f"♻️  {len(sessions)} in-flight session(s) recovered")
        controller.sweep_abandoned()

        app.state.controller = controller
        logger.info(f"🌐 Server ready at http://{settings.SERVER_HOST}:{settings.SERVER_PORT}")

        yield

        logger.info("🛑 Shutting down Upload Server...")
        controller.hash_index.engine.dispose()

    app = FastAPI(
        title=settings.APP_TITLE,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception(f"❌ Error processing {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Server error"})

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": settings.APP_TITLE,
            "version": settings.APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "health": "/health"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=default_settings.SERVER_HOST,
        port=default_settings.SERVER_PORT,
        log_level=default_settings.LOG_LEVEL.lower()
    )
