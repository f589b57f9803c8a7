"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from issue_engine.config import settings
from issue_engine.detection.scheduler import get_detection_scheduler
from issue_engine.issues import routes as issue_routes

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background issue detection with the app and stop it on shutdown."""
    if settings.ENABLE_ISSUE_DETECTION:
        get_detection_scheduler().start(interval_minutes=settings.DETECTION_INTERVAL_MINUTES)
    else:
        logger.info("Issue detection scheduler disabled (ENABLE_ISSUE_DETECTION=false)")
    yield
    # The scheduler can also be started over HTTP, so always shut it down
    await get_detection_scheduler().shutdown()


# Create FastAPI app
app = FastAPI(
    title="Issue Engine API",
    description="Operational issue detection and remediation recommendations",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(issue_routes.router, prefix=f"{settings.API_V1_PREFIX}/issues", tags=["Issues"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Issue Engine API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "issue_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
