"""
Document Collection & Processing API
FastAPI application entry point
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docintake.api import alerts, checklist, documents, sessions, tax_forms
from docintake.core.config import settings
from docintake.core.database import Base, engine
from docintake.core.exceptions import DocIntakeError
from docintake.core.logging import configure_logging
# Import models to ensure they're registered with Base.metadata
from docintake import models  # noqa: F401
from docintake.services.processing_orchestrator import get_orchestrator

logger = logging.getLogger(__name__)


# Create database tables
async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Document collection checklists, OCR/analysis processing and tax form auto-fill",
    version=settings.VERSION,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DocIntakeError)
async def docintake_error_handler(request: Request, exc: DocIntakeError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Include routers
app.include_router(documents.router, tags=["documents"])
app.include_router(checklist.router, tags=["checklist"])
app.include_router(sessions.router, tags=["sessions"])
app.include_router(alerts.router, tags=["alerts"])
app.include_router(tax_forms.router, tags=["tax-forms"])


@app.on_event("startup")
async def startup_event():
    """Configure logging and initialize database on startup"""
    configure_logging(settings.LOG_LEVEL)
    await init_db()
    logger.info("%s %s started (provider backend: %s)",
                settings.PROJECT_NAME, settings.VERSION, settings.PROVIDER_BACKEND)


@app.on_event("shutdown")
async def shutdown_event():
    """Let background processing runs finish before the engine goes away"""
    await get_orchestrator().drain()
    await engine.dispose()


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION
    }


@app.get("/health")
async def health():
    """Detailed health check"""
    return {
        "status": "healthy",
        "database": "connected",
        "provider_backend": settings.PROVIDER_BACKEND
    }
