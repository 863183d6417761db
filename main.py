"""
FastAPI application entry point with async lifespan.
"""
import logging

import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from bluecarbon.core.config import get_settings
from bluecarbon.core.database import AsyncSessionLocal, init_db, close_db
from bluecarbon.core.services import build_services
from bluecarbon.routes import admin, credits, health, ledger, projects, reports, users

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan manager for startup and shutdown."""
    # Startup
    await init_db()
    app.state.services = build_services(AsyncSessionLocal, settings)
    logger.info("%s %s started", settings.app_name, settings.app_version)
    yield
    # Shutdown: make queued audit events durable before the engine goes away
    await app.state.services.close()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Tamper-evident ledger and settlement engine for blue carbon credits",
    lifespan=lifespan
)

# CORS middleware (for Streamlit dashboard)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 without echoing rejected input; Infinity and NaN are not valid JSON."""
    errors = [{k: v for k, v in error.items() if k != "input"} for error in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content={"detail": jsonable_encoder(errors)}
    )


# Register routes
app.include_router(health.router)
app.include_router(users.router)
app.include_router(projects.router)
app.include_router(credits.router)
app.include_router(ledger.router)
app.include_router(admin.router)
app.include_router(reports.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    uvicorn.run(
        app,
        host='0.0.0.0',
        port=settings.port,
        log_level=settings.log_level.lower()
    )
