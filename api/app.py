"""
FastAPI application for the call orchestrator.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import router
from config import settings
from observability import trace_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup/shutdown."""
    # Startup
    trace_logger.info("Starting Call Orchestrator API")
    settings.validate_api_keys()

    yield

    # Shutdown
    trace_logger.info("Shutting down Call Orchestrator API")


app = FastAPI(
    title="Call Orchestrator",
    description="Multi-persona assistant that researches issues and places calls on the user's behalf",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routes
app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Call Orchestrator",
        "version": "1.0.0",
        "status": "operational"
    }
