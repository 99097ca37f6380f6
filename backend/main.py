"""
ForestLink - Forest threat reporting, ranger dispatch and community alerts
"""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers import incidents, rangers, subscribers, webhooks, satellite, settings
from database import init_db

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("forestlink")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("ForestLink starting up...")
    init_db()
    yield
    # Shutdown
    logger.info("ForestLink shutting down...")

app = FastAPI(
    title="ForestLink API",
    description="Forest threat reporting, ranger dispatch and community alerts",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(incidents.router, prefix="/api/incidents", tags=["Incidents"])
app.include_router(rangers.router, prefix="/api/rangers", tags=["Rangers"])
app.include_router(subscribers.router, prefix="/api/subscribers", tags=["Subscribers"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
app.include_router(satellite.router, prefix="/api/satellite", tags=["Satellite"])
app.include_router(settings.router, prefix="/api/settings", tags=["Settings"])

@app.get("/")
async def root():
    return {"status": "ok", "service": "ForestLink API", "version": "1.0.0"}

@app.get("/health")
async def health():
    return {"status": "healthy"}
