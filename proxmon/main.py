# proxmon/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from proxmon.collector.poller import Collector
from proxmon.config.config import get_settings
from proxmon.models.models import PollTarget
from proxmon.proxmox.client import close_client, init_client
from proxmon.routers import proxmox
from proxmon.storage.sqlite import close_store, init_store

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Kept so the poller can be stopped on shutdown
collector = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global collector
    settings = get_settings()
    logger.info("Server starting up...")

    store = init_store(settings.storage.path)
    client = init_client(settings.proxmox)

    # --- START BACKGROUND POLLING ---
    collector = Collector(client, store)
    collector.start(PollTarget(
        node=settings.proxmox.default_node,
        vmid=settings.proxmox.default_vmid,
        interval_seconds=settings.proxmox.poll_interval_seconds,
    ))

    yield  # Application runs here

    # --- SHUTDOWN ---
    logger.info("Server shutting down...")
    if collector:
        collector.stop()
        collector = None
    close_client()
    close_store()

app = FastAPI(
    title="proxmon",
    description="Proxmox guest telemetry collection and chart series API.",
    version="0.1.0",
    lifespan=lifespan
)

# --- Include Routers ---
app.include_router(proxmox.router, prefix="/api")

@app.get("/")
async def root():
    return {"message": "proxmon is running."}

@app.get("/health")
async def health_check():
    """Health check endpoint for deployment services"""
    return {
        "status": "healthy",
        "service": "proxmon",
        "polling": bool(collector and collector.is_running),
    }
