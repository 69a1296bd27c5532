"""
CoopBus API entrypoint.

Run with: uvicorn coopbus.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config_loader import get_settings
from .db import init_db
from .routers import (
    asientos,
    auth,
    cooperativas,
    fleet,
    frecuencias,
    generacion,
    reservas,
    rotacion,
    rutas,
    tracking,
    viajes,
)

settings = get_settings()
app_cfg = settings.get("app", {})

logging.basicConfig(
    level=app_cfg.get("log_level", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database tables ready")
    yield


app = FastAPI(
    title=app_cfg.get("title", "CoopBus API"),
    description="Frequencies, trips, bookings and tracking for bus cooperatives",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_cfg.get("cors_origins", []),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth, cooperativas, fleet, asientos, frecuencias, generacion, rotacion, viajes, reservas, tracking, rutas):
    app.include_router(module.router, prefix="/api")


@app.get("/")
def root():
    return {"status": "ok", "service": app.title, "version": __version__}
