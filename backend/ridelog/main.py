"""
Ride Telemetry - FastAPI Backend

Application factory wiring: logging, repository start-up and routers.
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ridelog.api.sessions import folder_router, router as sessions_router
from ridelog.services.export import to_jsonable
from ridelog.services.repository import get_repository, init_repository


logging.basicConfig(
    level=logging.DEBUG if os.getenv("RIDELOG_DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# Used when neither the API nor RIDELOG_DATA_FOLDER names a folder
DEFAULT_DATA_FOLDER = Path("./data/sessions")
DATA_FOLDER_ENV = "RIDELOG_DATA_FOLDER"

APP_NAME = "Ride Telemetry"
APP_VERSION = "0.1.0"

DESCRIPTION = """
Backend API for motorcycle ride log analysis.

## Pipeline
Each session log is parsed, calibrated, filtered and turned into lean angle,
g-force, velocity and orientation series, then split into riding / pause /
stop segments with maneuver events and ride statistics.

## Usage
1. Point the server at a folder of logs with POST /folder
2. Browse sessions with GET /sessions
3. Drill into GET /sessions/{id}, /segments and /events
4. Pull chart series from GET /sessions/{id}/export
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    repo = get_repository()
    if repo.data_folder is None:
        data_folder = Path(os.getenv(DATA_FOLDER_ENV, str(DEFAULT_DATA_FOLDER)))
        if data_folder.is_dir():
            repo = init_repository(data_folder)
            logger.info(f"Serving {len(repo.session_ids())} session logs from {data_folder}")
        else:
            logger.info(f"No data folder at {data_folder}; set one with POST /folder")

    config = repo.config
    logger.info(
        f"{APP_NAME} {APP_VERSION} ready "
        f"(auto_calibrate={config.calibration.auto_calibrate}, "
        f"filters={'on' if config.filters.enabled else 'off'}, "
        f"timeout={config.pipeline.processing_timeout_s})"
    )
    yield
    logger.info(f"Shutting down {APP_NAME}")


app = FastAPI(
    title=APP_NAME,
    description=DESCRIPTION,
    version=APP_VERSION,
    lifespan=lifespan,
)

# The dashboard is served from a different origin during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(folder_router)


@app.get("/")
async def root():
    return {"name": APP_NAME, "version": APP_VERSION, "status": "running"}


@app.get("/health")
async def health_check():
    """Repository status: the folder being served and how many logs it holds."""
    repo = get_repository()
    return {
        "status": "healthy",
        "data_folder": str(repo.data_folder) if repo.data_folder else None,
        "session_count": len(repo.session_ids()),
    }


@app.get("/config")
async def processing_config():
    """The processing configuration applied to every session."""
    return to_jsonable(asdict(get_repository().config))
