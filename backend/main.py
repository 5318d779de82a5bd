"""FastAPI application entry point.

Run with ``uvicorn main:app`` or ``python -m main``.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from api import sync
from config import settings
from database import init_db
from logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing mirror tables before serving requests."""
    try:
        init_db()
    except Exception:
        logger.error("Database initialization failed on startup", exc_info=True)
        raise
    logger.info("Ledger mirror ready (environment=%s, plaid=%s)", settings.ENVIRONMENT, settings.PLAID_ENVIRONMENT)
    yield


app = FastAPI(
    title="Ledger Mirror",
    description="Local mirror of bank and brokerage data synced from Plaid",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(sync.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=settings.DEBUG)
