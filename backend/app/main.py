"""FastAPI application entry point.

This module hosts the settlement scheduler: on startup it creates the
database tables and launches the periodic task that settles due
subscriptions, credit installments and recurring transactions.  The REST
resources of the product are served elsewhere; this app only reports that
the scheduler is alive.
"""

import os
import logging
import asyncio
import contextlib
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.database import create_db_and_tables, async_session
from app.scheduler import run_periodically, SCHEDULER_INTERVAL_SECONDS

# Basic logging configuration.  The log level can be controlled with an
# environment variable so deployments can adjust verbosity without code
# changes.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

app = FastAPI(title="MoneyStack scheduler")


@app.on_event("startup")
async def on_startup():
    """Initialize the database and kick off the scheduler."""

    await create_db_and_tables()
    app.state.scheduler_task = asyncio.create_task(
        run_periodically(async_session, SCHEDULER_INTERVAL_SECONDS)
    )


@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "scheduler_task", None)
    if task:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Scheduler stopped")


@app.get("/")
async def read_root():
    return {"message": "MoneyStack scheduler running"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "code": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
