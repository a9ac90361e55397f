#!/usr/bin/env python3
"""
GitHub PR Review Bot
Webhook server entry point
"""

import asyncio
from typing import Optional

import uvicorn
from fastapi import FastAPI
import structlog

from src.api.webhooks import router as webhook_router
from src.api.health import router as health_router
from src.api.jobs import router as jobs_router
from src.services.event_classifier import EventClassifier
from src.services.job_processor import build_job_processor
from src.services.job_queue import JobQueue, build_job_queue
from src.utils.logging_config import configure_logging
from config.settings import settings

logger = structlog.get_logger()


def create_app(
    job_queue: Optional[JobQueue] = None,
    event_classifier: Optional[EventClassifier] = None,
    run_worker: bool = False,
) -> FastAPI:
    """
    Build the web application around an explicitly constructed queue.

    With ``run_worker`` the queue is also drained inside this process;
    otherwise jobs are left to a separate ``worker.py`` process.
    """
    app = FastAPI(
        title="GitHub PR Review Bot",
        description="Turns GitHub pull request events into AI review jobs",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.job_queue = job_queue or build_job_queue(settings)
    app.state.event_classifier = event_classifier or EventClassifier(
        bot_username=settings.BOT_USERNAME,
        bot_marker=settings.BOT_COMMENT_MARKER,
    )
    app.state.drain_task = None

    # Include routers
    app.include_router(health_router, prefix="/health", tags=["health"])
    app.include_router(webhook_router, prefix="/webhook", tags=["webhooks"])
    app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])

    @app.get("/", tags=["root"])
    async def root():
        """Welcome endpoint"""
        return {
            "message": "GitHub PR Review Bot is running",
            "version": "1.0.0",
            "webhook": "/webhook",
            "health": "/health",
        }

    @app.on_event("startup")
    async def startup_event():
        """Open the queue and optionally start draining it"""
        queue: JobQueue = app.state.job_queue
        await queue.open()

        if run_worker:
            build_job_processor(settings).register_handlers(queue)
            app.state.drain_task = asyncio.create_task(queue.drain())

        logger.info(
            "Starting GitHub PR Review Bot",
            host=settings.HOST,
            port=settings.PORT,
            queue=queue.queue_name,
            worker_in_process=run_worker,
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the in-process worker and release the queue"""
        queue: JobQueue = app.state.job_queue
        if app.state.drain_task is not None:
            queue.stop()
            await app.state.drain_task
            app.state.drain_task = None
        await queue.close()
        logger.info("Shutting down GitHub PR Review Bot")

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app(run_worker=settings.drains_in_process)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=False,
        log_level=settings.LOG_LEVEL.lower(),
    )
