import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from rewards.api import router as api_router
from rewards.core.config import Settings, settings as default_settings
from rewards.core.log_config import configure_logging
from rewards.db.session import SessionLocal
from rewards.repository import RewardRepository, SqlRewardRepository
from rewards.services.namada_client import ChainClient, namada_client
from rewards.workers.rewards_crawler import RewardsCrawler

logger = logging.getLogger(__name__)


def _log_crawler_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Rewards crawler exited with a fatal error", exc_info=exc)


def create_app(
    settings: Settings | None = None,
    repository: RewardRepository | None = None,
    client: ChainClient | None = None,
) -> FastAPI:
    settings = settings or default_settings
    repository = repository or SqlRewardRepository(
        SessionLocal, name=settings.crawler_name, start_epoch=settings.start_epoch
    )
    client = client or namada_client

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        crawler: RewardsCrawler | None = None
        task: asyncio.Task | None = None
        if settings.enable_crawler:
            crawler = RewardsCrawler(
                client,
                repository,
                poll_interval=settings.sleep_for,
                backfill_from=settings.backfill_from,
                backfill_to=settings.backfill_to,
            )
            task = asyncio.create_task(crawler.run_forever())
            task.add_done_callback(_log_crawler_exit)
        app.state.crawler = crawler

        yield

        if crawler is not None:
            crawler.stop()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    configure_logging(settings.log_level)
    application = FastAPI(title="Rewards Crawler", lifespan=lifespan)
    application.state.repository = repository
    application.state.crawler = None
    application.state.crawler_name = settings.crawler_name
    application.include_router(api_router, prefix="/api/v1")

    @application.get("/health")
    async def health():
        return {"status": "ok"}

    return application


app = create_app()


def serve() -> None:  # pragma: no cover - process entrypoint
    uvicorn.run(app, host="0.0.0.0", port=default_settings.app_port)
