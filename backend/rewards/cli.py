from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from pydantic import ValidationError

from rewards.core.config import Settings
from rewards.core.errors import CrawlerError
from rewards.core.log_config import configure_logging
from rewards.db.session import build_engine, build_session_factory
from rewards.repository import SqlRewardRepository
from rewards.services.namada_client import NamadaClient
from rewards.workers.rewards_crawler import RewardsCrawler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl MASP reward parameters from a node into the database.")
    parser.add_argument("--tendermint-url", help="Node RPC endpoint (env TENDERMINT_URL)")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (env DATABASE_URL)")
    parser.add_argument("--sleep-for", type=int, help="Seconds between polls once caught up (default: 60)")
    parser.add_argument(
        "--backfill-from",
        type=int,
        help="Crawl from given epoch and do not update crawler_state",
    )
    parser.add_argument("--backfill-to", type=int, help="Last epoch to backfill (default: latest epoch)")
    parser.add_argument("--start-epoch", type=int, help="First epoch to crawl when no cursor is stored")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create the tables before crawling (local SQLite; use alembic elsewhere)",
    )
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "tendermint_url": args.tendermint_url,
        "DATABASE_URL": args.database_url,
        "sleep_for": args.sleep_for,
        "backfill_from": args.backfill_from,
        "backfill_to": args.backfill_to,
        "start_epoch": args.start_epoch,
        "log_level": args.log_level,
    }
    return Settings(**{key: value for key, value in overrides.items() if value is not None})


async def _run(crawler: RewardsCrawler):
    loop = asyncio.get_running_loop()
    for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
        if sig is not None:
            try:
                loop.add_signal_handler(sig, crawler.stop)
            except NotImplementedError:
                # Windows may not support signal handlers
                pass
    return await crawler.run_forever()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args)
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    try:
        configure_logging(settings.log_level)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    engine = build_engine(settings.database_url)
    repository = SqlRewardRepository(
        build_session_factory(engine), name=settings.crawler_name, start_epoch=settings.start_epoch
    )
    if args.create_schema:
        repository.create_schema()

    crawler = RewardsCrawler(
        NamadaClient(base_url=settings.tendermint_url, timeout=settings.node_timeout),
        repository,
        poll_interval=settings.sleep_for,
        backfill_from=settings.backfill_from,
        backfill_to=settings.backfill_to,
    )
    try:
        report = asyncio.run(_run(crawler))
    except CrawlerError:
        logger.exception("Rewards crawler aborted")
        return 1
    finally:
        engine.dispose()

    if report is not None and not report.ok:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
