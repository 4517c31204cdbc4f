from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from rewards.core.errors import CrawlerError, DatabaseError, MalformedData, NotFound, OutOfOrder, Unavailable
from rewards.core.types import CrawlMode
from rewards.repository.base import RewardRepository, expected_next_epoch
from rewards.services.namada_client import ChainClient
from rewards.services.reward_extractor import extract

logger = logging.getLogger(__name__)


class CrawlState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    COMMITTING = "committing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


@dataclass
class BackfillReport:
    start: int
    end: int | None = None
    processed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    stopped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.stopped


class RewardsCrawler:
    """Polls the node for MASP reward parameters one epoch at a time.

    Normal mode advances the stored cursor by exactly one epoch per commit and
    runs until stopped. Backfill mode replays ``backfill_from..backfill_to``
    without reading or writing the cursor, then returns.
    """

    def __init__(
        self,
        client: ChainClient,
        repository: RewardRepository,
        poll_interval: float = 60.0,
        backfill_from: int | None = None,
        backfill_to: int | None = None,
    ) -> None:
        self.client = client
        self.repository = repository
        self.poll_interval = poll_interval
        self.backfill_from = backfill_from
        self.backfill_to = backfill_to
        self.mode = CrawlMode.BACKFILL if backfill_from is not None else CrawlMode.NORMAL
        self.state = CrawlState.IDLE
        self.last_error: str | None = None
        self._stop = threading.Event()

    async def run_forever(self) -> BackfillReport | None:
        logger.info("Rewards crawler started (mode=%s, interval=%ss)", self.mode.value, self.poll_interval)
        if self.mode is CrawlMode.BACKFILL:
            report = await asyncio.to_thread(self.run_backfill)
            self.state = CrawlState.STOPPED
            return report

        # Without a readable cursor there is no safe starting point.
        last = await asyncio.to_thread(self.repository.last_processed_epoch)
        logger.info(
            "Rewards crawler resuming at epoch %s (last processed %s)",
            expected_next_epoch(last, self.repository.start_epoch),
            last,
        )
        while not self._stop.is_set():
            started = time.perf_counter()
            try:
                should_sleep = await asyncio.to_thread(self.process_next_epoch)
            except Exception as exc:
                self.last_error = f"{type(exc).__name__}: {exc}"
                logger.exception("Rewards crawler loop error")
                should_sleep = True
            logger.debug("Rewards crawler cycle finished in %.2fs", time.perf_counter() - started)
            if should_sleep and not self._stop.is_set():
                self.state = CrawlState.SLEEPING
                await asyncio.to_thread(self._wait, self.poll_interval)
        self.state = CrawlState.STOPPED
        logger.info("Rewards crawler stopped")
        return None

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _wait(self, seconds: float) -> None:
        # Returns early once stop() is called.
        self._stop.wait(seconds)

    def _enter(self, state: CrawlState) -> bool:
        """Move to ``state`` unless a stop was requested; states change only between steps."""
        if self._stop.is_set():
            return False
        self.state = state
        return True

    def process_next_epoch(self) -> bool:
        """Run one normal-mode cycle. Returns True when the loop should sleep before the next one."""
        self.state = CrawlState.IDLE
        epoch: int | None = None
        try:
            last = self.repository.last_processed_epoch()
            epoch = expected_next_epoch(last, self.repository.start_epoch)

            if not self._enter(CrawlState.FETCHING):
                return False
            latest = self.client.latest_epoch()
            if epoch > latest:
                logger.debug("Rewards crawler caught up (next=%s latest=%s)", epoch, latest)
                return True
            raw = self.client.reward_parameters(epoch)

            if not self._enter(CrawlState.EXTRACTING):
                return False
            records = extract(raw)

            if not self._enter(CrawlState.COMMITTING):
                return False
            self.repository.commit(records, cursor_advance=epoch)
        except (Unavailable, DatabaseError) as exc:
            self._record_error(exc)
            logger.warning(
                "Rewards crawler epoch %s not processed (%s); retrying in %ss: %s",
                epoch,
                exc.kind,
                self.poll_interval,
                exc,
            )
            return True
        except NotFound as exc:
            self._record_error(exc)
            logger.error("Rewards crawler cannot fetch epoch %s from the node: %s", epoch, exc)
            return True
        except (MalformedData, OutOfOrder) as exc:
            self._record_error(exc)
            logger.error("ALERT rewards crawler %s at epoch %s, nothing committed: %s", exc.kind, epoch, exc)
            return True

        self.last_error = None
        logger.info("Rewards crawler processed epoch %s (%s tokens, latest %s)", epoch, len(records), latest)
        return epoch >= latest

    def run_backfill(self) -> BackfillReport:
        if self.backfill_from is None:
            raise ValueError("run_backfill requires backfill_from")
        report = BackfillReport(start=self.backfill_from, end=self.backfill_to)

        while report.end is None and not self._stop.is_set():
            self.state = CrawlState.FETCHING
            try:
                report.end = self.client.latest_epoch()
            except Unavailable as exc:
                self._record_error(exc)
                logger.warning("Backfill cannot read latest epoch; retrying in %ss: %s", self.poll_interval, exc)
                self.state = CrawlState.SLEEPING
                self._wait(self.poll_interval)

        logger.info("Backfill started for epochs %s..%s", report.start, report.end)
        epoch = report.start
        while report.end is not None and epoch <= report.end:
            if self._stop.is_set():
                break
            try:
                done = self._backfill_epoch(epoch, report)
            except Exception as exc:
                self.last_error = f"{type(exc).__name__}: {exc}"
                logger.exception("Backfill loop error at epoch %s", epoch)
                done = False
            if done:
                epoch += 1
            elif not self._stop.is_set():
                self.state = CrawlState.SLEEPING
                self._wait(self.poll_interval)

        report.stopped = self._stop.is_set() and (report.end is None or epoch <= report.end)
        logger.info(
            "Backfill finished: processed=%s failed=%s stopped=%s",
            len(report.processed),
            sorted(report.failed),
            report.stopped,
        )
        return report

    def _backfill_epoch(self, epoch: int, report: BackfillReport) -> bool:
        """Process one backfill epoch. Returns False when the same epoch must be retried."""
        try:
            self.state = CrawlState.FETCHING
            raw = self.client.reward_parameters(epoch)
            if not self._enter(CrawlState.EXTRACTING):
                return False
            records = extract(raw)
            if not self._enter(CrawlState.COMMITTING):
                return False
            self.repository.commit(records, cursor_advance=None)
        except (Unavailable, DatabaseError) as exc:
            self._record_error(exc)
            logger.warning("Backfill epoch %s not processed (%s); retrying: %s", epoch, exc.kind, exc)
            return False
        except NotFound as exc:
            self._record_error(exc)
            logger.error("Backfill epoch %s has no retained history: %s", epoch, exc)
            report.failed[epoch] = str(exc)
            return True
        except (MalformedData, OutOfOrder) as exc:
            self._record_error(exc)
            logger.error("ALERT backfill %s at epoch %s, nothing committed: %s", exc.kind, epoch, exc)
            report.failed[epoch] = str(exc)
            return True

        report.processed.append(epoch)
        logger.info("Backfill processed epoch %s (%s tokens)", epoch, len(records))
        return True

    def _record_error(self, exc: CrawlerError) -> None:
        self.last_error = f"{exc.kind}: {exc}"
