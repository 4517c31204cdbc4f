import asyncio
import logging

import pytest

from rewards.core.errors import DatabaseError, NotFound, Unavailable
from rewards.core.types import CrawlMode
from rewards.repository import InMemoryRewardRepository
from rewards.workers.rewards_crawler import CrawlState, RewardsCrawler


def _stop_after_waits(crawler, count):
    waits = []

    def _wait(seconds):
        waits.append(seconds)
        if len(waits) >= count:
            crawler.stop()

    crawler._wait = _wait
    return waits


class FlakyCommitRepository(InMemoryRewardRepository):
    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = list(failures)

    def commit(self, records, cursor_advance):
        if self.failures:
            raise self.failures.pop(0)
        super().commit(records, cursor_advance)


class StaleCursorRepository(InMemoryRewardRepository):
    """Reports a cursor one epoch behind, as a second crawler instance would see it."""

    def last_processed_epoch(self):
        current = super().last_processed_epoch()
        return None if current in (None, 0) else current - 1


class BrokenCursorRepository(InMemoryRewardRepository):
    def last_processed_epoch(self):
        raise DatabaseError("connection refused")


def test_catch_up_processes_backlog_without_sleeping(chain):
    chain.latest = 100
    repo = InMemoryRewardRepository(last_processed_epoch=90)
    crawler = RewardsCrawler(chain, repo, poll_interval=60)
    waits = _stop_after_waits(crawler, 1)

    asyncio.run(crawler.run_forever())

    assert chain.fetched == list(range(91, 101))
    assert repo.last_processed_epoch() == 100
    # The only sleep happens once the crawler has caught up.
    assert waits == [60]
    assert crawler.state is CrawlState.STOPPED


def test_caught_up_crawler_sleeps_without_fetching(chain):
    chain.latest = 5
    repo = InMemoryRewardRepository(last_processed_epoch=5)
    crawler = RewardsCrawler(chain, repo)

    assert crawler.process_next_epoch() is True
    assert chain.fetched == []
    assert repo.last_processed_epoch() == 5


def test_fresh_cursor_starts_at_start_epoch(chain):
    chain.latest = 12
    repo = InMemoryRewardRepository(start_epoch=10)
    crawler = RewardsCrawler(chain, repo)
    _stop_after_waits(crawler, 1)

    asyncio.run(crawler.run_forever())

    assert chain.fetched == [10, 11, 12]
    assert repo.last_processed_epoch() == 12


def test_unavailable_node_retries_same_epoch(chain):
    chain.latest = 1
    chain.reward_failures[1] = [Unavailable("connection reset")]
    repo = InMemoryRewardRepository(last_processed_epoch=0)
    crawler = RewardsCrawler(chain, repo, poll_interval=5)
    waits = _stop_after_waits(crawler, 2)

    asyncio.run(crawler.run_forever())

    assert chain.fetched == [1, 1]
    assert waits == [5, 5]
    assert repo.last_processed_epoch() == 1
    assert crawler.last_error is None


def test_latest_epoch_unavailable_is_retried(chain):
    chain.latest = 1
    chain.latest_failures = [Unavailable("timeout"), Unavailable("timeout")]
    repo = InMemoryRewardRepository(last_processed_epoch=0)
    crawler = RewardsCrawler(chain, repo)
    waits = _stop_after_waits(crawler, 3)

    asyncio.run(crawler.run_forever())

    assert len(waits) == 3
    assert repo.last_processed_epoch() == 1


def test_database_error_on_commit_retries_same_epoch(chain):
    chain.latest = 3
    repo = FlakyCommitRepository([DatabaseError("deadlock")], last_processed_epoch=2)
    crawler = RewardsCrawler(chain, repo)
    waits = _stop_after_waits(crawler, 2)

    asyncio.run(crawler.run_forever())

    assert chain.fetched == [3, 3]
    assert len(waits) == 2
    assert repo.last_processed_epoch() == 3


def test_malformed_epoch_is_not_committed_and_alerts(chain, caplog):
    chain.latest = 1
    chain.entries[1] = [{"token": "X", "max_reward_rate": "oops", "kp_gain": "1", "kd_gain": "1", "locked_amount_target": 1}]
    repo = InMemoryRewardRepository(last_processed_epoch=0)
    crawler = RewardsCrawler(chain, repo)
    _stop_after_waits(crawler, 1)

    with caplog.at_level(logging.ERROR, logger="rewards.workers.rewards_crawler"):
        asyncio.run(crawler.run_forever())

    assert repo.last_processed_epoch() == 0
    assert repo.rates() == []
    assert crawler.last_error.startswith("malformed_data")
    assert any("ALERT" in r.getMessage() for r in caplog.records)


def test_out_of_order_commit_is_logged_and_loop_continues(chain, caplog):
    chain.latest = 5
    repo = StaleCursorRepository(last_processed_epoch=3)
    crawler = RewardsCrawler(chain, repo)
    waits = _stop_after_waits(crawler, 2)

    with caplog.at_level(logging.ERROR, logger="rewards.workers.rewards_crawler"):
        asyncio.run(crawler.run_forever())

    assert repo.last_processed_epoch() == 3
    assert chain.fetched == [3, 3]
    assert len(waits) == 2
    assert any("out_of_order" in r.getMessage() for r in caplog.records)


def test_not_found_in_normal_mode_does_not_skip_epoch(chain):
    chain.latest = 4
    chain.missing = {1}
    repo = InMemoryRewardRepository(last_processed_epoch=0)
    crawler = RewardsCrawler(chain, repo)
    _stop_after_waits(crawler, 1)

    asyncio.run(crawler.run_forever())

    assert repo.last_processed_epoch() == 0
    assert crawler.last_error.startswith("not_found")


def test_unreadable_cursor_at_startup_is_fatal(chain):
    crawler = RewardsCrawler(chain, BrokenCursorRepository())

    with pytest.raises(DatabaseError):
        asyncio.run(crawler.run_forever())
    assert chain.fetched == []


def test_stop_before_start_exits_cleanly(chain):
    chain.latest = 10
    repo = InMemoryRewardRepository()
    crawler = RewardsCrawler(chain, repo)
    crawler.stop()

    asyncio.run(crawler.run_forever())

    assert chain.fetched == []
    assert repo.last_processed_epoch() is None
    assert crawler.state is CrawlState.STOPPED


def test_stop_between_states_skips_commit(chain):
    chain.latest = 3
    repo = InMemoryRewardRepository(last_processed_epoch=0)
    crawler = RewardsCrawler(chain, repo)
    original = chain.reward_parameters

    def _fetch_then_stop(epoch):
        snapshot = original(epoch)
        crawler.stop()
        return snapshot

    chain.reward_parameters = _fetch_then_stop

    assert crawler.process_next_epoch() is False
    assert repo.last_processed_epoch() == 0
    assert crawler.state is CrawlState.FETCHING


def test_backfill_leaves_cursor_alone(chain):
    repo = InMemoryRewardRepository(last_processed_epoch=5)
    crawler = RewardsCrawler(chain, repo, backfill_from=10, backfill_to=20)
    waits = _stop_after_waits(crawler, 1)

    report = asyncio.run(crawler.run_forever())

    assert crawler.mode is CrawlMode.BACKFILL
    assert report.ok
    assert report.processed == list(range(10, 21))
    assert waits == []
    assert repo.last_processed_epoch() == 5
    tokens = {r.token for r in repo.rates()}
    assert {f"tnam1epoch{epoch}" for epoch in range(10, 21)} <= tokens
    native = next(r for r in repo.rates() if r.token == "tnam1native")
    assert native.kp_gain == "0.21"


def test_backfill_defaults_to_latest_epoch(chain):
    chain.latest = 3
    chain.latest_failures = [Unavailable("booting")]
    repo = InMemoryRewardRepository()
    crawler = RewardsCrawler(chain, repo, backfill_from=1)
    waits = _stop_after_waits(crawler, 5)

    report = crawler.run_backfill()

    assert len(waits) == 1
    assert report.end == 3
    assert report.processed == [1, 2, 3]
    assert repo.last_processed_epoch() is None


def test_backfill_not_found_reports_epoch_and_continues(chain):
    chain.missing = {11}
    repo = InMemoryRewardRepository(last_processed_epoch=5)
    crawler = RewardsCrawler(chain, repo, backfill_from=10, backfill_to=12)

    report = crawler.run_backfill()

    assert report.processed == [10, 12]
    assert list(report.failed) == [11]
    assert not report.ok
    assert repo.last_processed_epoch() == 5


def test_backfill_retries_unavailable_epoch(chain):
    chain.reward_failures[2] = [Unavailable("502")]
    repo = InMemoryRewardRepository()
    crawler = RewardsCrawler(chain, repo, poll_interval=7, backfill_from=1, backfill_to=3)
    waits = _stop_after_waits(crawler, 5)

    report = crawler.run_backfill()

    assert chain.fetched == [1, 2, 2, 3]
    assert waits == [7]
    assert report.processed == [1, 2, 3]


def test_backfill_malformed_epoch_is_skipped(chain):
    chain.entries[2] = [{"token": "X"}]
    repo = InMemoryRewardRepository()
    crawler = RewardsCrawler(chain, repo, backfill_from=1, backfill_to=3)

    report = crawler.run_backfill()

    assert report.processed == [1, 3]
    assert 2 in report.failed
    assert "X" not in {r.token for r in repo.rates()}


def test_backfill_stop_marks_report(chain):
    repo = InMemoryRewardRepository()
    crawler = RewardsCrawler(chain, repo, backfill_from=1, backfill_to=100)
    original = chain.reward_parameters

    def _fetch(epoch):
        if epoch == 3:
            crawler.stop()
        return original(epoch)

    chain.reward_parameters = _fetch

    report = crawler.run_backfill()

    assert report.processed == [1, 2]
    assert report.stopped
    assert not report.ok


def test_backfill_with_sql_repository_creates_no_cursor(chain, sql_repo):
    crawler = RewardsCrawler(chain, sql_repo, backfill_from=0, backfill_to=2)

    report = crawler.run_backfill()

    assert report.processed == [0, 1, 2]
    assert sql_repo.last_processed_epoch() is None
    assert len(sql_repo.rates()) == 4


def test_normal_mode_with_sql_repository(chain, sql_repo):
    chain.latest = 2
    crawler = RewardsCrawler(chain, sql_repo)
    _stop_after_waits(crawler, 1)

    asyncio.run(crawler.run_forever())

    assert sql_repo.last_processed_epoch() == 2
    native = next(r for r in sql_repo.rates() if r.token == "tnam1native")
    assert native.kp_gain == "0.3"


@pytest.mark.parametrize("amount", ["1" * 5000, 10**5000], ids=["str5000", "int5000"])
def test_oversized_amount_alerts_without_crashing_sql_crawler(chain, sql_repo, caplog, amount):
    chain.entries[0] = [
        {"token": "X", "max_reward_rate": "0.01", "kp_gain": "1", "kd_gain": "1", "locked_amount_target": amount}
    ]
    crawler = RewardsCrawler(chain, sql_repo)
    _stop_after_waits(crawler, 1)

    with caplog.at_level(logging.ERROR, logger="rewards.workers.rewards_crawler"):
        asyncio.run(crawler.run_forever())

    assert chain.fetched == [0]
    assert sql_repo.last_processed_epoch() is None
    assert sql_repo.rates() == []
    assert crawler.last_error.startswith("malformed_data")
    assert any("ALERT" in r.getMessage() for r in caplog.records)


def test_unexpected_error_is_logged_and_loop_retries(chain, caplog):
    chain.latest = 1
    chain.reward_failures[1] = [RuntimeError("boom")]
    repo = InMemoryRewardRepository(last_processed_epoch=0)
    crawler = RewardsCrawler(chain, repo, poll_interval=5)
    waits = _stop_after_waits(crawler, 2)

    with caplog.at_level(logging.ERROR, logger="rewards.workers.rewards_crawler"):
        asyncio.run(crawler.run_forever())

    assert chain.fetched == [1, 1]
    assert waits == [5, 5]
    assert repo.last_processed_epoch() == 1
    assert crawler.last_error is None
    assert crawler.state is CrawlState.STOPPED
    assert any(r.getMessage() == "Rewards crawler loop error" and r.exc_info for r in caplog.records)


def test_backfill_retries_epoch_after_unexpected_error(chain, caplog):
    chain.reward_failures[2] = [RuntimeError("boom")]
    repo = InMemoryRewardRepository()
    crawler = RewardsCrawler(chain, repo, poll_interval=7, backfill_from=1, backfill_to=3)
    waits = _stop_after_waits(crawler, 5)

    with caplog.at_level(logging.ERROR, logger="rewards.workers.rewards_crawler"):
        report = crawler.run_backfill()

    assert chain.fetched == [1, 2, 2, 3]
    assert waits == [7]
    assert report.ok
    assert report.processed == [1, 2, 3]
    assert any("Backfill loop error" in r.getMessage() for r in caplog.records)


def test_run_backfill_without_start_epoch_is_rejected(chain):
    crawler = RewardsCrawler(chain, InMemoryRewardRepository())

    with pytest.raises(ValueError, match="backfill_from"):
        crawler.run_backfill()
    assert chain.fetched == []
