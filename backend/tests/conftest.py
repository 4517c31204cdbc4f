import os

os.environ["ENABLE_CRAWLER"] = "false"
os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from rewards.core.errors import NotFound
from rewards.core.types import RawRewardSnapshot
from rewards.db.session import build_engine, build_session_factory
from rewards.repository import InMemoryRewardRepository, SqlRewardRepository


def default_entries(epoch: int) -> list[dict]:
    return [
        {
            "token": "tnam1native",
            "max_reward_rate": "0.01",
            "kp_gain": f"0.{epoch + 1}",
            "kd_gain": "0.5",
            "locked_amount_target": "10000000",
        },
        {
            "address": f"tnam1epoch{epoch}",
            "max_reward_rate": "0.05",
            "kp_gain": "120",
            "kd_gain": "120",
            "locked_amount_target": 1000 + epoch,
        },
    ]


class FakeChainClient:
    """Scripted node: per-epoch entries, queued failures and a call log."""

    def __init__(self, latest: int = 0, missing: set[int] | None = None) -> None:
        self.latest = latest
        self.missing = missing or set()
        self.entries: dict[int, list] = {}
        self.reward_failures: dict[int, list[Exception]] = {}
        self.latest_failures: list[Exception] = []
        self.fetched: list[int] = []

    def latest_epoch(self) -> int:
        if self.latest_failures:
            raise self.latest_failures.pop(0)
        return self.latest

    def reward_parameters(self, epoch: int) -> RawRewardSnapshot:
        self.fetched.append(epoch)
        queued = self.reward_failures.get(epoch)
        if queued:
            raise queued.pop(0)
        if epoch in self.missing:
            raise NotFound(epoch)
        return RawRewardSnapshot(epoch=epoch, entries=self.entries.get(epoch, default_entries(epoch)))


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def memory_repo() -> InMemoryRewardRepository:
    return InMemoryRewardRepository()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def sql_repo(session_factory) -> SqlRewardRepository:
    repo = SqlRewardRepository(session_factory, name="rewards", start_epoch=0)
    repo.create_schema()
    return repo
