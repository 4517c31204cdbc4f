from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from rewards.core.errors import DatabaseError, OutOfOrder
from rewards.core.types import RewardRecord
from rewards.models import Base, CrawlerState, MaspRate
from rewards.repository import cursor_store
from rewards.repository.base import expected_next_epoch

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = ("max_reward_rate", "kp_gain", "kd_gain", "locked_amount_target")


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert
    if dialect in {"postgresql", "postgres"}:
        return postgresql.insert
    raise DatabaseError(f"upsert is not supported on {dialect}")


def upsert_rates(session: Session, records: Sequence[RewardRecord]) -> None:
    """Insert-or-replace rate rows keyed by token; only the coefficient columns change."""
    if not records:
        return
    insert = _insert_for(session)
    stmt = insert(MaspRate).values(
        [
            {
                "token": r.token,
                "max_reward_rate": r.max_reward_rate,
                "kp_gain": r.kp_gain,
                "kd_gain": r.kd_gain,
                "locked_amount_target": r.locked_amount_target,
            }
            for r in records
        ]
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[MaspRate.token],
        set_={name: stmt.excluded[name] for name in _UPDATABLE_COLUMNS},
    )
    session.execute(stmt)


class SqlRewardRepository:
    def __init__(self, session_factory: sessionmaker, name: str = "rewards", start_epoch: int = 0) -> None:
        self.session_factory = session_factory
        self.name = name
        self.start_epoch = start_epoch

    def create_schema(self) -> None:
        with self.session_factory() as session:
            Base.metadata.create_all(session.get_bind(), tables=[MaspRate.__table__, CrawlerState.__table__])

    def last_processed_epoch(self) -> int | None:
        try:
            with self.session_factory() as session:
                return cursor_store.read_cursor(session, self.name)
        except SQLAlchemyError as exc:
            raise DatabaseError(f"failed to read cursor {self.name}: {exc}") from exc

    def commit(self, records: Sequence[RewardRecord], cursor_advance: int | None) -> None:
        try:
            with self.session_factory() as session, session.begin():
                previous = None
                if cursor_advance is not None:
                    previous = cursor_store.read_cursor(session, self.name, for_update=True)
                    expected = expected_next_epoch(previous, self.start_epoch)
                    if cursor_advance != expected:
                        raise OutOfOrder(expected=expected, actual=cursor_advance)

                upsert_rates(session, records)

                if cursor_advance is not None:
                    try:
                        cursor_store.advance_cursor(session, self.name, previous, cursor_advance)
                    except IntegrityError as exc:
                        # Another crawler inserted the first cursor row concurrently.
                        raise OutOfOrder(expected=expected, actual=cursor_advance) from exc
        except SQLAlchemyError as exc:
            raise DatabaseError(f"failed to commit {len(records)} rates: {exc}") from exc
        logger.debug("committed %s rates cursor_advance=%s", len(records), cursor_advance)

    def rates(self) -> list[RewardRecord]:
        try:
            with self.session_factory() as session:
                rows = session.scalars(select(MaspRate).order_by(MaspRate.token)).all()
        except SQLAlchemyError as exc:
            raise DatabaseError(f"failed to read rates: {exc}") from exc
        return [
            RewardRecord(
                token=row.token,
                max_reward_rate=row.max_reward_rate,
                kp_gain=row.kp_gain,
                kd_gain=row.kd_gain,
                locked_amount_target=row.locked_amount_target,
            )
            for row in rows
        ]
