from __future__ import annotations

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from rewards.core.errors import OutOfOrder
from rewards.core.time_utils import now
from rewards.models import CrawlerState


def read_cursor(session: Session, name: str, for_update: bool = False) -> int | None:
    stmt = select(CrawlerState.last_processed_epoch).where(CrawlerState.name == name)
    if for_update:
        # Ignored by SQLite; on Postgres a second crawler blocks here until we commit.
        stmt = stmt.with_for_update()
    return session.scalar(stmt)


def advance_cursor(session: Session, name: str, previous: int | None, epoch: int) -> None:
    """Compare-and-swap the cursor from ``previous`` to ``epoch``.

    Runs inside the caller's transaction. Raises OutOfOrder when the stored
    value no longer equals ``previous``. A concurrent first insert surfaces as
    an IntegrityError from the INSERT, which the caller maps.
    """
    if previous is None:
        condition = CrawlerState.last_processed_epoch.is_(None)
    else:
        condition = CrawlerState.last_processed_epoch == previous
    result = session.execute(
        update(CrawlerState)
        .where(CrawlerState.name == name, condition)
        .values(last_processed_epoch=epoch, timestamp=now())
    )
    if result.rowcount == 1:
        return

    has_row = session.scalar(select(CrawlerState.name).where(CrawlerState.name == name)) is not None
    if previous is None and not has_row:
        session.execute(insert(CrawlerState).values(name=name, last_processed_epoch=epoch, timestamp=now()))
        return

    current = read_cursor(session, name)
    raise OutOfOrder(expected=current + 1 if current is not None else epoch, actual=epoch)
