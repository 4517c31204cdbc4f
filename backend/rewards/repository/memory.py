from __future__ import annotations

import threading
from typing import Sequence

from rewards.core.errors import OutOfOrder
from rewards.core.types import RewardRecord
from rewards.repository.base import expected_next_epoch


class InMemoryRewardRepository:
    """Dictionary-backed repository with the same commit contract as the SQL one.

    Changes are staged on copies and published only once every step succeeded.
    """

    def __init__(self, start_epoch: int = 0, last_processed_epoch: int | None = None) -> None:
        self.start_epoch = start_epoch
        self._lock = threading.Lock()
        self._rates: dict[str, RewardRecord] = {}
        self._cursor = last_processed_epoch

    def last_processed_epoch(self) -> int | None:
        with self._lock:
            return self._cursor

    def commit(self, records: Sequence[RewardRecord], cursor_advance: int | None) -> None:
        with self._lock:
            if cursor_advance is not None:
                expected = expected_next_epoch(self._cursor, self.start_epoch)
                if cursor_advance != expected:
                    raise OutOfOrder(expected=expected, actual=cursor_advance)

            staged_rates = dict(self._rates)
            for record in records:
                staged_rates[record.token] = record

            staged_cursor = self._cursor
            if cursor_advance is not None:
                staged_cursor = self._advance(staged_cursor, cursor_advance)

            self._rates = staged_rates
            self._cursor = staged_cursor

    def _advance(self, previous: int | None, epoch: int) -> int:
        """Step between the staged upsert and the cursor advance; raising here publishes nothing."""
        return epoch

    def rates(self) -> list[RewardRecord]:
        with self._lock:
            return [self._rates[token] for token in sorted(self._rates)]
