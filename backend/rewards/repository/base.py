from __future__ import annotations

from typing import Protocol, Sequence

from rewards.core.types import RewardRecord


def expected_next_epoch(last_processed_epoch: int | None, start_epoch: int) -> int:
    if last_processed_epoch is None:
        return start_epoch
    return last_processed_epoch + 1


class RewardRepository(Protocol):
    """Storage the crawl loop depends on.

    ``commit`` applies every record and the optional cursor advance as one
    unit; ``cursor_advance`` must equal ``expected_next_epoch`` of the stored
    cursor or the call fails with OutOfOrder and changes nothing.
    """

    start_epoch: int

    def last_processed_epoch(self) -> int | None: ...

    def commit(self, records: Sequence[RewardRecord], cursor_advance: int | None) -> None: ...

    def rates(self) -> list[RewardRecord]: ...
