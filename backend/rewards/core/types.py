from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CrawlMode(str, Enum):
    NORMAL = "normal"
    BACKFILL = "backfill"


@dataclass(frozen=True)
class RewardRecord:
    token: str
    max_reward_rate: str
    kp_gain: str
    kd_gain: str
    locked_amount_target: str


@dataclass(frozen=True)
class RawRewardSnapshot:
    """Per-token reward parameters exactly as the node returned them."""

    epoch: int
    entries: list[Any] = field(default_factory=list)
