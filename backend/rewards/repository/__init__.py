from rewards.repository.base import RewardRepository, expected_next_epoch
from rewards.repository.memory import InMemoryRewardRepository
from rewards.repository.sql import SqlRewardRepository

__all__ = [
    "RewardRepository",
    "expected_next_epoch",
    "InMemoryRewardRepository",
    "SqlRewardRepository",
]
