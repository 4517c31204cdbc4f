from __future__ import annotations

from sqlalchemy import BigInteger, Column, DateTime, String, Text

from rewards.core.time_utils import now
from rewards.db.session import Base


class MaspRate(Base):
    """Latest reward-control coefficients per token.

    Coefficients and the locked amount target are stored as text so that
    decimals and big integers survive every backend unchanged.
    """

    __tablename__ = "masp_rates"

    token = Column(String(256), primary_key=True)
    max_reward_rate = Column(Text, nullable=False)
    kp_gain = Column(Text, nullable=False)
    kd_gain = Column(Text, nullable=False)
    locked_amount_target = Column(Text, nullable=False)


class CrawlerState(Base):
    __tablename__ = "crawler_state"

    name = Column(String(64), primary_key=True)
    last_processed_epoch = Column(BigInteger, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=now, onupdate=now, nullable=False)
