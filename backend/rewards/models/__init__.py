from rewards.db.session import Base
from rewards.models.tables import CrawlerState, MaspRate

__all__ = [
    "Base",
    "CrawlerState",
    "MaspRate",
]
