from typing import Literal

from pydantic import BaseModel

CrawlerStateName = Literal["idle", "fetching", "extracting", "committing", "sleeping", "stopped", "disabled"]


class IngestionStatus(BaseModel):
    crawler: str
    mode: Literal["normal", "backfill"]
    state: CrawlerStateName
    last_processed_epoch: int | None
    tracked_tokens: int
    last_error: str | None = None
