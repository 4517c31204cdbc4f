from fastapi import APIRouter, HTTPException, Request

from rewards.core.errors import DatabaseError
from rewards.schemas.api import IngestionStatus

router = APIRouter()


@router.get("/ingestion", response_model=IngestionStatus)
def ingestion_status(request: Request) -> IngestionStatus:
    """Heartbeat: stored cursor, tracked tokens and what the crawl loop is doing."""
    repository = request.app.state.repository
    crawler = request.app.state.crawler
    try:
        last_processed = repository.last_processed_epoch()
        tracked = len(repository.rates())
    except DatabaseError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return IngestionStatus(
        crawler=request.app.state.crawler_name,
        mode=crawler.mode.value if crawler else "normal",
        state=crawler.state.value if crawler else "disabled",
        last_processed_epoch=last_processed,
        tracked_tokens=tracked,
        last_error=crawler.last_error if crawler else None,
    )
