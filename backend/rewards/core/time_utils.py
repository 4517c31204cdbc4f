from datetime import datetime, timezone


def now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)
