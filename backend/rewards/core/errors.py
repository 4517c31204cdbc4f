from __future__ import annotations


class CrawlerError(Exception):
    """Base class for failures the crawl loop knows how to handle."""

    kind = "crawler"
    retryable = False


class Unavailable(CrawlerError):
    """The node (or another upstream) could not be reached."""

    kind = "unavailable"
    retryable = True


class NotFound(CrawlerError):
    """The requested epoch predates the node's retained history."""

    kind = "not_found"

    def __init__(self, epoch: int, message: str | None = None) -> None:
        self.epoch = epoch
        super().__init__(message or f"epoch {epoch} is not available on the node")


class MalformedData(CrawlerError):
    kind = "malformed_data"


class OutOfOrder(CrawlerError):
    """A cursor advance did not follow the stored cursor value."""

    kind = "out_of_order"

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"cursor advance to epoch {actual} rejected; expected epoch {expected}")


class DatabaseError(CrawlerError):
    kind = "database"
    retryable = True
