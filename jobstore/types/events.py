"""
Store lifecycle events delivered to the hosting application.
"""

from datetime import datetime
from typing import Callable

from pydantic import BaseModel

from jobstore.constants import StoreEventKind
from jobstore.types.job import utcnow


class StoreEvent(BaseModel):
    """
    Event emitted when the store opens, closes, or hits an error.
    Open and close failures arrive here instead of being raised.
    """

    kind: StoreEventKind
    timestamp: datetime
    error: str | None = None

    @classmethod
    def opened(cls) -> "StoreEvent":
        """Create a store opened event."""
        return cls(kind=StoreEventKind.OPEN, timestamp=utcnow())

    @classmethod
    def closed(cls, error: BaseException | None = None) -> "StoreEvent":
        """Create a store closed event, optionally carrying the cause."""
        return cls(
            kind=StoreEventKind.CLOSE,
            timestamp=utcnow(),
            error=str(error) if error is not None else None,
        )

    @classmethod
    def failed(cls, error: BaseException) -> "StoreEvent":
        """Create a store error event."""
        return cls(kind=StoreEventKind.ERROR, timestamp=utcnow(), error=str(error))


# Listener signature for store events
EventListener = Callable[[StoreEvent], None]
