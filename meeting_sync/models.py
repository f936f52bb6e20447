"""Value types passed between the pager, the transformer and the output queue."""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple


@dataclass(frozen=True)
class SearchWindow:
    """Inclusive time range of one pass. ``end`` is fixed when the pass starts."""

    start: Optional[datetime]
    end: datetime


@dataclass
class PageCursor:
    """Position of the pager inside the current window.

    ``after`` is the offset handed back by the search endpoint. ``rewind_timestamp``
    is only set once the offset reached the deepest supported value and the
    pager restarted the window at the last record it saw.
    """

    after: Optional[int] = None
    rewind_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SyncEvent:
    name: str
    occurred_at: datetime
    record_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    related_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        # Freeze the containers so the event cannot change after it was queued
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        object.__setattr__(self, "related_ids", tuple(self.related_ids))


@dataclass
class PassResult:
    """Summary of one completed account pass."""

    account_id: str
    window: SearchWindow
    events_emitted: int = 0
    pages_fetched: int = 0
    rewinds: int = 0
    duplicates_skipped: int = 0
    records_skipped: int = 0
