"""Time-windowed cursor pagination over the HubSpot meetings search."""

from datetime import datetime
from functools import partial
from typing import Any, Dict, Iterator, List, Optional, Sequence

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

from meeting_sync.constants import (
    DEFAULT_PAGE_SIZE,
    LAST_MODIFIED_PROPERTY,
    MAX_OFFSET,
    MEETING_PROPERTIES,
)
from meeting_sync.errors import PaginationStalled
from meeting_sync.filters import build_filter
from meeting_sync.models import PageCursor, SearchWindow
from meeting_sync.retrier import AccountRetrier
from meeting_sync.utils import parse_timestamp


def get_next_after(response_page: Dict[str, Any]) -> Optional[int]:
    """Return the ``paging.next.after`` offset of a search response, or None on the last page."""
    next_after = ((response_page.get("paging") or {}).get("next") or {}).get("after")
    if next_after is None or next_after == "":
        return None
    return int(next_after)


def get_modification_time(record: Dict[str, Any], property_name: str) -> Optional[datetime]:
    value = record.get("updatedAt") or (record.get("properties") or {}).get(property_name)
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


class CursorPager:
    """
    Drives repeated searches over one window, sorted ascending by the modification
    property. The search endpoint cannot page past MAX_OFFSET, so once the returned
    offset reaches it the pager drops the offset and restarts the window at the
    modification time of the last record it received.

    Because both window bounds are inclusive the record at the rewind point comes back
    again on the next page. With ``deduplicate`` on, records already yielded in this pass
    are dropped by id.
    """

    def __init__(
        self,
        client,
        remote: AccountRetrier,
        properties: Sequence[str] = (),
        max_offset: int = MAX_OFFSET,
        deduplicate: bool = True,
    ):
        self.client = client
        self.remote = remote
        self.properties = list(MEETING_PROPERTIES) + [p for p in properties if p not in MEETING_PROPERTIES]
        self.max_offset = max_offset
        self.deduplicate = deduplicate
        self.pages_fetched = 0
        self.rewinds = 0
        self.duplicates_skipped = 0
        self._seen_ids = set()

    def build_search_body(
        self,
        window_start: Optional[datetime],
        window_end: datetime,
        property_name: str,
        page_size: int,
        after: Optional[int],
    ) -> Dict[str, Any]:
        date_filter = build_filter(window_start, window_end, property_name)
        search_body = {
            "filterGroups": [date_filter] if date_filter else [],
            "sorts": [{"propertyName": property_name, "direction": "ASCENDING"}],
            "properties": self.properties + ([property_name] if property_name not in self.properties else []),
            "limit": page_size,
        }
        if after is not None:
            search_body["after"] = after
        return search_body

    def pages(
        self,
        initial_window: SearchWindow,
        property_name: str = LAST_MODIFIED_PROPERTY,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Iterator[List[Dict[str, Any]]]:
        """
        Yield the records of each search page, oldest modification first.
        Args:
            initial_window: the pass window; its end stays fixed for the whole pass.
            property_name: timestamp property used for filtering and sorting.
            page_size: records requested per page.
        Yields:
            One list per fetched page (possibly empty after deduplication).
        Raises:
            RetriesExhausted: when a page could not be fetched within the retry budget.
            PaginationStalled: when a rewind would not move the window start forward.
            SyncCancelled: when the pass is cancelled before a page request.
        """
        cursor = PageCursor()

        while True:
            self.remote.cancellation.raise_if_cancelled("page fetch")

            window_start = cursor.rewind_timestamp or initial_window.start
            search_body = self.build_search_body(
                window_start, initial_window.end, property_name, page_size, cursor.after
            )
            response_page = self.remote.call(partial(self.client.search_meetings, search_body), "meetings search")
            self.pages_fetched += 1

            records = response_page.get("results") or []
            log.info(f"Fetched meetings page {self.pages_fetched} ({len(records)} records, after={cursor.after})")

            next_after = get_next_after(response_page)
            yield self._deduplicated(records)

            if next_after is None:
                log.info("No next page returned, pagination complete")
                return

            if next_after >= self.max_offset:
                if not records:
                    log.info(f"Offset {next_after} reached the maximum on an empty page, pagination complete")
                    return
                rewind_timestamp = get_modification_time(records[-1], property_name)
                if rewind_timestamp is None or (window_start is not None and rewind_timestamp <= window_start):
                    raise PaginationStalled(
                        f"Cannot rewind past {window_start}: more than {self.max_offset} meetings share that modification time"
                    )
                log.info(f"Offset {next_after} reached the maximum of {self.max_offset}, rewinding window to {rewind_timestamp}")
                cursor.after = None
                cursor.rewind_timestamp = rewind_timestamp
                self.rewinds += 1
            else:
                cursor.after = next_after

    def paginate(
        self,
        initial_window: SearchWindow,
        property_name: str = LAST_MODIFIED_PROPERTY,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Iterator[Dict[str, Any]]:
        """Yield raw meeting records one at a time. Not restartable."""
        for page in self.pages(initial_window, property_name, page_size):
            yield from page

    def _deduplicated(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not self.deduplicate:
            return list(records)

        page = []
        for record in records:
            record_id = record.get("id")
            if record_id is not None and record_id in self._seen_ids:
                self.duplicates_skipped += 1
                log.fine(f"Skipping meeting {record_id} already delivered in this pass")
                continue
            if record_id is not None:
                self._seen_ids.add(record_id)
            page.append(record)
        return page
