"""Builds the "modified since" range filter used by the meetings search."""

from datetime import datetime
from typing import Any, Dict, Optional

from meeting_sync.constants import LAST_MODIFIED_PROPERTY
from meeting_sync.utils import to_epoch_millis


def build_filter(
    window_start: Optional[datetime],
    window_end: datetime,
    property_name: str = LAST_MODIFIED_PROPERTY,
) -> Dict[str, Any]:
    """
    Build a filter group matching records whose ``property_name`` lies in
    ``[window_start, window_end]``. Both bounds are inclusive and sent as millisecond epoch strings.
    Args:
        window_start: start of the window, None to match every record.
        window_end: end of the window, normally the pass start time.
        property_name: the timestamp property to filter on.
    Returns:
        A filter group for the ``filterGroups`` list of a search request. Empty when there is no start.
    """
    if window_start is None:
        return {}

    return {
        "filters": [
            {"propertyName": property_name, "operator": "GTE", "value": f"{to_epoch_millis(window_start)}"},
            {"propertyName": property_name, "operator": "LTE", "value": f"{to_epoch_millis(window_end)}"},
        ]
    }
