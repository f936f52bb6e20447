"""Small helpers for timestamps and property payloads."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """
    Convert a HubSpot timestamp into an aware UTC datetime.
    HubSpot returns ISO-8601 strings for record metadata (``createdAt``) and millisecond
    epoch strings for date properties (``hs_lastmodifieddate`` in some API versions).
    Args:
        value: ISO-8601 string, millisecond epoch (int or numeric string) or datetime.
    Returns:
        The parsed datetime, or None when the value is empty.
    Raises:
        ValueError: if the value cannot be interpreted as a timestamp.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)

    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way it is stored in the connector state."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_property_name(key: str) -> str:
    """
    Lowercase a property name, drop a trailing ``__c`` suffix, trim leading and trailing
    underscores and collapse runs of underscores.
    Example: ``"__Custom__Field__c"`` becomes ``"custom_field"``.
    """
    key = key.lower()
    key = re.sub(r"__c$", "", key)
    key = key.strip("_")
    return re.sub(r"_+", "_", key)


def filter_null_values(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` without None or empty string values."""
    return {key: value for key, value in data.items() if value is not None and value != ""}
