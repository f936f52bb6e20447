"""Per-account "last pulled" timestamps kept in the connector state."""

import threading
from copy import deepcopy
from datetime import datetime
from typing import Any, Dict, Optional

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

from meeting_sync.constants import ENTITY_MEETINGS
from meeting_sync.utils import format_timestamp, parse_timestamp


class CheckpointStore:
    """
    Reads and advances sync checkpoints stored in the connector state as
    ``{"accounts": {hub_id: {"last_pulled_dates": {"meetings": "<ISO-8601>"}}}}``.
    Passes for different accounts run on different threads, so every access is serialized.
    """

    def __init__(self, state: Optional[Dict[str, Any]] = None, entity: str = ENTITY_MEETINGS):
        self.entity = entity
        self._state = deepcopy(state) if state else {}
        self._state.setdefault("accounts", {})
        self._lock = threading.Lock()

    def read(self, account_id: str) -> Optional[datetime]:
        with self._lock:
            account_state = self._state["accounts"].get(account_id, {})
            value = account_state.get("last_pulled_dates", {}).get(self.entity)
        return parse_timestamp(value) if value else None

    def commit(self, account_id: str, new_timestamp: datetime) -> None:
        """
        Advance the account's checkpoint. Only call this once a pass reached the natural end
        of its results; ``new_timestamp`` is the pass start time, not the last record seen.
        """
        with self._lock:
            account_state = self._state["accounts"].setdefault(account_id, {})
            account_state.setdefault("last_pulled_dates", {})[self.entity] = format_timestamp(new_timestamp)
        log.info(f"Checkpoint for account {account_id} ({self.entity}) advanced to {format_timestamp(new_timestamp)}")

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the state, safe to hand to op.checkpoint()."""
        with self._lock:
            return deepcopy(self._state)
