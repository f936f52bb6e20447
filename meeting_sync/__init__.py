"""Incremental synchronization of HubSpot meetings into an event queue."""

from meeting_sync.cancellation import CancellationToken
from meeting_sync.checkpoint import CheckpointStore
from meeting_sync.config import MeetingSyncConfig, parse_configuration, validate_configuration
from meeting_sync.constants import MAX_OFFSET
from meeting_sync.credentials import CredentialStore
from meeting_sync.engine import MeetingSyncEngine
from meeting_sync.errors import (
    CredentialRefreshError,
    MeetingSyncError,
    PaginationStalled,
    RetriesExhausted,
    SyncCancelled,
)
from meeting_sync.event_queue import EventQueue
from meeting_sync.models import PassResult, SearchWindow, SyncEvent

__all__ = [
    "CancellationToken",
    "CheckpointStore",
    "CredentialRefreshError",
    "CredentialStore",
    "EventQueue",
    "MAX_OFFSET",
    "MeetingSyncConfig",
    "MeetingSyncEngine",
    "MeetingSyncError",
    "PaginationStalled",
    "PassResult",
    "RetriesExhausted",
    "SearchWindow",
    "SyncCancelled",
    "SyncEvent",
    "parse_configuration",
    "validate_configuration",
]
