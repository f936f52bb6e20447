"""Exception types raised by the meeting sync engine."""

from typing import Optional


class MeetingSyncError(Exception):
    """Base class for errors that abort an account's sync pass."""

    pass


class RetriesExhausted(MeetingSyncError):
    """Raised when a remote call failed on every attempt of its retry budget."""

    def __init__(self, description: str, attempts: int, last_error: Optional[BaseException] = None):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")


class CredentialRefreshError(MeetingSyncError):
    """Raised when a new access token cannot be obtained for an account."""

    pass


class PaginationStalled(MeetingSyncError):
    """Raised when a cursor rewind would restart the window at the same timestamp."""

    pass


class SyncCancelled(MeetingSyncError):
    """Raised at a suspension point once the pass has been cancelled or timed out."""

    pass
