"""Exponential backoff around remote calls, coordinated with access token refresh."""

from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

import requests as rq

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

from meeting_sync.cancellation import CancellationToken
from meeting_sync.constants import (
    BASE_DELAY_SECONDS,
    MAX_ATTEMPTS,
    RETRYABLE_STATUS_CODES,
    UNAUTHORIZED_STATUS_CODE,
)
from meeting_sync.errors import CredentialRefreshError, RetriesExhausted

T = TypeVar("T")


def _status_code(error: BaseException) -> Optional[int]:
    response = getattr(error, "response", None)
    return response.status_code if response is not None else None


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether a failed remote call is worth another attempt.
    Network failures, timeouts, rate limiting, expired tokens and server errors are retried.
    Any other client error (bad filter, unknown property, forbidden scope) will fail the same way again.
    Args:
        error: the exception raised by the remote call.
    Returns:
        True if the call should be attempted again.
    """
    if isinstance(error, (rq.exceptions.ConnectionError, rq.exceptions.Timeout)):
        return True

    # A failed token request is as retryable as the request error behind it
    if isinstance(error, CredentialRefreshError):
        return error.__cause__ is not None and is_retryable_error(error.__cause__)

    if isinstance(error, rq.exceptions.HTTPError):
        status_code = _status_code(error)
        if status_code is None:
            return True
        return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600

    return False


def is_auth_error(error: BaseException) -> bool:
    return isinstance(error, rq.exceptions.HTTPError) and _status_code(error) == UNAUTHORIZED_STATUS_CODE


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BackoffRetrier:
    """
    Runs a remote call up to ``max_attempts`` times. Before retry ``n`` it waits
    ``base_delay * 2 ** n`` seconds, and when the account's access token has expired
    (or the call was rejected as unauthorized) it refreshes the token first.
    The refresh does not count against the attempt budget.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY_SECONDS,
        retryable: Callable[[BaseException], bool] = is_retryable_error,
        cancellation: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retryable = retryable
        self.cancellation = cancellation or CancellationToken()
        self._sleep = sleep or self.cancellation.wait
        self._clock = clock

    def delay_for(self, retry_number: int) -> float:
        return self.base_delay * 2**retry_number

    def execute(
        self,
        operation: Callable[[], T],
        credential_expiry: Callable[[], Optional[datetime]],
        refresh_credential: Callable[[], None],
        description: str = "remote call",
    ) -> T:
        """
        Execute ``operation`` with the retry budget of this retrier.
        Args:
            operation: zero argument callable performing the remote call.
            credential_expiry: returns the current access token expiry. Called after every
                failure so that a token refreshed by another pass is taken into account.
            refresh_credential: obtains a new access token for the account.
            description: used in log lines and in the RetriesExhausted message.
        Returns:
            Whatever ``operation`` returns.
        Raises:
            RetriesExhausted: when every attempt failed with a retryable error.
            SyncCancelled: when the pass is cancelled between attempts.
            Exception: any non-retryable error raised by ``operation``, unchanged.
        """
        attempt = 0
        last_error: Optional[BaseException] = None

        while attempt < self.max_attempts:
            self.cancellation.raise_if_cancelled(description)
            try:
                return operation()
            except Exception as error:
                if not self.retryable(error):
                    log.severe(f"{description} failed with a non-retryable error: {error}")
                    raise
                last_error = error

            attempt += 1
            log.warning(f"{description} failed (attempt {attempt}/{self.max_attempts}): {last_error}")
            if attempt >= self.max_attempts:
                break

            if self._credential_is_stale(credential_expiry, last_error):
                self._refresh(refresh_credential, description)

            delay = self.delay_for(attempt)
            log.info(f"Waiting {delay} seconds before retrying {description}")
            self._sleep(delay)

        log.severe(f"{description} failed after {attempt} attempts. Aborting.")
        raise RetriesExhausted(description, attempt, last_error) from last_error

    def _credential_is_stale(self, credential_expiry: Callable[[], Optional[datetime]], error: BaseException) -> bool:
        if is_auth_error(error):
            return True
        expires_at = credential_expiry()
        return expires_at is None or self._clock() > expires_at

    def _refresh(self, refresh_credential: Callable[[], None], description: str) -> None:
        self.cancellation.raise_if_cancelled("credential refresh")
        try:
            refresh_credential()
        except CredentialRefreshError as error:
            # The next attempt still runs; it fails again if the token really is unusable
            log.warning(f"Could not refresh the access token before retrying {description}: {error}")


class AccountRetrier:
    """A BackoffRetrier bound to one account's entry in the credential store."""

    def __init__(self, retrier: BackoffRetrier, credentials, account_id: str):
        self.retrier = retrier
        self.credentials = credentials
        self.account_id = account_id

    @property
    def cancellation(self) -> CancellationToken:
        return self.retrier.cancellation

    def call(self, operation: Callable[[], T], description: str) -> T:
        used = []

        def attempt() -> T:
            # Remember which credential this attempt ran with; that is the one to replace if it fails
            used.append(self.credentials.get(self.account_id))
            return operation()

        return self.retrier.execute(
            attempt,
            credential_expiry=lambda: self.credentials.expires_at(self.account_id),
            refresh_credential=lambda: self.credentials.refresh(self.account_id, stale=used[-1]),
            description=f"{description} for account {self.account_id}",
        )

    def ensure_valid(self) -> None:
        """
        Make sure the account holds a usable access token before the first request of a pass.
        Transient token endpoint failures are retried with the same budget as any other call;
        a rejected refresh token fails at once.
        """
        self.retrier.execute(
            lambda: self.credentials.ensure_valid(self.account_id),
            credential_expiry=lambda: self.credentials.expires_at(self.account_id),
            # ensure_valid itself refreshes, so there is nothing to do between attempts
            refresh_credential=lambda: None,
            description=f"credential refresh for account {self.account_id}",
        )
