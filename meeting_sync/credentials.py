"""Per-account OAuth access tokens shared by every pass of a sync."""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import requests as rq

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

from meeting_sync.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS, TOKEN_URL
from meeting_sync.errors import CredentialRefreshError


@dataclass(frozen=True)
class AccessCredential:
    """Immutable snapshot of an account's token. Replaced as a whole on refresh."""

    account_id: str
    refresh_token: str
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.access_token is None or self.expires_at is None or now >= self.expires_at


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """
    Holds the current AccessCredential of every account.
    Each account has its own lock: a refresh swaps the credential object under the lock,
    so readers always see either the old or the new token, never a mix of the two.
    Two passes refreshing the same account at once result in a single token request.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = TOKEN_URL,
        timeout: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        session: Optional[rq.Session] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout
        self.session = session or rq.Session()
        self._clock = clock
        self._credentials: Dict[str, AccessCredential] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def register(self, account_id: str, refresh_token: str, access_token: Optional[str] = None,
                 expires_at: Optional[datetime] = None) -> None:
        with self._registry_lock:
            self._locks.setdefault(account_id, threading.Lock())
            self._credentials[account_id] = AccessCredential(account_id, refresh_token, access_token, expires_at)

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._registry_lock:
            if account_id not in self._locks:
                raise KeyError(f"Unknown account: {account_id}")
            return self._locks[account_id]

    def get(self, account_id: str) -> AccessCredential:
        with self._lock_for(account_id):
            return self._credentials[account_id]

    def access_token(self, account_id: str) -> Optional[str]:
        return self.get(account_id).access_token

    def expires_at(self, account_id: str) -> Optional[datetime]:
        return self.get(account_id).expires_at

    def ensure_valid(self, account_id: str) -> AccessCredential:
        """Refresh the account's token if it is missing or expired, and return the current credential."""
        credential = self.get(account_id)
        if credential.is_expired(self._clock()):
            return self.refresh(account_id, stale=credential)
        return credential

    def refresh(self, account_id: str, stale: Optional[AccessCredential] = None) -> AccessCredential:
        """
        Exchange the account's refresh token for a new access token.
        Args:
            account_id: the HubSpot account (hub id).
            stale: the credential the caller found unusable. If another thread already replaced it
                with a token that has not expired, that token is returned without a new request.
        Returns:
            The new AccessCredential.
        Raises:
            CredentialRefreshError: if the token endpoint rejects the request or is unreachable.
        """
        with self._lock_for(account_id):
            current = self._credentials[account_id]
            if stale is not None and current is not stale and not current.is_expired(self._clock()):
                return current

            log.info(f"Refreshing access token for account {account_id}")
            data = {
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": current.refresh_token,
            }
            try:
                response = self.session.post(
                    self.token_url,
                    data=data,
                    headers={"content-type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                body = response.json()
                access_token = body["access_token"]
                expires_in = int(body["expires_in"])
            except (rq.exceptions.RequestException, KeyError, ValueError) as error:
                log.severe(f"Failed to obtain access token for account {account_id}: {error}")
                raise CredentialRefreshError(f"Failed to obtain access token for account {account_id}") from error

            refreshed = AccessCredential(
                account_id=account_id,
                # HubSpot may hand back the same refresh token; keep whichever is newest
                refresh_token=body.get("refresh_token") or current.refresh_token,
                access_token=access_token,
                expires_at=self._clock() + timedelta(seconds=expires_in),
            )
            self._credentials[account_id] = refreshed
            log.info(f"Access token for account {account_id} obtained successfully")
            return refreshed
