"""HubSpot API client for the meeting search, association and contact endpoints."""

from typing import Any, Dict, List, Optional

import requests as rq

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

from meeting_sync.constants import (
    CONTACT_EMAIL_PROPERTY,
    CONTACTS_BATCH_READ_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MEETING_CONTACT_ASSOCIATIONS_URL,
    MEETINGS_SEARCH_URL,
)
from meeting_sync.credentials import CredentialStore


class HubSpotClient:
    """
    Thin wrapper over the HubSpot CRM endpoints used by one account's pass.
    Every call reads the account's current access token from the credential store,
    so a token refreshed between two attempts is picked up by the next one.
    Calls are not retried here; that is the job of BackoffRetrier.
    """

    def __init__(
        self,
        account_id: str,
        credentials: CredentialStore,
        timeout: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        session: Optional[rq.Session] = None,
    ):
        self.account_id = account_id
        self.credentials = credentials
        self.timeout = timeout
        self.session = session or rq.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.access_token(self.account_id)}",
            "Content-Type": "application/json",
        }

    def _post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        log.fine(f"Making API call to url: {url} for account {self.account_id}")
        response = self.session.post(url, json=body, headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()  # Ensure we raise an exception for HTTP errors.
        return response.json()

    def search_meetings(self, search_body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one page of the meetings search.
        Args:
            search_body: ``{filterGroups, sorts, properties, limit, after}``.
        Returns:
            The parsed response, ``{"results": [...], "paging": {"next": {"after": "100"}}}``.
        """
        return self._post(MEETINGS_SEARCH_URL, search_body)

    def read_meeting_contact_ids(self, meeting_ids: List[str]) -> Dict[str, List[str]]:
        """
        Look up the contacts associated with each meeting.
        Returns:
            Contact ids keyed by meeting id. Meetings without associations are absent.
        """
        if not meeting_ids:
            return {}

        response = self._post(
            MEETING_CONTACT_ASSOCIATIONS_URL,
            {"inputs": [{"id": meeting_id} for meeting_id in meeting_ids]},
        )

        contact_ids: Dict[str, List[str]] = {}
        for association in response.get("results", []):
            from_id = str(association.get("from", {}).get("id", ""))
            targets = [str(target["toObjectId"]) for target in association.get("to", []) if "toObjectId" in target]
            if from_id and targets:
                contact_ids.setdefault(from_id, []).extend(targets)
        return contact_ids

    def read_contacts(self, contact_ids: List[str], properties: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Fetch contact details for at most one batch (100 ids)."""
        if not contact_ids:
            return []

        response = self._post(
            CONTACTS_BATCH_READ_URL,
            {
                "properties": properties or [CONTACT_EMAIL_PROPERTY],
                "inputs": [{"id": contact_id} for contact_id in contact_ids],
            },
        )
        return response.get("results", [])
