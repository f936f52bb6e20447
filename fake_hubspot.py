"""In-memory stand-in for the HubSpot endpoints used by the meetings connector tests.

The fake honors the parts of the search contract the engine depends on: the GTE/LTE
filter on the modification property, ascending sort, ``limit``/``after`` paging, a
``paging.next.after`` cursor only while more results remain, and a hard limit on how
deep ``after`` may go.
"""

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests as rq

from meeting_sync.credentials import CredentialStore
from meeting_sync.retrier import AccountRetrier, BackoffRetrier

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def make_meeting(
    meeting_id: Any,
    updated_at: datetime,
    created_at: Optional[datetime] = None,
    title: Optional[str] = None,
    **properties,
) -> Dict[str, Any]:
    created_at = created_at or updated_at
    props = {
        "hs_meeting_title": title if title is not None else f"Meeting {meeting_id}",
        "hs_meeting_start_time": iso(updated_at + timedelta(days=1)),
        "hs_meeting_end_time": iso(updated_at + timedelta(days=1, hours=1)),
        "hs_lastmodifieddate": iso(updated_at),
    }
    props.update(properties)
    return {
        "id": str(meeting_id),
        "createdAt": iso(created_at),
        "updatedAt": iso(updated_at),
        "properties": props,
    }


def make_meetings(count: int, start: datetime = T0, step: timedelta = timedelta(minutes=1), first_id: int = 1):
    """Meetings modified at start + step, start + 2 * step, ... created before ``start``."""
    return [
        make_meeting(first_id + i, start + step * (i + 1), created_at=start - timedelta(days=1))
        for i in range(count)
    ]


def http_error(status_code: int) -> rq.exceptions.HTTPError:
    response = rq.models.Response()
    response.status_code = status_code
    return rq.exceptions.HTTPError(f"HTTP {status_code}", response=response)


class FakeHubSpot:
    def __init__(self, meetings: Optional[List[Dict[str, Any]]] = None, max_depth: int = 10000):
        self.meetings = list(meetings or [])
        self.max_depth = max_depth
        self.associations: Dict[str, List[str]] = {}
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.search_calls: List[Dict[str, Any]] = []
        self.association_calls: List[List[str]] = []
        self.contact_calls: List[List[str]] = []
        self.search_failures = deque()
        self.association_failures = deque()

    def add_participants(self, meeting_id: str, *emails: Optional[str]) -> None:
        for email in emails:
            contact_id = str(1000 + len(self.contacts))
            self.contacts[contact_id] = {"id": contact_id, "properties": {"email": email}}
            self.associations.setdefault(str(meeting_id), []).append(contact_id)

    def _matches(self, meeting: Dict[str, Any], filter_groups: List[Dict[str, Any]]) -> bool:
        for group in filter_groups:
            for condition in group.get("filters", []):
                value = millis(datetime.fromisoformat(meeting["updatedAt"].replace("Z", "+00:00")))
                bound = int(condition["value"])
                if condition["operator"] == "GTE" and value < bound:
                    return False
                if condition["operator"] == "LTE" and value > bound:
                    return False
        return True

    def search_meetings(self, search_body: Dict[str, Any]) -> Dict[str, Any]:
        self.search_calls.append(search_body)
        if self.search_failures:
            failure = self.search_failures.popleft()
            if failure is not None:
                raise failure

        after = int(search_body.get("after") or 0)
        limit = search_body["limit"]
        if after + limit > self.max_depth:
            raise http_error(400)

        matched = sorted(
            (m for m in self.meetings if self._matches(m, search_body.get("filterGroups", []))),
            key=lambda m: (m["updatedAt"], int(m["id"])),
        )
        page = matched[after : after + limit]
        response: Dict[str, Any] = {"results": [dict(m) for m in page]}
        if after + limit < len(matched):
            response["paging"] = {"next": {"after": str(after + limit)}}
        return response

    def read_meeting_contact_ids(self, meeting_ids: List[str]) -> Dict[str, List[str]]:
        self.association_calls.append(list(meeting_ids))
        if self.association_failures:
            raise self.association_failures.popleft()
        return {mid: list(self.associations[mid]) for mid in meeting_ids if mid in self.associations}

    def read_contacts(self, contact_ids: List[str], properties: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        self.contact_calls.append(list(contact_ids))
        return [self.contacts[cid] for cid in contact_ids if cid in self.contacts]


class ScriptedSearchClient:
    """Returns canned search responses in order; for cursor edge cases the fake cannot produce."""

    def __init__(self, responses: List[Dict[str, Any]]):
        self.responses = deque(responses)
        self.search_calls: List[Dict[str, Any]] = []

    def search_meetings(self, search_body: Dict[str, Any]) -> Dict[str, Any]:
        self.search_calls.append(search_body)
        return self.responses.popleft()


class MockResponse:
    def __init__(self, payload: Dict[str, Any], status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def json(self) -> Dict[str, Any]:
        return self._payload

    def raise_for_status(self) -> None:
        if not (200 <= self.status_code < 300):
            raise http_error(self.status_code)


class FakeTokenSession:
    """Answers OAuth refresh requests with a new numbered access token."""

    def __init__(self, status_code: int = 200, expires_in: int = 1800):
        self.status_code = status_code
        self.expires_in = expires_in
        self.requests: List[Dict[str, Any]] = []
        self.failures = deque()

    def post(self, url, data=None, headers=None, timeout=None, **kwargs):
        self.requests.append({"url": url, "data": data, "headers": headers})
        if self.failures:
            raise self.failures.popleft()
        payload = {"access_token": f"access-{len(self.requests)}", "expires_in": self.expires_in}
        return MockResponse(payload, self.status_code)


def make_credentials(*account_ids: str, expires_at: Optional[datetime] = None, session=None):
    store = CredentialStore("client-id", "client-secret", session=session or FakeTokenSession())
    for account_id in account_ids:
        store.register(
            account_id,
            f"refresh-{account_id}",
            access_token=f"token-{account_id}",
            expires_at=expires_at or datetime.now(timezone.utc) + timedelta(hours=1),
        )
    return store


def make_remote(account_id: str = "123", credentials=None, delays: Optional[List[float]] = None, **retrier_options):
    """An AccountRetrier that records its delays instead of sleeping."""
    credentials = credentials or make_credentials(account_id)
    sleep = delays.append if delays is not None else (lambda seconds: None)
    retrier = BackoffRetrier(sleep=sleep, **retrier_options)
    return AccountRetrier(retrier, credentials, account_id)
