"""Maps raw meeting records into SyncEvents, resolving meeting participants."""

from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Tuple

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

from meeting_sync.constants import (
    ACTION_MEETING_CREATED,
    ACTION_MEETING_UPDATED,
    CONTACT_EMAIL_PROPERTY,
    CONTACTS_BATCH_SIZE,
)
from meeting_sync.models import SyncEvent
from meeting_sync.retrier import AccountRetrier
from meeting_sync.utils import filter_null_values, normalize_property_name, parse_timestamp


class RecordTransformer:
    """
    Turns meeting search results into "Meeting Created" / "Meeting Updated" events.
    A meeting counts as created when it was created after the checkpoint the pass started
    from; otherwise it was updated. Participants are the e-mail addresses of the contacts
    associated with the meeting.
    """

    def __init__(self, client, remote: AccountRetrier, additional_properties: Sequence[str] = ()):
        self.client = client
        self.remote = remote
        self.additional_properties = list(additional_properties)
        self.records_skipped = 0

    def transform(self, raw_record: Dict[str, Any], checkpoint_before: Optional[datetime]) -> Optional[SyncEvent]:
        """Transform a single record, with its own participant lookup. Returns None for skipped records."""
        if not self._is_usable(raw_record):
            return None
        participants = self.resolve_participants([str(raw_record["id"])])
        return self.build_event(raw_record, checkpoint_before, participants.get(str(raw_record["id"]), ()))

    def transform_page(
        self, raw_records: List[Dict[str, Any]], checkpoint_before: Optional[datetime]
    ) -> List[SyncEvent]:
        """
        Transform every record of a page, looking up participants for the whole page at once.
        The result keeps the page order; skipped records are simply absent.
        """
        usable = [record for record in raw_records if self._is_usable(record)]
        if not usable:
            return []

        participants = self.resolve_participants([str(record["id"]) for record in usable])
        events = []
        for record in usable:
            event = self.build_event(record, checkpoint_before, participants.get(str(record["id"]), ()))
            if event is not None:
                events.append(event)
        return events

    def resolve_participants(self, meeting_ids: List[str]) -> Dict[str, Tuple[str, ...]]:
        """
        Resolve participant e-mails for the given meetings.
        Two sequential remote calls: the meeting to contact association lookup, then a batch
        read of the contacts (split in chunks of 100). Meetings without associated contacts map
        to an empty tuple; contacts without an e-mail address are left out.
        """
        self.remote.cancellation.raise_if_cancelled("participant lookup")
        contact_ids_by_meeting = self.remote.call(
            partial(self.client.read_meeting_contact_ids, meeting_ids), "meeting association lookup"
        )

        contact_ids = list(dict.fromkeys(cid for cids in contact_ids_by_meeting.values() for cid in cids))
        emails: Dict[str, str] = {}
        for start in range(0, len(contact_ids), CONTACTS_BATCH_SIZE):
            self.remote.cancellation.raise_if_cancelled("participant lookup")
            chunk = contact_ids[start : start + CONTACTS_BATCH_SIZE]
            contacts = self.remote.call(
                partial(self.client.read_contacts, chunk, [CONTACT_EMAIL_PROPERTY]), "contact batch read"
            )
            for contact in contacts:
                email = (contact.get("properties") or {}).get(CONTACT_EMAIL_PROPERTY)
                if email:
                    emails[str(contact.get("id"))] = email

        return {
            meeting_id: tuple(
                dict.fromkeys(emails[cid] for cid in contact_ids_by_meeting.get(meeting_id, []) if cid in emails)
            )
            for meeting_id in meeting_ids
        }

    def build_event(
        self,
        raw_record: Dict[str, Any],
        checkpoint_before: Optional[datetime],
        participants: Sequence[str] = (),
    ) -> Optional[SyncEvent]:
        try:
            created_at = parse_timestamp(raw_record.get("createdAt"))
            updated_at = parse_timestamp(raw_record.get("updatedAt"))
        except ValueError as e:
            return self._skip(raw_record, f"unparsable timestamp: {e}")

        if created_at is None or updated_at is None:
            return self._skip(raw_record, "missing createdAt or updatedAt")

        # Without a checkpoint this is the first pass, so everything is new
        is_created = checkpoint_before is None or created_at > checkpoint_before

        return SyncEvent(
            name=ACTION_MEETING_CREATED if is_created else ACTION_MEETING_UPDATED,
            occurred_at=created_at if is_created else updated_at,
            record_id=str(raw_record["id"]),
            fields=self.build_fields(raw_record),
            related_ids=tuple(participants),
        )

    def build_fields(self, raw_record: Dict[str, Any]) -> Dict[str, Any]:
        properties = raw_record.get("properties") or {}
        fields = {
            "meeting_id": str(raw_record["id"]),
            "meeting_title": properties.get("hs_meeting_title"),
            "meeting_start": properties.get("hs_meeting_start_time"),
            "meeting_end": properties.get("hs_meeting_end_time"),
        }
        for property_name in self.additional_properties:
            fields[normalize_property_name(property_name)] = properties.get(property_name)
        return filter_null_values(fields)

    def _is_usable(self, raw_record: Dict[str, Any]) -> bool:
        if not raw_record.get("properties"):
            self._skip(raw_record, "no properties payload")
            return False
        if raw_record.get("id") in (None, ""):
            self._skip(raw_record, "missing id")
            return False
        return True

    def _skip(self, raw_record: Dict[str, Any], reason: str) -> None:
        self.records_skipped += 1
        log.warning(f"Skipping meeting {raw_record.get('id', 'unknown')}: {reason}")
        return None
