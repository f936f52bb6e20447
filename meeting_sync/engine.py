"""Runs one incremental pass over an account's meetings."""

from datetime import datetime, timezone
from typing import Callable, Optional

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

from meeting_sync.api_client import HubSpotClient
from meeting_sync.cancellation import CancellationToken
from meeting_sync.checkpoint import CheckpointStore
from meeting_sync.config import MeetingSyncConfig
from meeting_sync.constants import LAST_MODIFIED_PROPERTY
from meeting_sync.credentials import CredentialStore
from meeting_sync.event_queue import EventQueue
from meeting_sync.models import PassResult, SearchWindow
from meeting_sync.pager import CursorPager
from meeting_sync.retrier import AccountRetrier, BackoffRetrier
from meeting_sync.transformer import RecordTransformer


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MeetingSyncEngine:
    """
    Ties the pieces of a pass together: the checkpoint gives the window start, the pager walks
    the window through the retrier, each page is transformed and queued, and only after the
    pager reports the natural end of results is the checkpoint moved to the pass start time.

    An exception out of ``run_pass`` (exhausted retries, non-retryable HTTP error, stalled
    pagination, cancellation) leaves the checkpoint untouched, so the whole pass can simply be
    run again later.
    """

    def __init__(
        self,
        config: MeetingSyncConfig,
        credentials: CredentialStore,
        checkpoints: CheckpointStore,
        events: EventQueue,
        client_factory: Optional[Callable[[str], object]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.config = config
        self.credentials = credentials
        self.checkpoints = checkpoints
        self.events = events
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._clock = clock

    def _default_client(self, account_id: str) -> HubSpotClient:
        return HubSpotClient(account_id, self.credentials, timeout=self.config.request_timeout_seconds)

    def new_cancellation(self) -> CancellationToken:
        return CancellationToken(self.config.pass_timeout_seconds or None)

    def run_pass(self, account_id: str, cancellation: Optional[CancellationToken] = None) -> PassResult:
        """
        Synchronize the meetings modified since the account's checkpoint.
        Args:
            account_id: the HubSpot hub id.
            cancellation: token checked at every suspension point; a new one honoring
                ``pass_timeout_seconds`` is created when omitted.
        Returns:
            A PassResult summarizing the pass.
        Raises:
            MeetingSyncError: the pass was aborted and the checkpoint was not committed.
            requests.HTTPError: a remote call failed with a non-retryable status.
        """
        cancellation = cancellation or self.new_cancellation()

        checkpoint_before = self.checkpoints.read(account_id) or self.config.initial_sync_start_date
        window = SearchWindow(start=checkpoint_before, end=self._clock())
        log.info(f"Starting meetings pass for account {account_id}, window {window.start} to {window.end}")

        client = self._client_factory(account_id)
        retrier = BackoffRetrier(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.base_delay_seconds,
            cancellation=cancellation,
            sleep=self._sleep,
            clock=self._clock,
        )
        remote = AccountRetrier(retrier, self.credentials, account_id)
        remote.ensure_valid()

        pager = CursorPager(
            client,
            remote,
            properties=self.config.additional_properties,
            deduplicate=self.config.deduplicate_records,
        )
        transformer = RecordTransformer(client, remote, self.config.additional_properties)

        result = PassResult(account_id=account_id, window=window)
        for page in pager.pages(window, LAST_MODIFIED_PROPERTY, self.config.page_size):
            page_events = transformer.transform_page(page, checkpoint_before)
            # A page is queued all at once or not at all
            cancellation.raise_if_cancelled("page processing")
            for event in page_events:
                self.events.put(account_id, event)
            result.events_emitted += len(page_events)

        result.pages_fetched = pager.pages_fetched
        result.rewinds = pager.rewinds
        result.duplicates_skipped = pager.duplicates_skipped
        result.records_skipped = transformer.records_skipped

        self.checkpoints.commit(account_id, window.end)
        log.info(
            f"Meetings pass for account {account_id} completed: {result.events_emitted} events, "
            f"{result.pages_fetched} pages, {result.rewinds} rewinds, {result.duplicates_skipped} duplicates skipped"
        )
        return result
