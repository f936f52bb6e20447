"""HubSpot Meetings incremental sync connector for the Fivetran Connector SDK.

This connector pulls HubSpot meetings modified since the previous sync for one or more
HubSpot accounts and delivers them as "Meeting Created" / "Meeting Updated" events.
Each account keeps its own checkpoint in the connector state, so a sync only fetches
meetings changed since the last successful pass of that account.
Accounts are synced in parallel; each account's pass is sequential.

See the Technical Reference documentation:
https://fivetran.com/docs/connectors/connector-sdk/technical-reference#update
and the Best Practices documentation:
https://fivetran.com/docs/connectors/connector-sdk/best-practices
"""

# For reading configuration from a JSON file
import json

# For running the account passes in parallel
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Tuple

# Import required classes from fivetran_connector_sdk
from fivetran_connector_sdk import Connector

# For enabling Logs in your connector code
from fivetran_connector_sdk import Logging as log

# For supporting Data operations like Upsert(), Update(), Delete() and checkpoint()
from fivetran_connector_sdk import Operations as op

from meeting_sync.checkpoint import CheckpointStore
from meeting_sync.config import parse_configuration, validate_configuration
from meeting_sync.constants import DESTINATION_TABLE
from meeting_sync.credentials import CredentialStore
from meeting_sync.engine import MeetingSyncEngine
from meeting_sync.event_queue import EventQueue
from meeting_sync.models import PassResult, SyncEvent
from meeting_sync.utils import format_timestamp

# Seconds the main thread waits for a queued event before checking whether the passes finished
__QUEUE_POLL_SECONDS = 0.2


def schema(configuration: dict) -> List[Dict[str, Any]]:
    """
    Define the schema function which lets you configure the schema your connector delivers.
    See the technical reference documentation for more details on the schema function:
    https://fivetran.com/docs/connectors/connector-sdk/technical-reference#schema
    Args:
        configuration: a dictionary that holds the configuration settings for the connector.
    """
    return [
        {
            "table": DESTINATION_TABLE,
            "primary_key": ["meeting_id", "action_name", "action_date"],
            "columns": {
                "meeting_id": "STRING",
                "action_name": "STRING",
                "action_date": "UTC_DATETIME",
                "hub_id": "STRING",
                "meeting_title": "STRING",
                "meeting_start": "STRING",
                "meeting_end": "STRING",
                "participants": "STRING",
            },
        }
    ]


def build_event_row(account_id: str, event: SyncEvent) -> Dict[str, Any]:
    """
    Flatten a SyncEvent into a destination row.
    Participants are stored as a JSON encoded list of e-mail addresses.
    """
    row = dict(event.fields)
    row.update(
        {
            "meeting_id": event.record_id,
            "action_name": event.name,
            "action_date": format_timestamp(event.occurred_at),
            "hub_id": account_id,
            "participants": json.dumps(list(event.related_ids)),
        }
    )
    return row


def upsert_event(account_id: str, event: SyncEvent) -> None:
    # The 'upsert' operation is used to insert or update data in the destination table.
    # The op.upsert method is called with two arguments:
    # - The first argument is the name of the table to upsert the data into.
    # - The second argument is a dictionary containing the data to be upserted,
    op.upsert(table=DESTINATION_TABLE, data=build_event_row(account_id, event))


def sync_accounts(
    engine: MeetingSyncEngine, events: EventQueue, account_ids: List[str], max_workers: int
) -> Tuple[Dict[str, PassResult], Dict[str, Exception]]:
    """
    Run one pass per account on a thread pool and upsert the queued events from the main thread.
    Worker threads never call Operations themselves; they only fill the event queue.
    A failed pass does not stop the other accounts.
    Args:
        engine: the sync engine shared by every pass.
        events: the queue the passes push their events to.
        account_ids: HubSpot hub ids to sync.
        max_workers: maximum number of accounts synced at the same time.
    Returns:
        The PassResult of every successful account and the exception of every failed one.
    """
    results: Dict[str, PassResult] = {}
    failures: Dict[str, Exception] = {}
    upserted = 0

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_account = {executor.submit(engine.run_pass, account_id): account_id for account_id in account_ids}

        pending = set(future_to_account)
        while pending:
            item = events.get(timeout=__QUEUE_POLL_SECONDS)
            if item is not None:
                upsert_event(*item)
                upserted += 1
            pending = {future for future in pending if not future.done()}

        for future, account_id in future_to_account.items():
            try:
                results[account_id] = future.result()
            except Exception as e:
                log.severe(f"Meetings sync failed for account {account_id}: {e}")
                failures[account_id] = e

    for account_id, event in events.drain():
        upsert_event(account_id, event)
        upserted += 1

    log.info(f"Upserted {upserted} meeting events from {len(results)} of {len(account_ids)} accounts")
    return results, failures


def update(configuration: dict, state: dict) -> None:
    """
    Define the update function, which is a required function, and is called by Fivetran during each sync.
    See the technical reference documentation for more details on the update function
    https://fivetran.com/docs/connectors/connector-sdk/technical-reference#update
    Args:
        configuration: A dictionary containing connection details
        state: A dictionary containing state information from previous runs
        The state dictionary is empty for the first sync or for any full re-sync
    """
    config = parse_configuration(configuration)
    validate_configuration(config)

    credentials = CredentialStore(config.client_id, config.client_secret, timeout=config.request_timeout_seconds)
    for account in config.accounts:
        credentials.register(account.hub_id, account.refresh_token)

    checkpoints = CheckpointStore(state)
    events = EventQueue()
    engine = MeetingSyncEngine(config, credentials, checkpoints, events)

    account_ids = [account.hub_id for account in config.accounts]
    log.info(f"Starting meetings sync for {len(account_ids)} account(s)")
    results, failures = sync_accounts(engine, events, account_ids, config.max_parallel_accounts)

    # Only accounts whose pass reached the end of its results have moved their checkpoint.
    # Save the progress by checkpointing the state. This is important for ensuring that the sync process can resume
    # from the correct position in case of next sync or interruptions.
    # Learn more about how and where to checkpoint by reading our best practices documentation
    # (https://fivetran.com/docs/connectors/connector-sdk/best-practices#largedatasetrecommendation).
    op.checkpoint(checkpoints.snapshot())

    if failures:
        failed = ", ".join(sorted(failures))
        raise RuntimeError(f"Meetings sync failed for account(s): {failed}")

    log.info(f"Meetings sync completed successfully for {len(results)} account(s)")


# Create the connector object using the schema and update functions
connector = Connector(update=update, schema=schema)

# Check if the script is being run as the main module.
# This is Python's standard entry method allowing your script to be run directly from the command line or IDE 'run' button.
# This is useful for debugging while you write your code. Note this method is not called by Fivetran when executing your connector in production.
# Please test using the Fivetran debug command prior to finalizing and deploying your connector.
if __name__ == "__main__":
    # Open the configuration.json file and load its contents
    with open("configuration.json", "r") as f:
        configuration = json.load(f)

    # Test the connector locally
    connector.debug(configuration=configuration)
