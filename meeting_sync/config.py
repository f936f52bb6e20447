"""Configuration management for the HubSpot meetings connector."""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from dotenv import load_dotenv

from meeting_sync.constants import (
    BASE_DELAY_SECONDS,
    DEFAULT_MAX_PARALLEL_ACCOUNTS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MAX_ATTEMPTS,
    MAX_PAGE_SIZE,
)
from meeting_sync.utils import parse_timestamp

# Load environment variables from .env file
load_dotenv()


@dataclass
class AccountConfig:
    hub_id: str
    refresh_token: str


@dataclass
class MeetingSyncConfig:
    """Configuration class for the HubSpot meetings connector."""

    client_id: str
    client_secret: str
    accounts: List[AccountConfig]
    initial_sync_start_date: Optional[datetime] = None
    page_size: int = DEFAULT_PAGE_SIZE
    max_attempts: int = MAX_ATTEMPTS
    base_delay_seconds: float = BASE_DELAY_SECONDS
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_parallel_accounts: int = DEFAULT_MAX_PARALLEL_ACCOUNTS
    pass_timeout_seconds: int = 0
    deduplicate_records: bool = True
    additional_properties: List[str] = field(default_factory=list)


def parse_configuration(configuration: dict) -> MeetingSyncConfig:
    """
    Parse the configuration dictionary. Fivetran hands every value over as a string.
    The OAuth client id and secret fall back to the HUBSPOT_CID and HUBSPOT_CS environment variables.
    Raises:
        ValueError: if ``accounts`` or ``initial_sync_start_date`` cannot be parsed.
    """

    def safe_int(value: Any, default: int) -> int:
        try:
            return int(str(value))
        except (ValueError, TypeError):
            return default

    def safe_float(value: Any, default: float) -> float:
        try:
            return float(str(value))
        except (ValueError, TypeError):
            return default

    def safe_bool(value: Any, default: bool) -> bool:
        return str(value).lower() == "true" if value is not None else default

    def parse_accounts(accounts_str: Any) -> List[AccountConfig]:
        if not accounts_str:
            return []
        try:
            raw_accounts = json.loads(accounts_str) if isinstance(accounts_str, str) else accounts_str
        except json.JSONDecodeError as e:
            raise ValueError(f"accounts must be a JSON list: {e}")
        if not isinstance(raw_accounts, list):
            raise ValueError("accounts must be a JSON list")
        return [
            AccountConfig(
                hub_id=str(account.get("hub_id", "")).strip(),
                refresh_token=str(account.get("refresh_token", "")).strip(),
            )
            for account in raw_accounts
        ]

    def parse_list(value: Any) -> List[str]:
        if not value or str(value).strip() == "":
            return []
        return [item.strip() for item in str(value).split(",") if item.strip()]

    start_date = configuration.get("initial_sync_start_date")
    try:
        initial_sync_start_date = parse_timestamp(start_date) if start_date else None
    except ValueError as e:
        raise ValueError(f"initial_sync_start_date is not a valid ISO-8601 timestamp: {e}")

    return MeetingSyncConfig(
        client_id=str(configuration.get("client_id") or os.getenv("HUBSPOT_CID", "")).strip(),
        client_secret=str(configuration.get("client_secret") or os.getenv("HUBSPOT_CS", "")).strip(),
        accounts=parse_accounts(configuration.get("accounts")),
        initial_sync_start_date=initial_sync_start_date,
        page_size=safe_int(configuration.get("page_size"), DEFAULT_PAGE_SIZE),
        max_attempts=safe_int(configuration.get("max_attempts"), MAX_ATTEMPTS),
        base_delay_seconds=safe_float(configuration.get("base_delay_seconds"), BASE_DELAY_SECONDS),
        request_timeout_seconds=safe_int(
            configuration.get("request_timeout_seconds"), DEFAULT_REQUEST_TIMEOUT_SECONDS
        ),
        max_parallel_accounts=safe_int(
            configuration.get("max_parallel_accounts"), DEFAULT_MAX_PARALLEL_ACCOUNTS
        ),
        pass_timeout_seconds=safe_int(configuration.get("pass_timeout_seconds"), 0),
        deduplicate_records=safe_bool(configuration.get("deduplicate_records"), True),
        additional_properties=parse_list(configuration.get("additional_properties")),
    )


def validate_configuration(config: MeetingSyncConfig) -> None:
    """Validate the meetings connector configuration."""
    if not config.client_id:
        raise ValueError("client_id is required (configuration or HUBSPOT_CID)")

    if not config.client_secret:
        raise ValueError("client_secret is required (configuration or HUBSPOT_CS)")

    if not config.accounts:
        raise ValueError("accounts must list at least one HubSpot account")

    hub_ids = [account.hub_id for account in config.accounts]
    for account in config.accounts:
        if not account.hub_id or not account.refresh_token:
            raise ValueError("every account needs a hub_id and a refresh_token")
    if len(set(hub_ids)) != len(hub_ids):
        raise ValueError("accounts contains duplicate hub_id values")

    if not (1 <= config.page_size <= MAX_PAGE_SIZE):
        raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    if config.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    if config.base_delay_seconds < 0:
        raise ValueError("base_delay_seconds cannot be negative")

    if config.max_parallel_accounts < 1:
        raise ValueError("max_parallel_accounts must be at least 1")

    if config.pass_timeout_seconds < 0:
        raise ValueError("pass_timeout_seconds cannot be negative")
