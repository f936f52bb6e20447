"""Static values shared by the meeting sync engine and the connector."""

# HubSpot endpoints
API_BASE_URL = "https://api.hubapi.com"
TOKEN_URL = f"{API_BASE_URL}/oauth/v1/token"
MEETINGS_SEARCH_URL = f"{API_BASE_URL}/crm/v3/objects/meetings/search"
MEETING_CONTACT_ASSOCIATIONS_URL = f"{API_BASE_URL}/crm/v4/associations/meetings/contacts/batch/read"
CONTACTS_BATCH_READ_URL = f"{API_BASE_URL}/crm/v3/objects/contacts/batch/read"

# The search endpoint refuses offsets past 10 000 results, so with pages of 100
# the last usable offset is 9900.
MAX_OFFSET = 9900

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 100

# Contacts batch read accepts at most 100 inputs per call
CONTACTS_BATCH_SIZE = 100

# Retry budget: one attempt plus four retries, waiting BASE_DELAY * 2 ** n seconds before retry n
MAX_ATTEMPTS = 5
BASE_DELAY_SECONDS = 5.0

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_MAX_PARALLEL_ACCOUNTS = 4

# HTTP status codes worth another attempt
RETRYABLE_STATUS_CODES = {401, 408, 429, 500, 502, 503, 504}
UNAUTHORIZED_STATUS_CODE = 401

ENTITY_MEETINGS = "meetings"
LAST_MODIFIED_PROPERTY = "hs_lastmodifieddate"

MEETING_PROPERTIES = [
    "hs_meeting_title",
    "hs_meeting_start_time",
    "hs_meeting_end_time",
]

CONTACT_EMAIL_PROPERTY = "email"

ACTION_MEETING_CREATED = "Meeting Created"
ACTION_MEETING_UPDATED = "Meeting Updated"

DESTINATION_TABLE = "meeting_event"
