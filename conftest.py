import pytest
from fivetran_connector_sdk import Logging


@pytest.fixture(autouse=True)
def connector_log_level():
    # Connector.debug() normally sets the level; tests call the sync code directly
    previous = Logging.LOG_LEVEL
    Logging.LOG_LEVEL = Logging.Level.INFO
    yield
    Logging.LOG_LEVEL = previous
