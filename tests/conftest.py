import pytest

from ulticket.security.tickets.authenticator import RecordAuthenticator
from ulticket.security.tickets.manager import TicketManager
from ulticket.storage.memory import MemoryToken
from ulticket.storage.safe_mode import SafeModeStorage

TEST_KEY = bytes.fromhex("f6ca6c9a03ffd065944aad9dd6b0b629")
TEST_UID = bytes.fromhex("04a1b2c3d4e5f6")

# Minutes since the epoch, 2024-01-01 00:00 UTC
NOW = 28_401_120
HOUR = 60
DAY = 24 * HOUR


@pytest.fixture
def token():
    return MemoryToken(uid=TEST_UID)


@pytest.fixture
def safe_storage(token):
    return SafeModeStorage(token)


@pytest.fixture
def authenticator():
    return RecordAuthenticator(TEST_KEY)


@pytest.fixture
def manager(token, authenticator):
    """Ticket manager writing straight to the in-memory token."""
    return TicketManager(token, authenticator)


@pytest.fixture
def safe_manager(safe_storage, authenticator):
    """Ticket manager behind safe mode emulation."""
    return TicketManager(safe_storage, authenticator)


@pytest.fixture
def issued(manager):
    assert manager.format()
    assert manager.issue(NOW + 30 * DAY, 10)
    return manager
