import os
from functools import lru_cache

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from dotenv import load_dotenv

from ulticket import constants as ucst
from ulticket.core.models.config import Config
from ulticket.logging_utils import get_logger
from ulticket.security.tickets.authenticator import RecordAuthenticator
from ulticket.security.tickets.errors import TicketConfigurationError

logger = get_logger(__name__)

load_dotenv()


def _derive_key_from_string(input_string: str, salt: bytes = ucst.PASSPHRASE_SALT) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=ucst.MIN_KEY_LENGTH,
        salt=salt,
        iterations=100000,
    )
    return kdf.derive(input_string.encode())


def load_mac_key() -> bytes:
    """
    Reads the shared MAC key from the environment.

    ``TICKET_MAC_KEY`` (hex) wins over ``TICKET_MAC_PASSPHRASE``, which is
    stretched with PBKDF2. Having neither is a configuration error.
    """
    hex_key = os.getenv("TICKET_MAC_KEY")
    if hex_key:
        try:
            return bytes.fromhex(hex_key.strip())
        except ValueError as e:
            raise TicketConfigurationError("TICKET_MAC_KEY must be a hex string") from e

    passphrase = os.getenv("TICKET_MAC_PASSPHRASE")
    if passphrase:
        return _derive_key_from_string(passphrase)

    raise TicketConfigurationError("Must set TICKET_MAC_KEY or TICKET_MAC_PASSPHRASE env var please!")


@lru_cache
def factory_config() -> Config:
    algorithm = os.getenv("TICKET_MAC_ALGORITHM", "sha1")
    safe_mode = os.getenv("TICKET_SAFE_MODE", "true").lower() == "true"
    reader_index = int(os.getenv("TICKET_READER_INDEX", 0))
    card_timeout = float(os.getenv("TICKET_CARD_TIMEOUT", ucst.DEFAULT_CARD_TIMEOUT))

    authenticator = RecordAuthenticator(load_mac_key(), algorithm=algorithm)
    logger.debug(f"MAC algorithm {authenticator.algorithm_name}, safe mode {safe_mode}")

    return Config(
        authenticator=authenticator,
        safe_mode=safe_mode,
        reader_index=reader_index,
        card_timeout=card_timeout,
    )
