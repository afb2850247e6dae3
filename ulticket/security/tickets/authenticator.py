from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import constant_time, hashes, hmac

from ulticket import constants as ucst
from ulticket.logging_utils import get_logger
from ulticket.security.tickets.errors import ProgrammingError, TicketConfigurationError

logger = get_logger(__name__)

ALGORITHMS: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
    "sha512": hashes.SHA512,
}


class RecordAuthenticator:
    """
    Computes and checks the MAC protecting a ticket record.

    The key is shared by the issuer and every checker and is never derived from
    the record. Only the first 8 bytes of the MAC fit on the token, so only those
    are compared; 64 bits is a deliberate trade of security margin for storage.

    Attributes:
        algorithm_name (str): Name of the HMAC digest, e.g. ``"sha1"``.
        mac_length (int): Length of the full, untruncated MAC in bytes.
    """

    def __init__(self, key: bytes, algorithm: str = "sha1"):
        if len(key) < ucst.MIN_KEY_LENGTH:
            raise TicketConfigurationError(
                f"MAC key must be at least {ucst.MIN_KEY_LENGTH} bytes, got {len(key)}."
            )
        if algorithm.lower() not in ALGORITHMS:
            raise TicketConfigurationError(f"Unknown MAC algorithm {algorithm!r}.")

        self.algorithm_name = algorithm.lower()
        self._key = key
        self._algorithm = ALGORITHMS[self.algorithm_name]

        # Probe the digest so a missing algorithm surfaces here
        try:
            self.mac_length = len(self.generate(b""))
        except UnsupportedAlgorithm as e:
            raise TicketConfigurationError(f"MAC algorithm {algorithm!r} is not available: {e}") from e

        if self.mac_length < ucst.MAC_LENGTH:
            raise ProgrammingError("Bug: The MAC is too short.")

    def generate(self, record: bytes) -> bytes:
        """
        Computes the full HMAC over ``record``.

        Args:
            record (bytes): Canonical record bytes (lock bytes and OTP zeroed).

        Returns:
            bytes: The untruncated MAC.
        """
        h = hmac.HMAC(self._key, self._algorithm())
        h.update(record)
        return h.finalize()

    def truncated(self, record: bytes) -> bytes:
        return self.generate(record)[: ucst.MAC_LENGTH]

    def verify(self, record: bytes, stored_code: bytes) -> bool:
        """
        Checks the MAC stored on the token against a freshly computed one.

        Args:
            record (bytes): Canonical record bytes.
            stored_code (bytes): MAC bytes read from the token; only the first 8 are used.

        Returns:
            bool: True if the first 8 bytes match.
        """
        if len(stored_code) < ucst.MAC_LENGTH:
            raise ProgrammingError(f"Stored MAC is {len(stored_code)} bytes, need {ucst.MAC_LENGTH}.")
        return constant_time.bytes_eq(self.truncated(record), bytes(stored_code[: ucst.MAC_LENGTH]))
