from enum import Enum

from pydantic import BaseModel

from ulticket import constants as ucst
from ulticket.security.tickets.errors import ProgrammingError


class UseOutcome(str, Enum):
    VALID = "valid"
    AUTHENTICATION_FAILED = "authentication_failed"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    COUNTER_CORRUPTED = "counter_corrupted"


class TicketRecord(BaseModel):
    """
    A ticket as read from pages 0..8 of the token.

    Attributes:
        identity (bytes): Pages 0..1 plus the check byte of page 2 (read-only).
        lock_bytes (bytes): The two lock bytes of page 2.
        counter_bits (int): Raw 32-bit OTP value, a unary count of consumed uses.
        application_tag (bytes): Page 4, marks the token as a ticket.
        expiry_time (int): Minutes since the Unix epoch.
        allowed_uses (int): Total uses granted.
        auth_code (bytes): The 8 MAC bytes of pages 7..8.
        pages (bytes): The raw pages the record was parsed from.
    """

    identity: bytes
    lock_bytes: bytes
    counter_bits: int
    application_tag: bytes
    expiry_time: int
    allowed_uses: int
    auth_code: bytes
    pages: bytes

    @classmethod
    def from_pages(cls, pages: bytes) -> "TicketRecord":
        needed = (ucst.MAC_PAGE + ucst.MAC_PAGE_COUNT) * ucst.PAGE_SIZE
        if len(pages) < needed:
            raise ProgrammingError(f"A ticket record needs {needed} bytes, got {len(pages)}.")

        def page(number: int, count: int = 1) -> bytes:
            return pages[number * ucst.PAGE_SIZE : (number + count) * ucst.PAGE_SIZE]

        lock_page = page(ucst.LOCK_PAGE)
        return cls(
            identity=page(0, 2) + lock_page[:1],
            lock_bytes=lock_page[ucst.LOCK_BYTE_0 :],
            counter_bits=int.from_bytes(page(ucst.OTP_PAGE), "big"),
            application_tag=page(ucst.TAG_PAGE),
            expiry_time=int.from_bytes(page(ucst.EXPIRY_PAGE), "big"),
            allowed_uses=int.from_bytes(page(ucst.USES_PAGE), "big"),
            auth_code=page(ucst.MAC_PAGE, ucst.MAC_PAGE_COUNT),
            pages=bytes(pages[:needed]),
        )

    @property
    def is_locked(self) -> bool:
        return any(self.lock_bytes)


class UseResult(BaseModel):
    """
    Outcome of a single ``use`` of a ticket.

    ``remaining_uses`` is counted before any consumption when the ticket is invalid.
    """

    valid: bool
    remaining_uses: int
    expiry_time: int
    outcome: UseOutcome


class ReissueResult(BaseModel):
    success: bool
    remaining_uses: int = 0
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.success
