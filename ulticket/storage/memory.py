"""
An in-memory MIFARE Ultralight token.

Behaves like the physical medium as far as the ticket protocol can tell:
pages 0-1 refuse writes, only the lock bytes of page 2 can change and only by
setting bits, page 3 only ever gains bits, and a page whose lock bit is set
refuses every later write.
"""

import os

from ulticket import constants as ucst
from ulticket.logging_utils import get_logger
from ulticket.security.tickets.errors import ProgrammingError
from ulticket.storage.interface import StorageBackend

logger = get_logger(__name__)

CASCADE_TAG = 0x88
INTERNAL_BYTE = 0x48

# Block-lock bits in lock byte 0 freeze groups of lock bits
BLOCK_LOCK_OTP = 0x01
BLOCK_LOCK_PAGES_4_9 = 0x02
BLOCK_LOCK_PAGES_10_15 = 0x04


def _lock_bit(page: int) -> tuple[int, int]:
    """Returns (lock byte index, bit mask) of the lock bit covering ``page``."""
    if page < 8:
        return 0, 1 << page
    return 1, 1 << (page - 8)


def _frozen_lock_masks(lock0: int) -> tuple[int, int]:
    frozen0 = 0
    frozen1 = 0
    if lock0 & BLOCK_LOCK_OTP:
        frozen0 |= 0x08
    if lock0 & BLOCK_LOCK_PAGES_4_9:
        frozen0 |= 0xF0
        frozen1 |= 0x03
    if lock0 & BLOCK_LOCK_PAGES_10_15:
        frozen1 |= 0xFC
    return frozen0, frozen1


class MemoryToken(StorageBackend):
    def __init__(self, uid: bytes | None = None) -> None:
        if uid is None:
            uid = b"\x04" + os.urandom(6)
        if len(uid) != 7:
            raise ProgrammingError(f"Token identity must be 7 bytes, got {len(uid)}.")
        self.uid = bytes(uid)
        self.memory = bytearray(ucst.MEMORY_SIZE)

        bcc0 = CASCADE_TAG ^ uid[0] ^ uid[1] ^ uid[2]
        bcc1 = uid[3] ^ uid[4] ^ uid[5] ^ uid[6]
        self.memory[0:4] = bytes([uid[0], uid[1], uid[2], bcc0])
        self.memory[4:8] = uid[3:7]
        self.memory[8:12] = bytes([bcc1, INTERNAL_BYTE, 0, 0])

    def _page(self, page: int) -> slice:
        return slice(page * ucst.PAGE_SIZE, (page + 1) * ucst.PAGE_SIZE)

    def is_locked(self, page: int) -> bool:
        if page < ucst.OTP_PAGE:
            return True
        byte_index, mask = _lock_bit(page)
        return bool(self.memory[ucst.LOCK_PAGE * ucst.PAGE_SIZE + ucst.LOCK_BYTE_0 + byte_index] & mask)

    def read_page(self, page: int) -> bytes | None:
        return bytes(self.memory[self._page(page)])

    def write_page(self, page: int, data: bytes) -> bool:
        if len(data) != ucst.PAGE_SIZE:
            raise ProgrammingError(f"Page writes take {ucst.PAGE_SIZE} bytes, got {len(data)}.")

        if page in ucst.IDENTITY_PAGES:
            logger.debug(f"Write to read-only page {page} refused")
            return False

        if page == ucst.LOCK_PAGE:
            return self._write_lock_bytes(data)

        if self.is_locked(page):
            logger.debug(f"Write to locked page {page} refused")
            return False

        if page == ucst.OTP_PAGE:
            current = self.memory[self._page(page)]
            self.memory[self._page(page)] = bytes(a | b for a, b in zip(current, data))
            return True

        self.memory[self._page(page)] = data
        return True

    def _write_lock_bytes(self, data: bytes) -> bool:
        offset = ucst.LOCK_PAGE * ucst.PAGE_SIZE
        lock0 = self.memory[offset + ucst.LOCK_BYTE_0]
        lock1 = self.memory[offset + ucst.LOCK_BYTE_1]
        frozen0, frozen1 = _frozen_lock_masks(lock0)

        # Bytes 0-1 of page 2 are part of the identity and stay as they are
        self.memory[offset + ucst.LOCK_BYTE_0] = lock0 | (data[ucst.LOCK_BYTE_0] & ~frozen0 & 0xFF)
        self.memory[offset + ucst.LOCK_BYTE_1] = lock1 | (data[ucst.LOCK_BYTE_1] & ~frozen1 & 0xFF)
        return True
