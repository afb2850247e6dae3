"""
Safe mode emulation of the irreversible parts of an Ultralight token.

Writes to the lock page never reach the token and the one-time-programmable
page is emulated on the spare page 15 with OR-merged writes, so the same token
can be formatted, issued and used over and over while testing.
"""

from ulticket import constants as ucst
from ulticket.logging_utils import get_logger
from ulticket.storage.interface import StorageBackend

logger = get_logger(__name__)


class SafeModeStorage(StorageBackend):
    def __init__(self, direct: StorageBackend) -> None:
        self.direct = direct

    def read_page(self, page: int) -> bytes | None:
        if page == ucst.OTP_PAGE:
            return self.direct.read_page(ucst.SPARE_PAGE)
        return self.direct.read_page(page)

    def write_page(self, page: int, data: bytes) -> bool:
        if page in (ucst.LOCK_PAGE, ucst.SPARE_PAGE):
            logger.debug(f"Safe mode: ignoring write to page {page}")
            return True

        if page != ucst.OTP_PAGE:
            return self.direct.write_page(page, data)

        current = self.direct.read_page(ucst.SPARE_PAGE)
        if current is None:
            return False
        merged = bytes(a | b for a, b in zip(current, data))
        logger.debug(f"Safe mode: OTP write {data.hex()} merged into page {ucst.SPARE_PAGE} as {merged.hex()}")
        return self.direct.write_page(ucst.SPARE_PAGE, merged)
