"""
Page-addressed access to a 16 page Ultralight token.

Backends implement single page reads and writes; the multi-page
``read_pages``/``write_pages`` calls used by the ticket code are built on top
of them here, together with the argument checks every backend shares.
"""

from abc import ABC, abstractmethod

from ulticket import constants as ucst
from ulticket.logging_utils import get_logger
from ulticket.security.tickets.errors import ProgrammingError

logger = get_logger(__name__)


def _check_page(page: int) -> None:
    if not isinstance(page, int) or page < 0 or page >= ucst.PAGE_COUNT:
        raise ProgrammingError(f"Memory page must be 0...{ucst.PAGE_COUNT - 1}. It was {page}.")


class StorageBackend(ABC):
    """
    Base class for everything the ticket protocol can read pages from and write pages to.

    A read returns ``None`` and a write returns ``False`` when the token answers
    with an error (for example a write to a locked page). A broken link to the
    token is raised as ``TransportError`` by the backend.
    """

    @abstractmethod
    def read_page(self, page: int) -> bytes | None:
        ...

    @abstractmethod
    def write_page(self, page: int, data: bytes) -> bool:
        ...

    def read_pages(self, start_page: int, count: int) -> bytes | None:
        _check_page(start_page)
        if count < 1 or start_page + count > ucst.PAGE_COUNT:
            raise ProgrammingError(f"Cannot read {count} pages starting at page {start_page}.")

        chunks: list[bytes] = []
        for page in range(start_page, start_page + count):
            data = self.read_page(page)
            if data is None:
                logger.debug(f"Read of page {page} failed")
                return None
            if len(data) != ucst.PAGE_SIZE:
                raise ProgrammingError(f"Backend returned {len(data)} bytes for page {page}.")
            chunks.append(bytes(data))
        return b"".join(chunks)

    def write_pages(self, start_page: int, data: bytes) -> bool:
        _check_page(start_page)
        if len(data) == 0 or len(data) % ucst.PAGE_SIZE != 0:
            raise ProgrammingError(
                f"Buffer of {len(data)} bytes. Ultralight is written {ucst.PAGE_SIZE} bytes at a time."
            )
        count = len(data) // ucst.PAGE_SIZE
        if start_page + count > ucst.PAGE_COUNT:
            raise ProgrammingError(f"Cannot write {count} pages starting at page {start_page}.")

        for i in range(count):
            page = start_page + i
            chunk = bytes(data[i * ucst.PAGE_SIZE : (i + 1) * ucst.PAGE_SIZE])
            if not self.write_page(page, chunk):
                logger.debug(f"Write of page {page} was refused")
                return False
        return True

    def read_memory(self) -> bytes | None:
        return self.read_pages(0, ucst.PAGE_COUNT)


def get_storage_backend(backend: StorageBackend, safe_mode: bool = True) -> StorageBackend:
    """
    Picks the backend variant the ticket code talks to.

    With safe mode on, lock writes are dropped and the OTP page is emulated on
    the spare page, so the token can be reformatted and reused. With it off every
    write goes straight to the token and OTP and lock bits are permanent.
    """
    # Imported here because safe_mode subclasses StorageBackend
    from ulticket.storage.safe_mode import SafeModeStorage

    if isinstance(backend, SafeModeStorage):
        backend = backend.direct
    if safe_mode:
        logger.info("You are currently working in safe mode (practice mode).")
        return SafeModeStorage(backend)
    logger.warning(
        "You are currently working in UNSAFE mode. It may not be possible to erase or reuse the token after this."
    )
    return backend


def unwrap(backend: StorageBackend) -> StorageBackend:
    """Returns the backend underneath any safe mode emulation."""
    from ulticket.storage.safe_mode import SafeModeStorage

    while isinstance(backend, SafeModeStorage):
        backend = backend.direct
    return backend
