from ulticket import constants as ucst
from ulticket.logging_utils import get_logger
from ulticket.storage.interface import StorageBackend

logger = get_logger(__name__)

_PAGE_LABELS = {
    0: "identity",
    1: "identity",
    2: "check/internal/lock",
    ucst.OTP_PAGE: "OTP",
    ucst.TAG_PAGE: "application tag",
    ucst.EXPIRY_PAGE: "expiry time",
    ucst.USES_PAGE: "allowed uses",
    ucst.MAC_PAGE: "MAC",
    ucst.MAC_PAGE + 1: "MAC",
    ucst.SPARE_PAGE: "spare",
}


def erase_memory(storage: StorageBackend, start_page: int = ucst.FIRST_APPLICATION_PAGE) -> bool:
    """
    Zeroes every page from ``start_page`` to the end of memory.

    Stops at the first refused write, which on a real token means a page is locked.
    OTP and lock bits are never touched.
    """
    zeros = bytes(ucst.PAGE_SIZE)
    for page in range(start_page, ucst.PAGE_COUNT):
        if not storage.write_pages(page, zeros):
            logger.error(f"Could not erase page {page}, it is probably locked")
            return False
    return True


def format_memory(memory: bytes) -> str:
    lines = ["Page  Data          Content"]
    for page in range(len(memory) // ucst.PAGE_SIZE):
        chunk = memory[page * ucst.PAGE_SIZE : (page + 1) * ucst.PAGE_SIZE]
        hex_bytes = " ".join(f"{b:02X}" for b in chunk)
        lines.append(f"{page:>4}  {hex_bytes}   {_PAGE_LABELS.get(page, '')}".rstrip())
    return "\n".join(lines)


def dump_memory(storage: StorageBackend) -> str | None:
    memory = storage.read_memory()
    if memory is None:
        logger.error("Could not read token memory")
        return None
    return format_memory(memory)
