"""
PC/SC transport for Ultralight tokens.

Contactless PC/SC readers translate the storage pseudo-APDUs ``FF B0`` (read
binary) and ``FF D6`` (update binary) into the Ultralight READ (0x30) and
WRITE (0xA2) commands, always 4 bytes at a time.
"""

from smartcard.Exceptions import NoCardException, SmartcardException
from smartcard.System import readers
from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

from ulticket import constants as ucst
from ulticket.logging_utils import get_logger
from ulticket.security.tickets.errors import TransportError
from ulticket.storage.interface import StorageBackend

logger = get_logger(__name__)

# Status words as documented for SCL01x readers. Other readers use different
# codes, so treat the text as a hint only.
STATUS_MESSAGES: dict[tuple[int, int], str] = {
    (0x90, 0x00): "NO ERROR",
    (0x62, 0x81): "WARNING: part of the returned data may be corrupted",
    (0x62, 0x82): "WARNING: end of file reached before Le bytes where read",
    (0x64, 0x00): "State of the non-volatile memory unchanged",
    (0x67, 0x00): "Length incorrect",
    (0x68, 0x00): "CLA byte incorrect",
    (0x69, 0x81): "Command not supported",
    (0x69, 0x82): "Security status not satisfied",
    (0x69, 0x86): "Command not allowed",
    (0x6A, 0x81): "Function not supported",
    (0x6A, 0x82): "File not found, addressed blocks or bytes do not exist",
    (0x6B, 0x00): "Wrong P1, P2 parameters",
}


def status_message(sw1: int, sw2: int) -> str:
    if (sw1, sw2) in STATUS_MESSAGES:
        return STATUS_MESSAGES[(sw1, sw2)]
    if sw1 == 0x6C:
        return f"Wrong Le, 0x{sw2:02X} is the correct value"
    return "Undefined error code"


def _hex(data: list[int] | bytes) -> str:
    return " ".join(f"{b:02X}" for b in data)


class PcscReader(StorageBackend):
    def __init__(self, connection, trace_apdus: bool = False) -> None:
        self.connection = connection
        self.trace_apdus = trace_apdus

    @classmethod
    def connect(
        cls,
        reader_index: int = 0,
        timeout: float = ucst.DEFAULT_CARD_TIMEOUT,
        trace_apdus: bool = False,
    ) -> "PcscReader":
        try:
            available = readers()
        except SmartcardException as e:
            raise TransportError(f"No smart card reader found: {e}") from e
        if len(available) == 0:
            raise TransportError("No smart card reader found.")
        if len(available) > 1:
            logger.warning(f"Multiple smart card readers, selecting number {reader_index}.")
        if reader_index >= len(available):
            raise TransportError(f"Reader {reader_index} does not exist, found {len(available)} readers.")

        reader = available[reader_index]
        logger.info(f"Reader name: {reader}")
        connection = reader.createConnection()

        logger.info("Waiting for MIFARE Ultralight token...")
        wait_for_card = retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(0.5),
            retry=retry_if_exception_type(NoCardException),
            reraise=True,
        )(connection.connect)
        try:
            wait_for_card()
        except SmartcardException as e:
            raise TransportError(f"Unable to connect to the token: {e}") from e
        logger.info("Found a token.")

        pcsc_reader = cls(connection, trace_apdus=trace_apdus)
        pcsc_reader.check_atr()
        return pcsc_reader

    def check_atr(self) -> bool:
        atr = bytes(self.connection.getATR())
        if atr == ucst.ULTRALIGHT_ATR:
            logger.info("It is an Ultralight token.")
            return True
        logger.warning(f"Unrecognized ATR {_hex(atr)}. Probably not an Ultralight token.")
        return False

    def disconnect(self) -> None:
        self.connection.disconnect()

    def _transmit(self, apdu: list[int]) -> tuple[list[int], int, int]:
        if self.trace_apdus:
            logger.debug(f"==> {_hex(apdu)}")
        try:
            data, sw1, sw2 = self.connection.transmit(apdu)
        except SmartcardException as e:
            raise TransportError(f"Sending command to the token failed: {e}", page=apdu[3]) from e
        if self.trace_apdus:
            logger.debug(f"<== {_hex(list(data) + [sw1, sw2])}")
        return list(data), sw1, sw2

    def _status_ok(self, sw1: int, sw2: int) -> bool:
        if (sw1, sw2) != ucst.SW_SUCCESS:
            logger.error(f"Token returned error status (sw1=0x{sw1:02X}, sw2=0x{sw2:02X}). {status_message(sw1, sw2)}")
            return False
        return True

    def read_page(self, page: int) -> bytes | None:
        apdu = [*ucst.APDU_READ_BINARY, page, ucst.PAGE_SIZE]
        data, sw1, sw2 = self._transmit(apdu)
        if not self._status_ok(sw1, sw2):
            return None
        if len(data) < ucst.PAGE_SIZE:
            logger.error(f"Ultralight response length {len(data)} is not normal.")
            return None
        return bytes(data[: ucst.PAGE_SIZE])

    def write_page(self, page: int, data: bytes) -> bool:
        apdu = [*ucst.APDU_UPDATE_BINARY, page, ucst.PAGE_SIZE, *data]
        response, sw1, sw2 = self._transmit(apdu)
        if not self._status_ok(sw1, sw2):
            return False
        if len(response) != 0:
            logger.error(f"Ultralight response length {len(response)} is not normal.")
            return False
        return True
