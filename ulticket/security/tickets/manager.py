from ulticket import constants as ucst
from ulticket.logging_utils import get_logger
from ulticket.security.tickets import operations
from ulticket.security.tickets.authenticator import RecordAuthenticator
from ulticket.security.tickets.errors import CounterCorruptedError, TicketNotIssuedError, TransportError
from ulticket.security.tickets.models import ReissueResult, TicketRecord, UseOutcome, UseResult
from ulticket.storage.interface import StorageBackend
from ulticket.storage.utilities import erase_memory

logger = get_logger(__name__)


class TicketManager:
    """
    Formats tokens, issues tickets onto them and validates their use.

    Every operation is a short, ordered series of page reads and writes on one
    token. Nothing about a ticket is kept between calls: the token is the only
    state, and ``use`` hands its verdict back as a ``UseResult``.

    Attributes:
        storage (StorageBackend): The token, direct or behind safe mode emulation.
        authenticator (RecordAuthenticator): MAC generation and checking.
        application_tag (bytes): Page 4 marker of a ticket token.
    """

    def __init__(
        self,
        storage: StorageBackend,
        authenticator: RecordAuthenticator,
        application_tag: bytes = ucst.APPLICATION_TAG,
    ):
        self.storage = storage
        self.authenticator = authenticator
        self.application_tag = application_tag

    def _read(self, start_page: int, count: int) -> bytes:
        data = self.storage.read_pages(start_page, count)
        if data is None:
            raise TransportError(
                f"Reading pages {start_page}..{start_page + count - 1} failed.", page=start_page
            )
        return data

    def _tag_matches(self, memory: bytes) -> bool:
        offset = ucst.TAG_PAGE * ucst.PAGE_SIZE
        return memory[offset : offset + ucst.PAGE_SIZE] == self.application_tag

    def _locks_clear(self, memory: bytes) -> bool:
        offset = ucst.LOCK_PAGE * ucst.PAGE_SIZE
        return memory[offset + ucst.LOCK_BYTE_0] == 0 and memory[offset + ucst.LOCK_BYTE_1] == 0

    def _is_formatted(self, memory: bytes) -> bool:
        if not self._tag_matches(memory):
            return False
        for page in ucst.FORMAT_ZERO_PAGES:
            if any(memory[page * ucst.PAGE_SIZE : (page + 1) * ucst.PAGE_SIZE]):
                return False
        return self._locks_clear(memory)

    def check_format(self) -> bool:
        """True if the tag is in place, pages 5..14 are zero and no lock bit is set."""
        return self._is_formatted(self._read(0, ucst.PAGE_COUNT))

    def check_reissuability(self) -> bool:
        """
        True if the tag is in place and no lock bit is set.

        Weaker than ``check_format``: a token being reissued already carries
        expiry, uses, MAC and counter data.
        """
        memory = self._read(0, ucst.PAGE_COUNT)
        return self._tag_matches(memory) and self._locks_clear(memory)

    def format(self) -> bool:
        """
        Erases the application pages and writes the application tag.

        Fails if any application page is locked. The OTP page is not touched and
        does not need to be zero.
        """
        if not erase_memory(self.storage):
            logger.error("Formatting failed: could not erase the application pages")
            return False

        if not self.storage.write_pages(ucst.TAG_PAGE, self.application_tag):
            logger.error("Formatting failed: could not write the application tag")
            return False

        if not self.check_format():
            logger.error("Formatting failed: token does not read back as formatted")
            return False

        logger.info("Token formatted")
        return True

    def _write_ticket(self, header: bytes, expiry_time: int, allowed_uses: int) -> bool:
        message = operations.signed_message(header, expiry_time, allowed_uses)
        mac = self.authenticator.truncated(message)

        # Three separate writes; an interrupted sequence leaves a record whose MAC
        # no longer matches and the next use reports it invalid.
        for page, data in (
            (ucst.EXPIRY_PAGE, operations.u32_to_page(expiry_time, "Expiry time")),
            (ucst.USES_PAGE, operations.u32_to_page(allowed_uses, "Allowed uses")),
            (ucst.MAC_PAGE, mac),
        ):
            if not self.storage.write_pages(page, data):
                logger.error(f"Writing page {page} was refused by the token")
                return False
        return True

    def issue(self, expiry_time: int, allowed_uses: int) -> bool:
        """
        Issues a ticket on a freshly formatted token.

        Assumes the usage counter is zero, which holds right after ``format`` on a
        new token; it is not checked here.

        Args:
            expiry_time (int): Minutes since the Unix epoch after which the ticket is expired.
            allowed_uses (int): Number of uses granted, at most 32.

        Returns:
            bool: True if the ticket was written.
        """
        operations.u32_to_page(expiry_time, "Expiry time")
        operations.u32_to_page(allowed_uses, "Allowed uses")
        if allowed_uses > ucst.MAX_USES:
            logger.error(f"Cannot issue more than {ucst.MAX_USES} uses")
            return False

        if not self.check_format():
            logger.error("Issuing failed: token is not formatted")
            return False

        header = self._read(0, ucst.TAG_PAGE + 1)
        if not self._write_ticket(header, expiry_time, allowed_uses):
            return False

        logger.info(f"Issued ticket with {allowed_uses} uses, expiring at minute {expiry_time}")
        return True

    def use(self, now: int) -> UseResult:
        """
        Validates the ticket and consumes one use if it is valid.

        Checks run in order and stop at the first failure: MAC, counter pattern,
        expiry, remaining uses. Only a valid ticket has its counter advanced, by
        setting the one new bit on the OTP page.

        Args:
            now (int): Current time in minutes since the Unix epoch.

        Returns:
            UseResult: Validity, remaining uses and expiry time of the ticket.

        Raises:
            TicketNotIssuedError: If the token is formatted but carries no ticket.
            TransportError: If the token cannot be read or the counter write is refused.
        """
        memory = self._read(0, ucst.PAGE_COUNT)
        if self._is_formatted(memory):
            logger.error("Trying to use a formatted token with no ticket issued")
            raise TicketNotIssuedError()

        record = TicketRecord.from_pages(memory)
        try:
            used = operations.decode_counter(record.counter_bits)
        except CounterCorruptedError:
            used = None

        def invalid(outcome: UseOutcome) -> UseResult:
            remaining = 0 if used is None else max(record.allowed_uses - used, 0)
            return UseResult(
                valid=False,
                remaining_uses=remaining,
                expiry_time=record.expiry_time,
                outcome=outcome,
            )

        message = operations.signed_message(record.pages, record.expiry_time, record.allowed_uses)
        if not self.authenticator.verify(message, record.auth_code):
            logger.error("Invalid Message Authentication Code")
            return invalid(UseOutcome.AUTHENTICATION_FAILED)

        if used is None:
            logger.error(f"Usage counter is corrupted (0x{record.counter_bits:08X})")
            return invalid(UseOutcome.COUNTER_CORRUPTED)

        if now > record.expiry_time:
            logger.error("Ticket expired")
            return invalid(UseOutcome.EXPIRED)

        if record.allowed_uses - used < 1 or used >= ucst.COUNTER_BITS:
            logger.error("No more uses available")
            return invalid(UseOutcome.EXHAUSTED)

        if not self.storage.write_pages(ucst.OTP_PAGE, operations.increment_bits(used)):
            raise TransportError("Writing the usage counter was refused.", page=ucst.OTP_PAGE)

        remaining = record.allowed_uses - used - 1
        logger.info(f"Ticket used, {remaining} uses remaining")
        return UseResult(
            valid=True,
            remaining_uses=remaining,
            expiry_time=record.expiry_time,
            outcome=UseOutcome.VALID,
        )

    def reissue(self, expiry_time: int, allowed_uses: int) -> ReissueResult:
        """
        Rewrites expiry, uses and MAC of an existing ticket, keeping its usage counter.

        Args:
            expiry_time (int): New expiry in minutes since the Unix epoch.
            allowed_uses (int): New total uses; not below the uses already consumed, at most 32.

        Returns:
            ReissueResult: Success flag, remaining uses and a reason when rejected.
        """
        operations.u32_to_page(expiry_time, "Expiry time")
        operations.u32_to_page(allowed_uses, "Allowed uses")

        if not self.check_reissuability():
            logger.error("Reissuing failed: token is not formatted or is locked")
            return ReissueResult(success=False, reason="Token is not formatted or is locked")

        header = self._read(0, ucst.TAG_PAGE + 1)
        counter_page = header[ucst.OTP_PAGE * ucst.PAGE_SIZE : (ucst.OTP_PAGE + 1) * ucst.PAGE_SIZE]
        try:
            used = operations.decode_counter(operations.counter_from_page(counter_page))
        except CounterCorruptedError as e:
            logger.error(str(e))
            return ReissueResult(success=False, reason=str(e))

        if allowed_uses > ucst.MAX_USES:
            reason = f"Cannot add more than {ucst.MAX_USES} uses"
            logger.error(reason)
            return ReissueResult(success=False, remaining_uses=0, reason=reason)

        if allowed_uses < used:
            reason = f"Cannot issue a ticket for {allowed_uses} uses since ticket already used {used} times"
            logger.error(reason)
            return ReissueResult(success=False, remaining_uses=0, reason=reason)

        if not self._write_ticket(header, expiry_time, allowed_uses):
            return ReissueResult(success=False, reason="Token refused the ticket write")

        remaining = allowed_uses - used
        logger.info(f"Reissued ticket with {allowed_uses} uses ({remaining} remaining), expiring at minute {expiry_time}")
        return ReissueResult(success=True, remaining_uses=remaining)

    def lock(self) -> bool:
        """
        Sets the lock bits of pages 4..15.

        Irreversible on a real token: every later write to those pages is refused.
        """
        page = self._read(ucst.LOCK_PAGE, 1)
        locked = bytes(
            [
                page[0],
                page[1],
                page[ucst.LOCK_BYTE_0] | ucst.LOCK_ALL_BYTE_0,
                page[ucst.LOCK_BYTE_1] | ucst.LOCK_ALL_BYTE_1,
            ]
        )
        if not self.storage.write_pages(ucst.LOCK_PAGE, locked):
            logger.error("Locking failed: token refused the lock bits")
            return False
        logger.warning("Token locked, pages 4..15 can no longer be written")
        return True
