import argparse

from ulticket import constants as ucst
from ulticket.core.configuration import factory_config
from ulticket.logging_utils import get_logger
from ulticket.security.tickets.authenticator import RecordAuthenticator
from ulticket.security.tickets.errors import TicketError, TicketNotIssuedError
from ulticket.security.tickets.manager import TicketManager
from ulticket.storage import utilities
from ulticket.storage.interface import StorageBackend, get_storage_backend, unwrap
from ulticket.storage.memory import MemoryToken
from ulticket.utils import current_minutes, minutes_to_datetime

logger = get_logger(__name__)

COMMANDS = ("dump", "erase", "format", "issue", "use", "reissue", "lock")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Format Ultralight tokens, issue tickets onto them and use them",
        epilog="Typically, first format the token, then issue tickets, and finally use them. "
        "Erase only fully works in safe mode; in real life used tokens cannot be erased.",
    )
    parser.add_argument("command", choices=COMMANDS, help="What to do with the token")
    parser.add_argument("--days", type=int, default=ucst.DEFAULT_ISSUE_DAYS, help="Validity in days")
    parser.add_argument("--uses", type=int, default=ucst.DEFAULT_ISSUE_USES, help="Number of uses")
    parser.add_argument(
        "--unsafe",
        action="store_true",
        help="Really write OTP and lock bits. They cannot be reset afterwards",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Work on an in-memory token instead of a PC/SC reader",
    )
    parser.add_argument("--yes", action="store_true", help="Confirm locking a token in unsafe mode")
    parser.add_argument("--trace-apdus", action="store_true", help="Log every APDU sent to the reader")
    return parser


def _log_times(current_time: int, expiry_time: int) -> None:
    logger.info(f"Current time: {minutes_to_datetime(current_time)}")
    logger.info(f"Expiry time: {minutes_to_datetime(expiry_time)}")


def _dump(storage: StorageBackend) -> None:
    dump = utilities.dump_memory(storage)
    if dump is not None:
        for line in dump.splitlines():
            logger.info(line)


def run(args: argparse.Namespace, storage: StorageBackend, authenticator: RecordAuthenticator) -> int:
    manager = TicketManager(storage, authenticator)
    command = args.command
    _dump(storage)

    if command == "dump":
        return 0

    if command == "erase":
        logger.info("Erasing whatever can still be erased...")
        if utilities.erase_memory(unwrap(storage)):
            logger.info("Erasing completed (except maybe any OTP and lock bits that cannot be reset).")
            status = True
        else:
            logger.error("Erasing FAILED.")
            status = False

    elif command == "format":
        logger.info("Formatting the token to be used as ticket...")
        status = manager.format()
        if status:
            logger.info("Formatting completed.")
        else:
            logger.error("Formatting FAILED.")

    elif command in ("issue", "reissue"):
        current_time = current_minutes()
        expiry_time = current_time + args.days * ucst.MINUTES_PER_DAY
        logger.info(f"Issuing new ticket for {args.days} days, {args.uses} uses...")
        _log_times(current_time, expiry_time)
        if command == "issue":
            status = manager.issue(expiry_time, args.uses)
            remaining = args.uses if status else 0
        else:
            result = manager.reissue(expiry_time, args.uses)
            status = result.success
            remaining = result.remaining_uses
        logger.info(f"Remaining uses: {remaining}")
        if status:
            logger.info("Ticket issuing completed.")
        else:
            logger.error("Ticket issuing FAILED. Probably you did not format the token correctly.")

    elif command == "use":
        logger.info("Using ticket...")
        current_time = current_minutes()
        try:
            result = manager.use(current_time)
        except TicketNotIssuedError as e:
            logger.error(str(e))
            return 1
        status = result.valid
        if status:
            logger.info("Used ticket successfully. The ticket was valid.")
        else:
            logger.error(f"Ticket use FAILED ({result.outcome.value}). The following data may be INVALID.")
        _log_times(current_time, result.expiry_time)
        logger.info(f"Remaining uses: {result.remaining_uses}")

    else:
        if unwrap(storage) is storage and not args.yes:
            logger.error("Locking in unsafe mode is irreversible. Re-run with --yes to confirm.")
            return 1
        logger.info("Locking the ticket (all application pages)")
        status = manager.lock()

    _dump(storage)
    return 0 if status else 1


def open_token(args: argparse.Namespace, reader_index: int, card_timeout: float) -> StorageBackend:
    if args.simulate:
        logger.info("Using a simulated in-memory token")
        return MemoryToken()

    # pyscard is an optional extra, only needed with a real reader
    from ulticket.storage.pcsc import PcscReader

    return PcscReader.connect(reader_index=reader_index, timeout=card_timeout, trace_apdus=args.trace_apdus)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = factory_config()
        token = open_token(args, config.reader_index, config.card_timeout)
        storage = get_storage_backend(token, safe_mode=config.safe_mode and not args.unsafe)
        return run(args, storage, config.authenticator)
    except TicketError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
