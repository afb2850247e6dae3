class TicketError(Exception):
    """Base class for ticket-related exceptions."""
    pass

class TransportError(TicketError):
    """Raised when the link to the token fails or a page cannot be read back."""

    def __init__(self, message: str, page: int | None = None):
        self.page = page
        super().__init__(message)

class ProgrammingError(TicketError):
    """Raised on calling-code defects: bad page addresses, wrongly sized buffers, short MACs."""
    pass

class TicketConfigurationError(TicketError):
    """Raised when key material or the MAC algorithm cannot be set up."""
    pass

class FormatError(TicketError):
    """Raised when the token is not in the tag/zero state an operation needs."""
    pass

class TicketNotIssuedError(FormatError):
    """Raised when a token is formatted but no ticket has been issued on it."""

    def __init__(self):
        super().__init__("Trying to use a formatted token with no ticket issued.")

class CounterCorruptedError(TicketError):
    """Raised when the OTP usage counter does not hold a 2^n - 1 pattern."""

    def __init__(self, bits: int):
        self.bits = bits
        super().__init__(f"Usage counter bits 0x{bits:08X} are not a valid unary count.")
