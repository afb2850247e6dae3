from ulticket import constants as ucst
from ulticket.security.tickets.errors import CounterCorruptedError, ProgrammingError


def encode_counter(uses: int) -> int:
    """
    Encodes a consumed-use count as a unary bit pattern.

    The ``uses`` least significant bits are set (2^uses - 1). Every pattern is a
    subset of the next one, so moving from ``n`` to ``n + 1`` only sets bits and
    can be written to one-time-programmable memory.

    Args:
        uses (int): Consumed uses, 0 to 32.

    Returns:
        int: The 32-bit counter value.

    Raises:
        ProgrammingError: If ``uses`` is outside 0..32.
    """
    if not 0 <= uses <= ucst.COUNTER_BITS:
        raise ProgrammingError(f"Usage count {uses} is outside 0..{ucst.COUNTER_BITS}.")
    return (1 << uses) - 1


def decode_counter(bits: int) -> int:
    """
    Decodes a unary counter value back into a consumed-use count.

    Args:
        bits (int): The 32-bit value read from the OTP page.

    Returns:
        int: The number of set bits ``n`` such that ``bits == 2^n - 1``.

    Raises:
        CounterCorruptedError: If ``bits`` is not of the form 2^n - 1.
    """
    uses = bits.bit_length()
    if bits < 0 or uses > ucst.COUNTER_BITS or bits != (1 << uses) - 1:
        raise CounterCorruptedError(bits)
    return uses


def increment_bits(uses: int) -> bytes:
    """
    Returns the OTP page bytes that move the counter from ``uses`` to ``uses + 1``.

    Only the newly set bit is returned; the lower bits are already on the token.
    """
    new_bit = encode_counter(uses + 1) ^ encode_counter(uses)
    return new_bit.to_bytes(ucst.PAGE_SIZE, "big")


def counter_from_page(page: bytes) -> int:
    return int.from_bytes(page[: ucst.PAGE_SIZE], "big")


def u32_to_page(value: int, name: str) -> bytes:
    if not 0 <= value <= ucst.U32_MAX:
        raise ProgrammingError(f"{name} {value} does not fit in an unsigned 32-bit field.")
    return value.to_bytes(ucst.PAGE_SIZE, "big")


def canonical_header(pages: bytes) -> bytes:
    """
    Returns pages 0..4 with the lock bytes and the OTP page zeroed.

    Lock bits and the usage counter keep changing after a ticket is issued, so
    they are left out of the authenticated message.
    """
    header_size = (ucst.TAG_PAGE + 1) * ucst.PAGE_SIZE
    if len(pages) < header_size:
        raise ProgrammingError(f"Need {header_size} bytes of pages 0..4, got {len(pages)}.")
    header = bytearray(pages[:header_size])
    lock_offset = ucst.LOCK_PAGE * ucst.PAGE_SIZE
    header[lock_offset + ucst.LOCK_BYTE_0] = 0
    header[lock_offset + ucst.LOCK_BYTE_1] = 0
    otp_offset = ucst.OTP_PAGE * ucst.PAGE_SIZE
    header[otp_offset : otp_offset + ucst.PAGE_SIZE] = bytes(ucst.PAGE_SIZE)
    return bytes(header)


def signed_message(pages: bytes, expiry_time: int, allowed_uses: int) -> bytes:
    """Builds the 28 byte message the MAC is computed over."""
    return (
        canonical_header(pages)
        + u32_to_page(expiry_time, "Expiry time")
        + u32_to_page(allowed_uses, "Allowed uses")
    )
