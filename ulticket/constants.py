PAGE_SIZE = 4
PAGE_COUNT = 16
MEMORY_SIZE = PAGE_SIZE * PAGE_COUNT

# Page map
IDENTITY_PAGES = (0, 1)
LOCK_PAGE = 2
OTP_PAGE = 3
TAG_PAGE = 4
EXPIRY_PAGE = 5
USES_PAGE = 6
MAC_PAGE = 7
SPARE_PAGE = 15
FIRST_APPLICATION_PAGE = 4

# Byte offsets inside the lock page
LOCK_BYTE_0 = 2
LOCK_BYTE_1 = 3

# Pages 5..14 must be zero on a formatted token. Page 15 is left out because
# safe mode keeps the emulated OTP bits there.
FORMAT_ZERO_PAGES = range(5, 15)

# Pages 0..6 (identity, locks, OTP, tag, expiry, uses) are authenticated
SIGNED_PAGE_COUNT = 7
MAC_PAGE_COUNT = 2
MAC_LENGTH = MAC_PAGE_COUNT * PAGE_SIZE

APPLICATION_TAG = b"TIKT"

COUNTER_BITS = 32
MAX_USES = COUNTER_BITS
U32_MAX = 2**32 - 1

# Lock byte 0 bits 4..7 lock pages 4..7, lock byte 1 locks pages 8..15
LOCK_ALL_BYTE_0 = 0xF0
LOCK_ALL_BYTE_1 = 0xFF

MINUTES_PER_DAY = 24 * 60
DEFAULT_ISSUE_DAYS = 30
DEFAULT_ISSUE_USES = 10

# PC/SC pseudo-APDUs understood by contactless readers
APDU_READ_BINARY = (0xFF, 0xB0, 0x00)
APDU_UPDATE_BINARY = (0xFF, 0xD6, 0x00)
SW_SUCCESS = (0x90, 0x00)
ULTRALIGHT_ATR = bytes.fromhex("3B8F8001804F0CA0000003060300030000000068")

DEFAULT_CARD_TIMEOUT = 10.0
MIN_KEY_LENGTH = 16
PASSPHRASE_SALT = b"ulticket_"
