from dataclasses import dataclass

from ulticket.security.tickets.authenticator import RecordAuthenticator


@dataclass
class Config:
    authenticator: RecordAuthenticator
    safe_mode: bool
    reader_index: int
    card_timeout: float
