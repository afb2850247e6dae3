import logging
import os
import sys
from datetime import datetime


class ColouredFormatter(logging.Formatter):
    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        message = f"{colour}{ts} [{record.levelname:<7}]{self.RESET} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            message += "\n" + self.formatException(record.exc_info)
        return message


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name.split(".")[-1])
    mode = os.getenv("ENV", "prod").lower()
    logger.setLevel(logging.DEBUG if mode != "prod" else logging.INFO)

    # Modules can share a short name, keep a single handler per logger
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColouredFormatter())
        logger.addHandler(handler)
    return logger
