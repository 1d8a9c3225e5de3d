"""
Console logging for DarkJS Hunter.
Colored level tags via colorama, with verbose and silent switches used by the CLI.
"""

import logging
import sys

from colorama import Fore, Style


LEVEL_COLORS = {
    logging.DEBUG: Fore.WHITE,
    logging.INFO: Fore.CYAN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}

LEVEL_TAGS = {
    logging.DEBUG: "[*]",
    logging.INFO: "[+]",
    logging.WARNING: "[!]",
    logging.ERROR: "[-]",
    logging.CRITICAL: "[-]",
}


class ColorFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, "")
        tag = LEVEL_TAGS.get(record.levelno, "[?]")
        message = super().format(record)
        return f"{color}{tag}{Style.RESET_ALL} {message}"


def _build_logger() -> logging.Logger:
    log = logging.getLogger("darkjs")
    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColorFormatter("%(message)s"))
        log.addHandler(handler)
    log.setLevel(logging.INFO)
    log.propagate = False
    return log


logger = _build_logger()


def set_verbose(enabled: bool = True):
    logger.setLevel(logging.DEBUG if enabled else logging.INFO)


def set_silent(enabled: bool = True):
    logger.setLevel(logging.ERROR if enabled else logging.INFO)
