"""
Exception types shared across the scanner.
Fetch failures are not exceptions; see collectors/source_fetcher.py.
"""


class DarkJsError(Exception):
    pass


class ConfigError(DarkJsError):
    """Raised when a user supplied allow/deny pattern cannot be compiled."""

    def __init__(self, pattern, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid filter pattern {pattern!r}: {reason}")


class ParseError(DarkJsError):
    """Raised when a sourcemap payload is not a usable JSON object."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Malformed sourcemap {location}: {reason}")


class PageSourceError(DarkJsError):
    """Raised when the root document of a subject cannot be obtained."""
    pass
