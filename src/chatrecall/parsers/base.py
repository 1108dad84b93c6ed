"""
Exception classes for chat export parsing.
"""


class ParserError(Exception):
    """Base exception for all parser errors."""

    pass


class ParseFormatError(ParserError):
    """Raised when the export document or archive is malformed or unrecognized."""

    pass


class ParseDataError(ParserError):
    """Raised when one conversation in an otherwise valid export is malformed."""

    def __init__(self, title: str, reason: str):
        self.title = title
        self.reason = reason
        super().__init__(f"Malformed conversation '{title}': {reason}")
