"""
Error Taxonomy
==============
Every failure the core reports to the command boundary.

Each error carries a stable ``kind`` so transports can branch on it
without string matching on messages.
"""

from __future__ import annotations


class SolutionBotError(Exception):
    """Base class for all recoverable core errors."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidFormat(SolutionBotError):
    """Input text (problem token, date, kind, title) is malformed."""

    kind = "invalid_format"


class ConfigError(SolutionBotError):
    """sources.json or schedule.json is missing or malformed."""

    kind = "config_error"


class NotFound(SolutionBotError):
    """A document, source or schedule item does not exist."""

    kind = "not_found"


class ParseFailure(SolutionBotError):
    """A PDF could not be opened or read."""

    kind = "parse_failure"


class OutOfRange(SolutionBotError):
    """A page number lies outside the document."""

    kind = "out_of_range"


class IOFailure(SolutionBotError):
    """Encoding or writing an artifact failed."""

    kind = "io_failure"


class Unauthorized(SolutionBotError):
    """A pagination control was used by someone other than its owner."""

    kind = "unauthorized"


class OperationCancelled(SolutionBotError):
    """The caller gave up waiting and asked the lookup to stop."""

    kind = "cancelled"
