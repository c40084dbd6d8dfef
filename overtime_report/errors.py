from __future__ import annotations


class OvertimeReportError(Exception):
    """Base class for errors raised by the report pipeline."""


class AbortedOutcome(OvertimeReportError):
    """A fetch gave up because its generation was superseded."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "Request aborted")
        self.reason = reason


class TransportFailure(OvertimeReportError):
    """The Clockify API could not be reached or answered with an error status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
