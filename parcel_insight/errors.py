"""Exception types raised inside the analysis pipeline."""


class ParcelInsightError(Exception):
    """Base class for errors raised by this package."""


class InvalidGeometry(ParcelInsightError, ValueError):
    """The submitted parcel polygon is malformed or degenerate."""


class ExternalSourceError(ParcelInsightError, RuntimeError):
    """A POI or listing source timed out or answered with a non-success status."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code
