"""
Exception taxonomy for the ledger core.

Structural problems with a request (bad window, missing boundary snapshot)
abort the computation. Data-quality problems in individual rows do not:
the classifier raises UnknownEventType, and the normalizer turns it into a
visible Unknown event.
"""


class LedgerError(Exception):
    """Base class for ledger core errors."""


class InvalidRangeError(LedgerError, ValueError):
    """The requested time window is inverted or cannot be resolved."""


class MissingBoundaryError(LedgerError, LookupError):
    """An opening or closing snapshot is not available for the window."""

    def __init__(self, boundary: str, item_id, detail: str = ""):
        self.boundary = boundary
        self.item_id = item_id
        message = f"No {boundary} snapshot for item {item_id}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnknownEventType(LedgerError):
    """A raw record carries a code the classification table does not know."""

    def __init__(self, code, detail: str = ""):
        self.code = code
        message = f"Unrecognized event code {code!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
