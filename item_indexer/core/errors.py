"""
Error taxonomy for the item indexer.

Per-message failures derive from PipelineError and carry a ``retryable``
flag that the consumer uses to decide between a permanent reject and a
requeue. Connection failures at startup are fatal and derive directly from
ItemIndexerError.
"""

from typing import Optional


class ItemIndexerError(Exception):
    """Base class for all item indexer errors."""
    pass


class ConnectionFailedError(ItemIndexerError):
    """Raised when a connection could not be established after all attempts."""

    def __init__(self, name: str, attempts: int, last_error: Optional[BaseException] = None):
        self.name = name
        self.attempts = attempts
        self.last_error = last_error
        message = f"Could not connect to {name} after {attempts} attempt(s)"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class PipelineError(ItemIndexerError):
    """Raised when a single message cannot be processed."""
    retryable = False


class DecodeError(PipelineError):
    """Raised when a message body is not a valid source item."""
    pass


class TransformationError(PipelineError):
    """Raised when a source item cannot be turned into an index document."""
    pass


class UnsupportedUnit(TransformationError):
    """Raised for a dimension unit outside the conversion table."""

    def __init__(self, unit):
        self.unit = unit
        super().__init__(f"Unsupported unit: {unit!r}")


class UnknownDimension(TransformationError):
    """Raised for a dimension name outside the known physical quantities."""

    def __init__(self, name):
        self.name = name
        super().__init__(f"Unknown dimension: {name!r}")


class UnsupportedCurrency(TransformationError):
    """Raised for a price currency outside the known set."""

    def __init__(self, currency):
        self.currency = currency
        super().__init__(f"Unsupported currency: {currency!r}")


class UnsupportedLocale(TransformationError):
    """Raised for an item language outside the known locales."""

    def __init__(self, lang):
        self.lang = lang
        super().__init__(f"Unsupported locale: {lang!r}")


class SubmissionError(PipelineError):
    """Raised when a document could not be handed to the bulk indexer."""
    retryable = True


class IndexerClosedError(SubmissionError):
    """Raised when submitting to an indexer that is closing or closed."""
    pass


class IndexerBusyError(SubmissionError):
    """Raised when the indexer queue stayed full for the whole submit timeout."""
    pass


class InvalidDocumentError(SubmissionError):
    """Raised when a document body cannot be serialized for a bulk request."""
    retryable = False
