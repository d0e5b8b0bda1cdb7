from typing import Optional


class LexSyncError(Exception):
    """Base class for every error raised by lexsync."""


class ConfigurationError(LexSyncError):
    """Missing or invalid configuration. Raised before any work starts, never retried."""


class TransientNetworkError(LexSyncError):
    pass


class RateLimitedError(TransientNetworkError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotDownloadableError(LexSyncError):
    pass


class CatalogError(LexSyncError):
    """Catalog search failed after exhausting retries."""


class ExtractionFailure(LexSyncError):
    pass


class SummarizationFailure(LexSyncError):
    pass


class PersistenceFailure(LexSyncError):
    pass


class BlobNotFound(PersistenceFailure):
    pass


class InvalidStatusTransition(PersistenceFailure):
    pass


class IndexFailure(LexSyncError):
    pass
