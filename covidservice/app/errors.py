"""Error taxonomy for the import and query engine.

ValidationError      malformed source record, import aborted before any write
StorageError         storage engine failure, never retried by the core
  ImportAborted      fact batch rolled back, nothing written
    ConflictError    (date, country version) already present
ConfigurationError   storage location could not be derived

A missing country or an empty history is not an error: lookups return None,
the watermark falls back to EPOCH and streams simply end.
"""


class CovidServiceError(Exception):
    """Base class for all service errors."""


class ConfigurationError(CovidServiceError):
    pass


class ValidationError(CovidServiceError):
    """A source record could not be converted into a fact."""

    def __init__(self, message: str, index: int | None = None, country_code: str | None = None):
        self.index = index
        self.country_code = country_code
        if index is not None:
            message = f"record #{index} ({country_code or '?'}): {message}"
        super().__init__(message)


class StorageError(CovidServiceError):
    pass


class ImportAborted(StorageError):
    pass


class ConflictError(ImportAborted):
    pass
