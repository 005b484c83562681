class NewScreensError(Exception):
    """Base class for errors reported to API callers."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(NewScreensError):
    """Missing or malformed request input. Raised before any side effect."""

    status_code = 400


class NotFoundError(NewScreensError):
    status_code = 404


class AnalysisError(NewScreensError):
    """The AI provider call failed."""

    status_code = 502


class AnalysisParseError(AnalysisError):
    """The AI response held no parseable JSON object."""


class StorageError(NewScreensError):
    status_code = 500


class StorageNotFoundError(StorageError):
    status_code = 404


class PersistenceError(NewScreensError):
    status_code = 500


class PublishError(NewScreensError):
    """External publish failed. Never fatal to the request that triggered it."""

    status_code = 502
