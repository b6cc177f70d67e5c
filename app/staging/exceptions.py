class StagingError(Exception):
    """Base exception for staging area errors."""


class StagingUnavailableError(StagingError):
    """Raised when the staging area cannot be listed or read."""


class FileAlreadyStagedError(StagingError):
    """Raised when publishing under an identifier that already exists."""


class ParseFailureError(StagingError):
    """Raised when a staged file's content cannot be decoded into records."""
