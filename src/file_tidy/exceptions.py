"""Custom exceptions for file tidy."""


class FileTidyError(Exception):
    """Base exception for file tidy errors."""
    pass


class DirectoryError(FileTidyError):
    """Raised when a requested directory cannot be scanned."""

    def __init__(self, directory, reason: str = ""):
        self.directory = directory
        self.reason = reason
        message = f"Cannot scan directory {directory}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class FileOperationError(FileTidyError):
    """Raised when file operations fail."""
    pass


class HistoryWriteError(FileTidyError):
    """Raised when the history store cannot be written."""
    pass


class WatcherError(FileTidyError):
    """Reported (not raised) when the directory watcher hits a problem."""

    def __init__(self, message: str, path=None, cause: Exception = None):
        self.path = path
        self.cause = cause
        super().__init__(message)


class ConfigurationError(FileTidyError):
    """Raised when there's an error in configuration."""
    pass


# Names used by the error taxonomy of the move pipeline.
ScanError = DirectoryError
MoveError = FileOperationError
