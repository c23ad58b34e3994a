"""Exception types raised across the memory engine."""

from typing import Optional


class MemoryEngineError(Exception):
    """Base class for memory engine failures."""


class StorageError(MemoryEngineError):
    """The storage collaborator failed or is unreachable."""


class RetrievalError(MemoryEngineError):
    """A search could not be completed because the storage collaborator failed."""


class CompletionError(MemoryEngineError):
    """The completion collaborator failed to produce a response."""


class BackupFormatError(MemoryEngineError):
    """A backup file could not be read or has an invalid structure."""

    def __init__(self, code: str, message: str, recoverable: bool = False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def __repr__(self) -> str:
        return f"BackupFormatError(code={self.code!r}, message={self.message!r})"


def describe(error: Optional[BaseException]) -> str:
    """Human-readable message for an exception, including its type when the message is empty."""
    if error is None:
        return ""
    text = str(error)
    return text if text else type(error).__name__
