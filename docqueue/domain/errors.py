"""
Exception hierarchy for docqueue.

DocQueueError
├── ValidationError      — caller input rejected before any store call
├── QueueNotReadyError   — operation issued before start() or after stop()
└── StorageError         — underlying store failure (wraps original exception)

"No eligible message" and "ownership lost" are not errors: the queue returns
None for those outcomes.
"""

from __future__ import annotations


class DocQueueError(Exception):
    """Base class for all docqueue exceptions."""


class ValidationError(DocQueueError):
    """
    Raised when an operation is called with arguments it cannot accept,
    e.g. push() with an empty payload sequence or a negative delay.
    """


class QueueNotReadyError(DocQueueError):
    """Raised when the queue is used before start() completed or after stop()."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Queue is not started; cannot {operation}()")


class StorageError(DocQueueError):
    """
    Wraps an underlying failure from a store adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the store backend.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")
