"""Error taxonomy shared by the store adapters and the conversation engine.

Every failure the engine can observe is one of four kinds. Callers branch on
``error.kind`` to decide whether to retry, ignore or alert.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


class ErrorKind(str, Enum):

    TRANSIENT_STORE = "transient_store"
    UNSUPPORTED_QUERY = "unsupported_query"
    SUMMARY_WRITE = "summary_write"
    INVARIANT = "invariant"


class ChatEngineError(Exception):

    kind: ErrorKind

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransientStoreError(ChatEngineError):
    """Retryable store failure (network blip, failover, timeout)."""

    kind = ErrorKind.TRANSIENT_STORE


class UnsupportedQueryError(ChatEngineError):
    """The store cannot serve the requested query shape, e.g. a missing sort index."""

    kind = ErrorKind.UNSUPPORTED_QUERY


class SummaryWriteFailure(ChatEngineError):

    kind = ErrorKind.SUMMARY_WRITE


class InvariantViolation(ChatEngineError):

    kind = ErrorKind.INVARIANT


T = TypeVar("T")


@dataclass(frozen=True)
class SnapshotResult(Generic[T]):
    """One delivery from a live stream: a full snapshot or an error, never both."""

    snapshot: Optional[T] = None
    error: Optional[ChatEngineError] = None

    @classmethod
    def ok(cls, snapshot: T) -> "SnapshotResult[T]":
        return cls(snapshot=snapshot)

    @classmethod
    def failed(cls, error: ChatEngineError) -> "SnapshotResult[T]":
        return cls(error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None
