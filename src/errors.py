"""
Error taxonomy.

Every failure raised by the index manager carries an ErrorKind plus enough
context (operation, identity, underlying message) for an operator to log and
retry it without knowing how the transport works.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(Enum):
    TRANSPORT = "transport"
    REMOTE = "remote"
    VALIDATION = "validation"
    ITEM_FAILURE = "item_failure"
    CHAIN_FAILURE = "chain_failure"


class IndexerError(Exception):
    """
    Base class for all index manager errors.

    Attributes:
        kind: ErrorKind of this failure
        message: Human-readable description
        operation: Operation name that failed (if known)
        identity: Item or page identity involved (if any)
        details: Structured payload for logging
    """

    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        identity: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.identity = identity
        self.details = details or {}

    def __str__(self) -> str:
        parts = []
        if self.operation:
            parts.append(f"[{self.operation}]")
        if self.identity:
            parts.append(f"({self.identity})")
        parts.append(self.message)
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "operation": self.operation,
            "identity": self.identity,
            "details": self.details
        }


class TransportError(IndexerError):
    """No live connection, or the channel failed while a call was pending."""
    kind = ErrorKind.TRANSPORT


class TransportClosed(TransportError):
    """The channel terminated with this request still outstanding."""


class RequestTimeout(TransportError):
    """No response arrived within the per-call timeout."""


class RemoteError(IndexerError):
    """Structured error envelope returned by the remote content service."""

    kind = ErrorKind.REMOTE

    def __init__(
        self,
        code: Any,
        message: str,
        operation: Optional[str] = None,
        identity: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, operation=operation, identity=identity, details=details)
        self.code = code

    def __str__(self) -> str:
        return f"{super().__str__()} (code={self.code})"

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["code"] = self.code
        return data


class ValidationError(IndexerError, ValueError):
    """Unregistered page/topic reference or malformed input."""
    kind = ErrorKind.VALIDATION


class ItemFailure(IndexerError):
    """A single candidate's link-creation call failed."""
    kind = ErrorKind.ITEM_FAILURE


class ChainFailure(IndexerError):
    """A command-chain step failed under the abort policy."""

    kind = ErrorKind.CHAIN_FAILURE

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        results: Optional[List[Any]] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message, operation=step)
        self.step = step
        self.results = results or []
        self.cause = cause
