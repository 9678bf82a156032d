"""
Result Monad & Error Types: Exception-Free Control Flow

Every fallible vecal operation returns Result[T, E] instead of raising.
Errors are still Exception subclasses so that Err.unwrap() can re-raise
the original error with its full context.

Design Principles:
    - Exhaustive Error Handling: callers branch on is_ok()/is_err()
    - Verbatim Propagation: store errors travel through the orchestrator untouched
    - Composability: Monadic bind (flat_map) for chaining fallible operations

Error Code Ranges:
    1000-1999: Index errors
    2000-2999: Query/validation errors
    3000-3999: Record errors
    4000-4999: Storage errors
    5000-5999: Configuration errors
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    NoReturn,
    Optional,
    TypeVar,
    Union,
    final,
)


# =============================================================================
# TYPE VARIABLES
# =============================================================================
T = TypeVar("T")  # Success value type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: SUCCESS VARIANT
# =============================================================================
@final
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Example:
        result: Result[int, VecalError] = Ok(42)
        if result.is_ok():
            value = result.unwrap()
    """
    _value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self._value

    def unwrap_or(self, default: T) -> T:
        return self._value

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        """
        Apply transformation to success value.

        Example:
            Ok(5).map(lambda x: x * 2)  # Ok(10)
        """
        return Ok(fn(self._value))

    def flat_map(self, fn: Callable[[T], "Result[U, Any]"]) -> "Result[U, Any]":
        """Monadic bind for chaining fallible operations."""
        return fn(self._value)

    @property
    def value(self) -> T:
        return self._value

    @property
    def error(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"Ok({self._value!r})"

    def __bool__(self) -> Literal[True]:
        return True


# =============================================================================
# RESULT MONAD: ERROR VARIANT
# =============================================================================
@final
@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Error variant of Result monad.

    Example:
        result = Err(NotFoundError.record("abc"))
        if result.is_err():
            log.warning(str(result.error))
    """
    _error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> NoReturn:
        """
        Unwrapping an error raises it.

        Raises:
            The wrapped error itself when it is an exception,
            RuntimeError otherwise.
        """
        if isinstance(self._error, BaseException):
            raise self._error
        raise RuntimeError(f"Called unwrap() on Err: {self._error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[Any], U]) -> "Err[E]":
        return self

    def flat_map(self, fn: Callable[[Any], "Result[U, E]"]) -> "Err[E]":
        return self

    @property
    def value(self) -> None:
        return None

    @property
    def error(self) -> E:
        return self._error

    def __repr__(self) -> str:
        return f"Err({self._error!r})"

    def __bool__(self) -> Literal[False]:
        return False


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# ERROR TAXONOMY
# =============================================================================
class ErrorCode(Enum):
    """Canonical error codes for categorization and logging."""
    # Index errors (1000-1999)
    INDEX_BUILD_FAILED = 1001
    INDEX_WORKER_FAILED = 1002

    # Query/validation errors (2000-2999)
    DIMENSION_MISMATCH = 2001
    INVALID_VECTOR = 2002

    # Record errors (3000-3999)
    RECORD_NOT_FOUND = 3001

    # Storage errors (4000-4999)
    STORAGE_NOT_OPEN = 4001
    STORAGE_DUPLICATE_KEY = 4002
    STORAGE_READ_ERROR = 4003
    STORAGE_WRITE_ERROR = 4004
    STORAGE_CONNECTION_FAILED = 4005
    STORAGE_SERIALIZATION_ERROR = 4006

    # Configuration errors (5000-5999)
    CONFIG_INVALID = 5001


@dataclass(eq=False)
class VecalError(Exception):
    """
    Base error for all vecal operations.

    Carries:
        - code: ErrorCode for programmatic handling
        - message: human-readable text
        - context: machine-readable details (never secrets)
        - cause: underlying exception, if any
        - timestamp: creation time (UTC)
    """
    code: ErrorCode
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    cause: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging."""
        return {
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "context": self.context,
            "cause": repr(self.cause) if self.cause is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }


class DimensionMismatchError(VecalError):
    """Vector length differs from the store's configured dimension."""

    @classmethod
    def create(cls, expected: int, actual: int) -> "DimensionMismatchError":
        return cls(
            code=ErrorCode.DIMENSION_MISMATCH,
            message=f"Vector dimension mismatch. Expected {expected}, got {actual}",
            context={"expected": expected, "actual": actual},
        )

    @classmethod
    def invalid_shape(cls, expected: int, shape: tuple[int, ...]) -> "DimensionMismatchError":
        return cls(
            code=ErrorCode.INVALID_VECTOR,
            message=f"Expected a flat vector of length {expected}, got shape {shape}",
            context={"expected": expected, "shape": list(shape)},
        )


class NotFoundError(VecalError):
    """Record id does not exist."""

    @classmethod
    def record(cls, record_id: str) -> "NotFoundError":
        return cls(
            code=ErrorCode.RECORD_NOT_FOUND,
            message=f"Entry not found: {record_id}",
            context={"id": record_id},
        )


class StorageError(VecalError):
    """Error raised by a record store collaborator."""

    @classmethod
    def not_open(cls, name: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_NOT_OPEN,
            message=f"Store '{name}' is not open",
            context={"name": name},
        )

    @classmethod
    def duplicate_key(cls, collection: str, record_id: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_DUPLICATE_KEY,
            message=f"Key '{record_id}' already exists in '{collection}'",
            context={"collection": collection, "id": record_id},
        )

    @classmethod
    def read_error(cls, collection: str, reason: str, cause: Optional[BaseException] = None) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_READ_ERROR,
            message=f"Failed to read from '{collection}': {reason}",
            context={"collection": collection, "reason": reason},
            cause=cause,
        )

    @classmethod
    def write_error(cls, collection: str, reason: str, cause: Optional[BaseException] = None) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_WRITE_ERROR,
            message=f"Failed to write to '{collection}': {reason}",
            context={"collection": collection, "reason": reason},
            cause=cause,
        )

    @classmethod
    def connection_failed(cls, target: str, cause: Optional[BaseException] = None) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Connection to '{target}' failed: {cause}",
            context={"target": target},
            cause=cause,
        )

    @classmethod
    def serialization(cls, record_id: str, cause: BaseException) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_SERIALIZATION_ERROR,
            message=f"Cannot (de)serialize record '{record_id}': {cause}",
            context={"id": record_id},
            cause=cause,
        )


class ConfigError(VecalError):
    """Invalid configuration."""

    @classmethod
    def invalid(cls, param: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID,
            message=f"Invalid config '{param}': {reason}",
            context={"param": param, "value": value, "reason": reason},
        )


class IndexBuildError(VecalError):
    """Index construction failed."""

    @classmethod
    def worker_failed(cls, cause: BaseException) -> "IndexBuildError":
        return cls(
            code=ErrorCode.INDEX_WORKER_FAILED,
            message=f"Graph build worker failed: {cause!r}",
            cause=cause,
        )

    @classmethod
    def build_failed(cls, kind: str, cause: BaseException) -> "IndexBuildError":
        return cls(
            code=ErrorCode.INDEX_BUILD_FAILED,
            message=f"Building {kind} index failed: {cause!r}",
            context={"kind": kind},
            cause=cause,
        )
