"""
Result monad — Success(value) or Failure(FailureDescription).

Stages are chained with flat_map; the first failure short-circuits the rest
of the chain, so each pipeline only spells out its success path:

    build_request(...)
      .flat_map(server.issue)        ── Failure ──┐
      .flat_map(parser.parse)        ── Failure ──┤
      .flat_map(store.create)        ── Failure ──┴──→ Result[T]
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pubstore.railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


class Result(Generic[T]):
    """
    Railway-Oriented Programming Result.

        >>> Result.success(2).map(lambda x: x * 21).value()
        42
        >>> Result.failure(ErrorCode.PARSE_ERROR, "bad json").map(len).is_failure()
        True
    """

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def value(self) -> T:
        """Success value; raises ValueError on a Failure."""
        match self:
            case Success(v):
                return v
            case Failure(err):
                raise ValueError(f"Cannot get value from a Failure: {err.message}")
        raise TypeError("unreachable")  # pragma: no cover

    def error(self) -> FailureDescription:
        """Failure description; raises ValueError on a Success."""
        match self:
            case Failure(err):
                return err
            case Success(v):
                raise ValueError(f"Cannot get error from a Success: {v!r}")
        raise TypeError("unreachable")  # pragma: no cover

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        """Fold both tracks into a single value."""
        match self:
            case Success(v):
                return on_success(v)
            case Failure(err):
                return on_failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        match self:
            case Success(v):
                return Success(mapper(v))
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map_failure(
        self, mapper: Callable[[FailureDescription], FailureDescription]
    ) -> Result[T]:
        """Rewrite the failure description; success passes through."""
        match self:
            case Failure(err):
                return Failure(mapper(err))
        return self

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """Chain a Result-returning stage. Short-circuits on failure."""
        match self:
            case Success(v):
                return mapper(v)
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def ensure(
        self,
        predicate: Callable[[T], bool],
        code: ErrorCode,
        message: str,
    ) -> Result[T]:
        """Turn a success into a failure when the predicate does not hold."""
        return self.flat_map(
            lambda v: Result.success(v) if predicate(v) else Result.failure(code, message)
        )

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Side effect on the success value (logging), Result unchanged."""
        match self:
            case Success(v):
                action(v)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        match self:
            case Failure(err):
                action(err)
        return self

    def recover(self, recovery_fn: Callable[[FailureDescription], T]) -> Result[T]:
        """Replace a failure with a success value computed from it."""
        match self:
            case Failure(err):
                return Success(recovery_fn(err))
        return self

    def get_or_else(self, default: T) -> T:
        match self:
            case Success(v):
                return v
            case _:
                return default

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[T]:
        return Failure(error)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: BaseException | None = None,
        **details: Any,
    ) -> Result[T]:
        """
        Build a failure.

            Result.failure(ErrorCode.REMOTE_CLIENT_ERROR, "Rejected", status_code=422)
        """
        return Failure(
            FailureDescription(code=code, message=message, exception=exception, details=details)
        )

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """Run a computation that may raise and capture the exception as a failure."""
        try:
            return Result.success(computation())
        except Exception as e:
            return Result.failure(error_code, error_message, e)

    @staticmethod
    def from_optional(
        value: T | None,
        error_message: str,
        error_code: ErrorCode = ErrorCode.NOT_FOUND,
    ) -> Result[T]:
        if value is not None:
            return Result.success(value)
        return Result.failure(error_code, error_message)

    def __bool__(self) -> bool:
        return self.is_success()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        match (self, other):
            case (Success(a), Success(b)):
                return a == b
            case (Failure(a), Failure(b)):
                return a.code == b.code and a.message == b.message
            case _:
                return False

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True, slots=True, eq=False)
class Success(Result[T]):
    """The success track."""

    _value: T

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        object.__setattr__(self, "_value", value)

    def __repr__(self) -> str:
        return f"Success({self._value!r})"


Success.__match_args__ = ("_value",)


@dataclass(frozen=True, slots=True, eq=False)
class Failure(Result[T]):
    """The failure track."""

    _error: FailureDescription

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        object.__setattr__(self, "_error", error)

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"


Failure.__match_args__ = ("_error",)
