"""Explicit success/failure results returned by session operations."""

from typing import Generic
from typing import TypeVar

from matbridge.errors import MatbridgeError

T = TypeVar("T")


class Outcome(Generic[T]):
    """Result of one marshalling or session operation.

    ``value`` always holds something usable: the real result on success, the
    canonical empty or sentinel value on failure. ``fault`` tells the two apart.
    """

    __slots__ = ("value", "fault", "output", "error_output")

    value: T
    fault: MatbridgeError | None
    output: str
    error_output: str

    def __init__(
        self,
        value: T,
        fault: MatbridgeError | None = None,
        output: str = "",
        error_output: str = "",
    ) -> None:
        """Initialize an outcome.

        :param value: Result value, or the degraded value on failure.
        :param fault: Failure cause, ``None`` on success.
        :param output: Engine output text captured during the call.
        :param error_output: Engine error text captured during the call.
        """
        self.value = value
        self.fault = fault
        self.output = output
        self.error_output = error_output

    @classmethod
    def success(cls, value: T, output: str = "", error_output: str = "") -> "Outcome[T]":
        """Build a successful outcome.

        :param value: Result value.
        :param output: Captured output text.
        :param error_output: Captured error text.
        :returns: Outcome without fault.
        """
        return cls(value, None, output, error_output)

    @classmethod
    def failure(cls, value: T, fault: MatbridgeError) -> "Outcome[T]":
        """Build a failed outcome.

        :param value: Degraded value handed to callers that ignore the fault.
        :param fault: Failure cause.
        :returns: Outcome carrying ``fault``.
        """
        return cls(value, fault)

    @property
    def ok(self) -> bool:
        """Report whether the operation succeeded.

        :returns: ``True`` when no fault was recorded.
        """
        return self.fault is None

    def unwrap(self) -> T:
        """Return the value, raising the recorded fault if there is one.

        :returns: Result value.
        :raises MatbridgeError: The recorded fault.
        """
        if self.fault is not None:
            raise self.fault
        return self.value

    def __repr__(self) -> str:
        if self.fault is None:
            return f"Outcome(ok, value={self.value!r})"
        return f"Outcome(failed, fault={self.fault!r})"
