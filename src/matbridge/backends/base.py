"""Contract between the worker process and one engine client API."""

import abc

from matbridge.arrays import DynamicArray
from matbridge.arrays import Workspace


class EngineBackend(abc.ABC):
    """Adapter over an engine client API, hosted inside the worker process.

    Methods raise on transport problems. Errors raised by engine-side script
    code are not transport problems: ``evaluate`` and ``invoke`` return them as
    error text.
    """

    @abc.abstractmethod
    def find(self) -> list[str]:
        """Return the names of reachable shared engine instances."""

    @abc.abstractmethod
    def connect(self, shared_name: str | None) -> None:
        """Connect to a shared instance, or to any instance when ``shared_name`` is ``None``.

        :param shared_name: Shared instance name.
        """

    @abc.abstractmethod
    def get_variable(self, name: str, workspace: Workspace) -> DynamicArray:
        """Read one workspace variable.

        :param name: Variable name.
        :param workspace: Variable scope.
        :returns: Variable value.
        """

    @abc.abstractmethod
    def set_variable(self, name: str, value: DynamicArray, workspace: Workspace) -> None:
        """Write one workspace variable.

        :param name: Variable name.
        :param value: Variable value.
        :param workspace: Variable scope.
        """

    @abc.abstractmethod
    def evaluate(self, statement: str) -> tuple[str, str]:
        """Run script statements.

        :param statement: Statement text, possibly several lines.
        :returns: Tuple of ``(output, error)`` text.
        """

    @abc.abstractmethod
    def invoke(
        self,
        function_name: str,
        num_returns: int,
        args: list[DynamicArray],
    ) -> tuple[list[DynamicArray], str, str]:
        """Call one engine function.

        :param function_name: Function name.
        :param num_returns: Number of requested return values.
        :param args: Positional arguments.
        :returns: Tuple of ``(results, output, error)``.
        """

    @abc.abstractmethod
    def terminate(self) -> None:
        """Release the engine connection."""
