"""Engine backend loaded only inside matbridge worker processes during tests.

It behaves like a very small numerical engine: two workspaces, statements
executed as Python expressions over numpy values, and a handful of functions.
"""

import contextlib
import io
import os
import re

import numpy as np

from matbridge.arrays import DynamicArray
from matbridge.arrays import Workspace
from matbridge.backends.base import EngineBackend

SHARED_NAMES: tuple[str, ...] = ("fake_shared", "other_shared")
_HOLD_PATTERN: re.Pattern[str] = re.compile(r"^\s*hold\s+(on|off)\s*;?\s*$")


def magic(n: float) -> np.ndarray:
    """Return the magic square of order ``n``.

    :param n: Square order.
    :returns: ``n x n`` matrix whose rows, columns and diagonals share one sum.
    """
    order: int = int(n)
    if order < 1:
        return np.empty((0, 0))
    if order == 2:
        return np.array([[4.0, 3.0], [1.0, 2.0]])

    rows, cols = np.meshgrid(np.arange(1, order + 1), np.arange(1, order + 1), indexing="ij")
    if order % 2 == 1:
        shift: np.ndarray = np.mod(rows + cols - (order + 3) // 2, order)
        offset: np.ndarray = np.mod(rows + 2 * cols - 2, order)
        return (order * shift + offset + 1).astype(np.float64)

    if order % 4 == 0:
        square: np.ndarray = np.arange(1, order * order + 1).reshape(order, order)
        flipped: np.ndarray = (rows % 4) // 2 == (cols % 4) // 2
        square[flipped] = order * order + 1 - square[flipped]
        return square.astype(np.float64)

    half: int = order // 2
    quarter: np.ndarray = magic(half)
    square = np.block(
        [
            [quarter, quarter + 2 * half * half],
            [quarter + 3 * half * half, quarter + half * half],
        ]
    )
    upper: np.ndarray = np.arange(half)
    k: int = (order - 2) // 4
    swap_cols: list[int] = list(range(k)) + list(range(order - k + 1, order))
    top_then_bottom: np.ndarray = np.concatenate([upper, upper + half])
    bottom_then_top: np.ndarray = np.concatenate([upper + half, upper])
    square[np.ix_(top_then_bottom, swap_cols)] = square[np.ix_(bottom_then_top, swap_cols)]
    square[np.ix_([k, k + half], [0, k])] = square[np.ix_([k + half, k], [0, k])]
    return square


def to_python(array: DynamicArray) -> object:
    """Convert an engine array into the value the fake workspace stores.

    :param array: Engine array.
    :returns: Float for single elements, otherwise a numpy array shaped like the engine array.
    """
    if array.number_of_elements == 1 and array.rank <= 2:
        return float(array.data[0])
    dimensions: tuple[int, ...] = array.dimensions
    if len(dimensions) == 1:
        dimensions = (dimensions[0], 1)
    return np.reshape(np.array(array.data, dtype=np.float64), dimensions, order="F")


def to_array(value: object) -> DynamicArray:
    """Convert a fake workspace value into an engine array.

    :param value: Numeric value.
    :returns: Engine array; one-dimensional values become rows.
    """
    numeric: np.ndarray = np.asarray(value, dtype=np.float64)
    if numeric.ndim == 0:
        return DynamicArray((1, 1), [float(numeric)])
    if numeric.ndim == 1:
        return DynamicArray((1, numeric.size), numeric)
    return DynamicArray(numeric.shape, numeric.ravel(order="F"))


class FakeEngine(EngineBackend):
    """In-process stand-in for an engine session."""

    _workspaces: dict[Workspace, dict[str, object]]
    _connected: bool
    hold: bool
    plots: list[object]

    def __init__(self, shared_names: tuple[str, ...] = SHARED_NAMES) -> None:
        """Initialize empty workspaces.

        :param shared_names: Names reported as shared instances.
        """
        self._shared_names = tuple(shared_names)
        self._workspaces = {Workspace.BASE: {}, Workspace.GLOBAL: {}}
        self._connected = False
        self.hold = False
        self.plots = []

    def _require_connected(self) -> None:
        if self._connected is False:
            raise RuntimeError("Fake engine is not connected")

    def _functions(self) -> dict[str, object]:
        return {
            "magic": magic,
            "disp": self._disp,
            "plot": self._plot,
            "save": self._save,
            "plus": lambda left, right: np.add(left, right),
            "transpose": lambda value: np.transpose(np.atleast_2d(value)),
            "size": lambda value: np.array([np.shape(np.atleast_2d(value))], dtype=np.float64),
            "ones": lambda rows, cols=None: np.ones((int(rows), int(rows if cols is None else cols))),
            "error": self._error,
            "exit_worker": self._exit_worker,
        }

    def _disp(self, value: object) -> None:
        print(value)

    def _plot(self, *values: object) -> None:
        self.plots.extend(values)

    def _save(self, file: str, *names: str) -> None:
        workspace: dict[str, object] = self._workspaces[Workspace.BASE]
        selected: list[str] = list(names) if len(names) > 0 else sorted(workspace)
        np.savez(file, **{name: np.asarray(workspace[name]) for name in selected})

    def _error(self, message: str = "Engine error") -> None:
        raise RuntimeError(message)

    def _exit_worker(self) -> None:
        os._exit(3)

    def find(self) -> list[str]:
        return list(self._shared_names)

    def connect(self, shared_name: str | None) -> None:
        if shared_name is not None and shared_name not in self._shared_names:
            raise ConnectionError(f"No shared engine session named {shared_name!r}")
        self._connected = True

    def get_variable(self, name: str, workspace: Workspace) -> DynamicArray:
        self._require_connected()
        scope: dict[str, object] = self._workspaces[workspace]
        if name not in scope:
            raise KeyError(f"Undefined variable {name!r} in {workspace.value} workspace")
        return to_array(scope[name])

    def set_variable(self, name: str, value: DynamicArray, workspace: Workspace) -> None:
        self._require_connected()
        self._workspaces[workspace][name] = to_python(value)

    def evaluate(self, statement: str) -> tuple[str, str]:
        self._require_connected()
        output = io.StringIO()
        script_lines: list[str] = []
        for line in statement.splitlines():
            matched: re.Match[str] | None = _HOLD_PATTERN.match(line)
            if matched is None:
                script_lines.append(line)
            else:
                self.hold = matched.group(1) == "on"

        try:
            code = compile("\n".join(script_lines), "<engine>", "exec")
            with contextlib.redirect_stdout(output):
                exec(code, self._functions(), self._workspaces[Workspace.BASE])
        except Exception as exc:
            return output.getvalue(), f"Error: {type(exc).__name__}: {exc}\n"
        return output.getvalue(), ""

    def invoke(
        self,
        function_name: str,
        num_returns: int,
        args: list[DynamicArray],
    ) -> tuple[list[DynamicArray], str, str]:
        self._require_connected()
        function: object = self._functions().get(function_name)
        if function is None:
            return [], "", f"Undefined function '{function_name}'\n"

        output = io.StringIO()
        try:
            with contextlib.redirect_stdout(output):
                result: object = function(*[to_python(arg) for arg in args])  # type: ignore[operator]
        except Exception as exc:
            return [], output.getvalue(), f"Error using {function_name}: {exc}\n"

        if num_returns == 0:
            return [], output.getvalue(), ""
        if result is None:
            return [], output.getvalue(), f"Error using {function_name}: Too many output arguments.\n"
        results: list[object] = list(result) if isinstance(result, tuple) else [result]
        return [to_array(value) for value in results[:num_returns]], output.getvalue(), ""

    def terminate(self) -> None:
        self._connected = False


class NotABackend:
    """Target that loads but does not implement the backend contract."""
