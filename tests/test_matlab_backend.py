"""Tests for the MATLAB backend, run without MATLAB.

``matlab`` arrays are stood in for by list subclasses that carry the same class
name and ``size`` attribute; the engine by an object that records statements.
"""

import re

import numpy as np
import pytest

from matbridge import DynamicArray
from matbridge import ElementType
from matbridge import Workspace
from matbridge.backends.matlab import MatlabBackend
from matbridge.backends.matlab import _require_identifier
from matbridge.backends.matlab import array_from_matlab
from matbridge.backends.matlab import matlab_initializer


class double(list):  # noqa: N801
    """Stand-in for ``matlab.double``."""

    def __init__(self, rows: list[list[float]], size: tuple[int, ...]) -> None:
        super().__init__(rows)
        self.size = size


class int8(list):  # noqa: N801
    """Stand-in for ``matlab.int8``."""

    def __init__(self, rows: list[list[int]], size: tuple[int, ...]) -> None:
        super().__init__(rows)
        self.size = size


class cell(list):  # noqa: N801
    """Stand-in for an unsupported engine value."""

    size = (1, 1)


def test_python_scalars_become_one_by_one_arrays() -> None:
    """The client returns bare Python scalars for ``1 x 1`` results."""
    assert array_from_matlab(2.5) == DynamicArray((1, 1), [2.5])
    assert array_from_matlab(7).element_type is ElementType.INT64
    logical: DynamicArray = array_from_matlab(True)
    assert logical.element_type is ElementType.LOGICAL
    assert logical.data.tolist() == [True]


def test_matrix_is_flattened_column_major() -> None:
    """Nested rows are stored column by column."""
    value: double = double([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]], (2, 3))
    array: DynamicArray = array_from_matlab(value)
    assert array.dimensions == (2, 3)
    assert array.element_type is ElementType.DOUBLE
    assert array.data.tolist() == [1.0, 4.0, 2.0, 5.0, 3.0, 6.0]


def test_integer_class_is_kept() -> None:
    """The element class follows the ``matlab`` type name."""
    array: DynamicArray = array_from_matlab(int8([[1, -2]], (1, 2)))
    assert array.element_type is ElementType.INT8
    assert array.data.dtype == np.int8


def test_unsupported_values_are_rejected() -> None:
    """Cells, strings and other classes are outside the numeric subset."""
    with pytest.raises(TypeError):
        array_from_matlab(cell([[1.0]]))
    with pytest.raises(TypeError):
        array_from_matlab("text")


def test_single_double_initializes_as_float() -> None:
    """A single double crosses as a plain float."""
    assert matlab_initializer(DynamicArray((1,), [4.0])) == ("double", 4.0)


def test_matrix_initializer_is_nested_rows() -> None:
    """Column-major data is rebuilt into row lists."""
    class_name, initializer = matlab_initializer(DynamicArray((2, 3), [1.0, 4.0, 2.0, 5.0, 3.0, 6.0]))
    assert class_name == "double"
    assert initializer == [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]


def test_rank_one_initializer_is_a_column() -> None:
    """Rank-1 arrays are treated as ``n x 1``."""
    _, initializer = matlab_initializer(DynamicArray((3,), [1.0, 2.0, 3.0]))
    assert initializer == [[1.0], [2.0], [3.0]]


def test_empty_and_integer_initializers() -> None:
    """Empty arrays initialize from an empty list; integer classes keep their name."""
    assert matlab_initializer(DynamicArray.empty()) == ("double", [])
    class_name, initializer = matlab_initializer(DynamicArray((1, 2), [3, 4], ElementType.UINT8))
    assert class_name == "uint8"
    assert initializer == [[3, 4]]


@pytest.mark.parametrize("name", ["x", "value_2", "Alpha"])
def test_valid_identifiers_are_accepted(name: str) -> None:
    """Engine identifiers start with a letter."""
    assert _require_identifier(name) == name


@pytest.mark.parametrize("name", ["", "2x", "_hidden", "a b", "x;exit"])
def test_invalid_identifiers_are_rejected(name: str) -> None:
    """Anything else never reaches statement text."""
    with pytest.raises(ValueError):
        _require_identifier(name)


class RecordingEngine:
    """Stand-in for ``matlab.engine.MatlabEngine`` that records issued statements."""

    def __init__(
        self,
        base_names: tuple[str, ...] = (),
        linked_names: tuple[str, ...] = (),
        global_names: tuple[str, ...] = (),
    ) -> None:
        self.statements: list[str] = []
        self.workspace: dict[str, object] = {}
        self._base_names = base_names
        self._linked_names = linked_names
        self._global_names = global_names

    def eval(self, statement: str, nargout: int = 0, **_: object) -> object:
        self.statements.append(statement)
        quoted: re.Match[str] | None = re.search(r"'(\w+)'", statement)
        name: str = "" if quoted is None else quoted.group(1)
        if statement.startswith("exist("):
            return 1.0 if name in self._base_names else 0.0
        if statement.startswith("getfield(whos("):
            return name in self._linked_names
        if statement.startswith("ismember("):
            return name in self._global_names
        return None


def _backend_on(engine: RecordingEngine) -> MatlabBackend:
    backend: MatlabBackend = MatlabBackend.__new__(MatlabBackend)
    backend._engine = engine
    backend._matlab_module = None
    backend._engine_module = None
    return backend


def test_global_write_clears_base_link() -> None:
    """Writing a global links it into the base workspace only for the write."""
    engine: RecordingEngine = RecordingEngine()
    _backend_on(engine).set_variable("g", DynamicArray((1, 1), [7.0]), Workspace.GLOBAL)
    assert engine.statements == ["exist('g', 'var')", "global g", "clear g"]
    assert engine.workspace["g"] == 7.0


def test_global_read_clears_base_link() -> None:
    """Reading a global leaves no base variable behind."""
    engine: RecordingEngine = RecordingEngine(global_names=("g",))
    engine.workspace["g"] = 3.0
    value: DynamicArray = _backend_on(engine).get_variable("g", Workspace.GLOBAL)
    assert value == DynamicArray((1, 1), [3.0])
    assert engine.statements[-2:] == ["global g", "clear g"]


def test_global_access_keeps_existing_link() -> None:
    """A base variable already linked to the global stays linked."""
    engine: RecordingEngine = RecordingEngine(base_names=("g",), linked_names=("g",))
    _backend_on(engine).set_variable("g", DynamicArray((1, 1), [1.0]), Workspace.GLOBAL)
    assert "global g" not in engine.statements
    assert "clear g" not in engine.statements


def test_global_access_refuses_to_shadow_base_local() -> None:
    """A local base variable of the same name is never overwritten."""
    engine: RecordingEngine = RecordingEngine(base_names=("g",))
    engine.workspace["g"] = 5.0
    with pytest.raises(ValueError):
        _backend_on(engine).set_variable("g", DynamicArray((1, 1), [1.0]), Workspace.GLOBAL)
    assert engine.workspace["g"] == 5.0
    assert "global g" not in engine.statements


def test_undefined_global_read_is_key_error() -> None:
    """Reading a global nobody declared does not create it."""
    engine: RecordingEngine = RecordingEngine()
    with pytest.raises(KeyError):
        _backend_on(engine).get_variable("g", Workspace.GLOBAL)
    assert "global g" not in engine.statements


def test_base_access_issues_no_statements() -> None:
    """Base workspace access goes straight through the workspace mapping."""
    engine: RecordingEngine = RecordingEngine()
    backend: MatlabBackend = _backend_on(engine)
    backend.set_variable("b", DynamicArray((1, 1), [2.0]), Workspace.BASE)
    assert backend.get_variable("b", Workspace.BASE) == DynamicArray((1, 1), [2.0])
    assert engine.statements == []
