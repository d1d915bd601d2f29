"""Engine backend for MATLAB, built on the ``matlab.engine`` client API.

``matlab.engine`` ships with MATLAB (``pip install matlabengine``) and is only
imported once a backend instance is created, so the conversion helpers in this
module stay usable without it.
"""

import contextlib
import io
import logging
import re
from collections.abc import Iterator

import numpy as np

from matbridge.arrays import DynamicArray
from matbridge.arrays import ElementType
from matbridge.arrays import Workspace
from matbridge.backends.base import EngineBackend

logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN: re.Pattern[str] = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_ELEMENT_TYPES_BY_CLASS: dict[str, ElementType] = {
    element_type.value: element_type for element_type in ElementType
}


def _require_identifier(name: str) -> str:
    """Validate an engine variable name before it is placed in statement text.

    :param name: Candidate variable name.
    :returns: ``name`` unchanged.
    :raises ValueError: If ``name`` is not a valid engine identifier.
    """
    matched: re.Match[str] | None = _IDENTIFIER_PATTERN.match(name)
    if matched is None:
        raise ValueError(f"Invalid engine variable name: {name!r}")
    return name


def array_from_matlab(value: object) -> DynamicArray:
    """Convert a value returned by ``matlab.engine`` into an engine array.

    Python scalars stand for ``1 x 1`` arrays. Numeric ``matlab`` arrays expose
    their class through their type name and their dimensions through ``size``.

    :param value: Value produced by the engine client.
    :returns: Engine array.
    :raises TypeError: For values outside the numeric array subset.
    """
    if isinstance(value, bool) is True:
        return DynamicArray((1, 1), [value], ElementType.LOGICAL)
    if isinstance(value, int) is True:
        return DynamicArray((1, 1), [value], ElementType.INT64)
    if isinstance(value, float) is True:
        return DynamicArray((1, 1), [value], ElementType.DOUBLE)

    class_name: str = type(value).__name__
    element_type: ElementType | None = _ELEMENT_TYPES_BY_CLASS.get(class_name)
    size: object = getattr(value, "size", None)
    if element_type is None or isinstance(size, tuple) is False:
        raise TypeError(f"Unsupported engine value of type {class_name}")
    if getattr(value, "_is_complex", False) is True:
        raise TypeError("Complex engine arrays are not supported")

    dimensions: tuple[int, ...] = tuple(int(dimension) for dimension in size)
    nested: np.ndarray = np.array(value, dtype=element_type.dtype).reshape(dimensions)
    return DynamicArray(dimensions, nested.ravel(order="F"), element_type)


def matlab_initializer(array: DynamicArray) -> tuple[str, object]:
    """Describe how to build the ``matlab`` value for an engine array.

    :param array: Engine array.
    :returns: Tuple of ``(matlab class name, initializer)``. The initializer is a
        Python ``float`` for single doubles and nested row lists otherwise.
    """
    class_name: str = array.element_type.value
    if array.element_type is ElementType.DOUBLE and array.number_of_elements == 1:
        return class_name, float(array.data[0])

    dimensions: tuple[int, ...] = array.dimensions
    if len(dimensions) == 1:
        dimensions = (dimensions[0], 1)
    if array.is_empty is True:
        return class_name, []
    nested: np.ndarray = np.reshape(array.data, dimensions, order="F")
    return class_name, nested.tolist()


class MatlabBackend(EngineBackend):
    """Drive one MATLAB session through ``matlab.engine``."""

    _engine_module: object
    _matlab_module: object
    _engine: object | None

    def __init__(self) -> None:
        """Import the MATLAB client API.

        :raises ImportError: If ``matlab.engine`` is not installed.
        """
        import matlab
        import matlab.engine

        self._matlab_module = matlab
        self._engine_module = matlab.engine
        self._engine = None

    def _require_engine(self) -> object:
        """Return the connected engine.

        :returns: ``matlab.engine.MatlabEngine`` instance.
        :raises RuntimeError: If ``connect`` has not succeeded.
        """
        if self._engine is None:
            raise RuntimeError("MATLAB engine is not connected")
        return self._engine

    def _to_matlab(self, array: DynamicArray) -> object:
        """Build the ``matlab`` value for one engine array.

        :param array: Engine array.
        :returns: Python float or ``matlab`` array.
        """
        class_name, initializer = matlab_initializer(array)
        if isinstance(initializer, float) is True:
            return initializer
        array_class = getattr(self._matlab_module, class_name)
        return array_class(initializer)

    @contextlib.contextmanager
    def _global_binding(self, name: str) -> Iterator[None]:
        """Make the global ``name`` reachable through the base workspace for one access.

        The base workspace is left as it was found: a link created here is
        cleared afterwards, and an existing link is kept.

        :param name: Variable name.
        :raises ValueError: If the base workspace holds a local variable ``name``,
            which declaring the global would overwrite.
        """
        engine = self._require_engine()
        identifier: str = _require_identifier(name)
        in_base: object = engine.eval(f"exist('{identifier}', 'var')", nargout=1)
        if in_base != 0:
            is_linked: object = engine.eval(f"getfield(whos('{identifier}'), 'global')", nargout=1)
            if is_linked is not True:
                raise ValueError(
                    f"Base workspace variable {identifier!r} would be overwritten by the global of that name"
                )
            yield
            return

        engine.eval(f"global {identifier}", nargout=0)
        try:
            yield
        finally:
            engine.eval(f"clear {identifier}", nargout=0)

    def find(self) -> list[str]:
        names: object = self._engine_module.find_matlab()
        return [str(name) for name in names]

    def connect(self, shared_name: str | None) -> None:
        if shared_name is None:
            logger.info("Connecting to a MATLAB session")
            self._engine = self._engine_module.connect_matlab()
            return
        logger.info("Connecting to shared MATLAB session %r", shared_name)
        self._engine = self._engine_module.connect_matlab(shared_name)

    def get_variable(self, name: str, workspace: Workspace) -> DynamicArray:
        engine = self._require_engine()
        if workspace is Workspace.BASE:
            return array_from_matlab(engine.workspace[name])

        identifier: str = _require_identifier(name)
        is_defined: object = engine.eval(f"ismember('{identifier}', who('global'))", nargout=1)
        if is_defined is not True:
            raise KeyError(f"Undefined global variable {identifier!r}")
        with self._global_binding(identifier):
            value: object = engine.workspace[identifier]
        return array_from_matlab(value)

    def set_variable(self, name: str, value: DynamicArray, workspace: Workspace) -> None:
        engine = self._require_engine()
        converted: object = self._to_matlab(value)
        if workspace is Workspace.BASE:
            engine.workspace[name] = converted
            return

        with self._global_binding(name):
            engine.workspace[name] = converted

    def evaluate(self, statement: str) -> tuple[str, str]:
        engine = self._require_engine()
        output = io.StringIO()
        error = io.StringIO()
        try:
            engine.eval(statement, nargout=0, stdout=output, stderr=error)
        except self._engine_module.MatlabExecutionError as exc:
            if len(error.getvalue()) == 0:
                error.write(str(exc))
        return output.getvalue(), error.getvalue()

    def invoke(
        self,
        function_name: str,
        num_returns: int,
        args: list[DynamicArray],
    ) -> tuple[list[DynamicArray], str, str]:
        engine = self._require_engine()
        converted: list[object] = [self._to_matlab(arg) for arg in args]
        output = io.StringIO()
        error = io.StringIO()
        try:
            result: object = engine.feval(
                function_name,
                *converted,
                nargout=num_returns,
                stdout=output,
                stderr=error,
            )
        except self._engine_module.MatlabExecutionError as exc:
            if len(error.getvalue()) == 0:
                error.write(str(exc))
            return [], output.getvalue(), error.getvalue()

        values: list[object]
        if num_returns == 0:
            values = []
        elif num_returns == 1:
            values = [result]
        else:
            values = list(result)  # type: ignore[call-overload]
        return [array_from_matlab(value) for value in values], output.getvalue(), error.getvalue()

    def terminate(self) -> None:
        engine: object | None = self._engine
        self._engine = None
        if engine is not None:
            engine.exit()
