"""Engine-side array values and workspace scopes."""

import enum
import math

import numpy as np


class Workspace(enum.Enum):
    """Variable scope inside the engine."""

    BASE = "base"
    GLOBAL = "global"


class ElementType(enum.Enum):
    """Element class tag carried by an engine array."""

    DOUBLE = "double"
    SINGLE = "single"
    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    LOGICAL = "logical"

    @property
    def dtype(self) -> np.dtype:
        """Return the numpy dtype matching this element class.

        :returns: Numpy dtype.
        """
        if self is ElementType.LOGICAL:
            return np.dtype(np.bool_)
        if self is ElementType.SINGLE:
            return np.dtype(np.float32)
        if self is ElementType.DOUBLE:
            return np.dtype(np.float64)
        return np.dtype(self.value)


class DynamicArray:
    """Dimension-tagged engine array with a flat column-major buffer.

    Instances are produced by engine round trips or by the marshaller and are
    consumed immediately; nothing in matbridge retains them.
    """

    __slots__ = ("_dimensions", "_element_type", "_data")

    _dimensions: tuple[int, ...]
    _element_type: ElementType
    _data: np.ndarray

    def __init__(
        self,
        dimensions: tuple[int, ...] | list[int],
        data: object = None,
        element_type: ElementType = ElementType.DOUBLE,
    ) -> None:
        """Initialize an engine array.

        :param dimensions: Dimension list, outermost first.
        :param data: Flat elements in column-major order. ``None`` means no elements.
        :param element_type: Element class tag.
        :raises ValueError: If a dimension is negative or the element count does not
            match the dimensions.
        """
        normalized: tuple[int, ...] = tuple(int(dimension) for dimension in dimensions)
        for dimension in normalized:
            if dimension < 0:
                raise ValueError(f"Array dimensions must be non-negative, got {normalized}")

        if data is None:
            buffer: np.ndarray = np.empty(0, dtype=element_type.dtype)
        else:
            buffer = np.array(data, dtype=element_type.dtype).reshape(-1)

        expected_count: int = math.prod(normalized)
        if buffer.size != expected_count:
            raise ValueError(
                f"Array with dimensions {normalized} needs {expected_count} elements, "
                + f"got {buffer.size}"
            )
        buffer.flags.writeable = False

        self._dimensions = normalized
        self._element_type = element_type
        self._data = buffer

    @classmethod
    def empty(cls) -> "DynamicArray":
        """Return the canonical empty array.

        :returns: A ``0 x 0`` double array.
        """
        return cls((0, 0))

    @property
    def dimensions(self) -> tuple[int, ...]:
        """Return the dimension list.

        :returns: Dimension tuple.
        """
        return self._dimensions

    @property
    def element_type(self) -> ElementType:
        """Return the element class tag.

        :returns: Element type.
        """
        return self._element_type

    @property
    def data(self) -> np.ndarray:
        """Return the flat, read-only, column-major element buffer.

        :returns: One-dimensional numpy array.
        """
        return self._data

    @property
    def rank(self) -> int:
        """Return the number of dimensions.

        :returns: Rank.
        """
        return len(self._dimensions)

    @property
    def number_of_elements(self) -> int:
        """Return the number of stored elements.

        :returns: Element count.
        """
        return int(self._data.size)

    @property
    def is_empty(self) -> bool:
        """Report whether the array holds no elements.

        :returns: ``True`` when there are no elements.
        """
        return self._data.size == 0

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DynamicArray) is False:
            return NotImplemented
        if self._dimensions != other._dimensions:
            return False
        if self._element_type is not other._element_type:
            return False
        return bool(np.array_equal(self._data, other._data, equal_nan=self._data.dtype.kind == "f"))

    __hash__ = None  # type: ignore[assignment]

    def __reduce__(self) -> object:
        return (
            DynamicArray,
            (self._dimensions, np.array(self._data), self._element_type),
        )

    def __repr__(self) -> str:
        shape: str = "x".join(str(dimension) for dimension in self._dimensions)
        return f"DynamicArray({shape} {self._element_type.value})"
