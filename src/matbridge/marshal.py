"""Conversion between numpy values and engine arrays.

Every function here is pure: no I/O, no session state, safe from any thread.
Encoding a supported value always succeeds. Decoding checks the array shape
against the requested :class:`ShapeKind` and degrades to the kind's canonical
empty value (``nan`` for scalars) instead of raising.
"""

import enum
import math
from collections.abc import Sequence

import numpy as np

from matbridge.arrays import DynamicArray
from matbridge.errors import ShapeMismatch
from matbridge.layout import from_column_major
from matbridge.layout import to_column_major
from matbridge.outcome import Outcome

_REAL_SCALAR_TYPES: tuple[type, ...] = (bool, int, float, np.bool_, np.integer, np.floating)


class ShapeKind(enum.Enum):
    """Closed set of local value shapes understood by the marshaller."""

    SCALAR = "scalar"
    VECTOR = "vector"
    MATRIX = "matrix"
    RAW = "raw"


def _coerce_kind(kind: ShapeKind | str) -> ShapeKind:
    """Normalize a shape kind given as enum member or name.

    :param kind: Shape kind or its string value.
    :returns: Shape kind member.
    :raises ValueError: If ``kind`` names no shape kind.
    """
    if isinstance(kind, ShapeKind) is True:
        return kind
    return ShapeKind(kind)


def _is_real_scalar(value: object) -> bool:
    """Report whether ``value`` is a real number.

    :param value: Candidate value.
    :returns: ``True`` for Python and numpy real scalars.
    """
    return isinstance(value, _REAL_SCALAR_TYPES)


def kind_of(value: object) -> ShapeKind:
    """Classify one local value.

    Lists and tuples of real numbers are vectors, never batches.

    :param value: Local value.
    :returns: Shape kind of ``value``.
    :raises TypeError: If ``value`` has no engine representation here.
    """
    if isinstance(value, DynamicArray) is True:
        return ShapeKind.RAW
    if _is_real_scalar(value) is True:
        return ShapeKind.SCALAR

    if isinstance(value, np.ndarray) is True:
        if np.iscomplexobj(value) is True:
            raise TypeError("Complex arrays are not supported")
        if value.dtype.kind not in "biuf":
            raise TypeError(f"Arrays of dtype {value.dtype} are not supported")
        if value.ndim == 0:
            return ShapeKind.SCALAR
        if value.ndim == 1:
            return ShapeKind.VECTOR
        if value.ndim == 2:
            return ShapeKind.MATRIX
        raise TypeError(f"Arrays of rank {value.ndim} are not supported")

    if isinstance(value, (list, tuple)) is True:
        for item in value:
            if _is_real_scalar(item) is False:
                raise TypeError(
                    "Only sequences of real numbers encode as vectors; "
                    + "use encode_batch for collections of arrays"
                )
        return ShapeKind.VECTOR

    raise TypeError(f"Cannot encode values of type {type(value).__name__}")


def _encode_scalar(value: object) -> DynamicArray:
    """Encode one real number.

    :param value: Real scalar or zero-dimensional array.
    :returns: Rank-1 array with one element.
    """
    return DynamicArray((1,), [float(value)])


def _encode_vector(value: object) -> DynamicArray:
    """Encode a vector as an ``n x 1`` column without transposition.

    :param value: One-dimensional array or sequence of real numbers.
    :returns: Column array.
    """
    elements: np.ndarray = np.asarray(value, dtype=np.float64).reshape(-1)
    return DynamicArray((elements.size, 1), elements)


def _encode_matrix(value: np.ndarray) -> DynamicArray:
    """Encode a matrix in column-major order.

    :param value: Two-dimensional array.
    :returns: ``rows x cols`` array.
    """
    matrix: np.ndarray = np.asarray(value, dtype=np.float64)
    rows, cols = matrix.shape
    return DynamicArray((rows, cols), to_column_major(matrix))


def encode(value: object) -> DynamicArray:
    """Encode one scalar, vector or matrix.

    Engine arrays pass through unchanged.

    :param value: Local value.
    :returns: Engine array.
    :raises TypeError: If ``value`` has no engine representation here.
    """
    kind: ShapeKind = kind_of(value)
    if kind is ShapeKind.RAW:
        return value  # type: ignore[return-value]
    if kind is ShapeKind.SCALAR:
        return _encode_scalar(value)
    if kind is ShapeKind.VECTOR:
        return _encode_vector(value)
    return _encode_matrix(value)  # type: ignore[arg-type]


def encode_batch(values: Sequence[object]) -> list[DynamicArray]:
    """Encode a homogeneous batch element-wise.

    :param values: Values sharing one shape kind.
    :returns: Engine arrays in input order; empty for an empty batch.
    :raises TypeError: If the values mix shape kinds or one cannot be encoded.
    """
    encoded: list[DynamicArray] = []
    batch_kind: ShapeKind | None = None
    for index, value in enumerate(values):
        kind: ShapeKind = kind_of(value)
        if batch_kind is None:
            batch_kind = kind
        elif kind is not batch_kind:
            raise TypeError(
                f"Batch element {index} is a {kind.value}, "
                + f"expected {batch_kind.value} like the elements before it"
            )
        encoded.append(encode(value))
    return encoded


def empty_value(kind: ShapeKind | str) -> object:
    """Return the canonical value decoding degrades to for ``kind``.

    :param kind: Target shape kind.
    :returns: ``nan``, an empty vector, a ``0 x 0`` matrix or an empty array.
    """
    target: ShapeKind = _coerce_kind(kind)
    if target is ShapeKind.SCALAR:
        return math.nan
    if target is ShapeKind.VECTOR:
        return np.empty(0, dtype=np.float64)
    if target is ShapeKind.MATRIX:
        return np.empty((0, 0), dtype=np.float64)
    return DynamicArray.empty()


def _decode_scalar(array: DynamicArray) -> float | None:
    dims: tuple[int, ...] = array.dimensions
    if len(dims) == 0 or len(dims) > 2:
        return None
    if dims[0] != 1 or array.is_empty is True:
        return None
    return float(array.data[0])


def _decode_vector(array: DynamicArray) -> np.ndarray | None:
    dims: tuple[int, ...] = array.dimensions
    if len(dims) != 2:
        return None
    if min(dims) != 1 or max(dims) == 0:
        return None
    return np.array(array.data, dtype=np.float64)


def _decode_matrix(array: DynamicArray) -> np.ndarray | None:
    dims: tuple[int, ...] = array.dimensions
    if len(dims) != 2:
        return None
    rows, cols = dims
    if rows == 0 or cols == 0:
        return None
    elements: np.ndarray = np.asarray(array.data, dtype=np.float64)
    return from_column_major(elements, rows, cols)


def try_decode(array: DynamicArray, kind: ShapeKind | str) -> Outcome[object]:
    """Decode one engine array, reporting shape mismatches explicitly.

    :param array: Engine array.
    :param kind: Target shape kind.
    :returns: Outcome holding the decoded value, or the canonical empty value and
        a :class:`ShapeMismatch` fault.
    """
    target: ShapeKind = _coerce_kind(kind)
    if target is ShapeKind.RAW:
        return Outcome.success(array)

    decoded: object
    if target is ShapeKind.SCALAR:
        decoded = _decode_scalar(array)
    elif target is ShapeKind.VECTOR:
        decoded = _decode_vector(array)
    else:
        decoded = _decode_matrix(array)

    if decoded is None:
        fault: ShapeMismatch = ShapeMismatch(
            f"Cannot decode {array!r} as a {target.value}"
        )
        return Outcome.failure(empty_value(target), fault)
    return Outcome.success(decoded)


def decode(array: DynamicArray, kind: ShapeKind | str) -> object:
    """Decode one engine array, degrading to the empty value on mismatch.

    :param array: Engine array.
    :param kind: Target shape kind.
    :returns: Decoded value or the canonical empty value for ``kind``.
    """
    return try_decode(array, kind).value


def decode_batch(arrays: Sequence[DynamicArray], kind: ShapeKind | str) -> list[object]:
    """Decode engine arrays element-wise.

    :param arrays: Engine arrays.
    :param kind: Target shape kind shared by all elements.
    :returns: Decoded values in input order.
    """
    target: ShapeKind = _coerce_kind(kind)
    return [decode(array, target) for array in arrays]
