"""Dense storage order translation between numpy and the engine.

The engine stores arrays column-major. Numpy arrays default to row-major but
may be either, so every matrix crossing the boundary goes through
:func:`to_column_major` or :func:`from_column_major`.
"""

import enum

import numpy as np


class StorageOrder(enum.Enum):
    """Dense element order of a two-dimensional array."""

    ROW_MAJOR = "C"
    COLUMN_MAJOR = "F"


def native_order(matrix: np.ndarray) -> StorageOrder:
    """Report the storage order of ``matrix``.

    Arrays that are both row- and column-contiguous (one row or one column) and
    non-contiguous views report ``ROW_MAJOR``, numpy's default.

    :param matrix: Two-dimensional array.
    :returns: Detected storage order.
    """
    is_fortran: bool = bool(matrix.flags.f_contiguous)
    is_c: bool = bool(matrix.flags.c_contiguous)
    if is_fortran is True and is_c is False:
        return StorageOrder.COLUMN_MAJOR
    return StorageOrder.ROW_MAJOR


def to_column_major(matrix: np.ndarray) -> np.ndarray:
    """Flatten a matrix into engine element order.

    Column-major sources are copied as laid out in memory. Row-major sources
    are transposed during the copy.

    :param matrix: Two-dimensional array.
    :returns: New one-dimensional array in column-major order.
    :raises ValueError: If ``matrix`` is not two-dimensional.
    """
    if matrix.ndim != 2:
        raise ValueError(f"Expected a two-dimensional array, got {matrix.ndim} dimensions")

    order: StorageOrder = native_order(matrix)
    if order is StorageOrder.COLUMN_MAJOR:
        return np.ravel(matrix, order="K").copy()

    transposed: np.ndarray = np.array(matrix.T, order="C")
    return transposed.reshape(-1)


def from_column_major(buffer: np.ndarray, rows: int, cols: int) -> np.ndarray:
    """Rebuild a row-major matrix from engine element order.

    :param buffer: Flat column-major elements.
    :param rows: Number of rows.
    :param cols: Number of columns.
    :returns: New C-contiguous ``rows x cols`` array.
    :raises ValueError: If the buffer size does not match ``rows * cols``.
    """
    flat: np.ndarray = np.asarray(buffer).reshape(-1)
    if flat.size != rows * cols:
        raise ValueError(f"Cannot lay out {flat.size} elements as {rows}x{cols}")

    # column j of the result is the contiguous run buffer[j * rows:(j + 1) * rows]
    by_column: np.ndarray = flat.reshape(cols, rows)
    return np.ascontiguousarray(by_column.T)
