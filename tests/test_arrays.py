"""Tests for engine array values and result wrappers."""

import pickle

import numpy as np
import pytest

from matbridge import ConnectionFault
from matbridge import DynamicArray
from matbridge import ElementType
from matbridge import Outcome


def test_dynamic_array_validates_element_count() -> None:
    """Dimensions and element count must agree."""
    with pytest.raises(ValueError):
        DynamicArray((2, 2), [1.0, 2.0, 3.0])


def test_dynamic_array_rejects_negative_dimensions() -> None:
    """Dimensions are sizes."""
    with pytest.raises(ValueError):
        DynamicArray((-1, 2))


def test_dynamic_array_buffer_is_read_only_copy() -> None:
    """The array owns its elements."""
    source: np.ndarray = np.array([1.0, 2.0])
    array: DynamicArray = DynamicArray((2, 1), source)
    source[0] = 5.0
    assert array.data.tolist() == [1.0, 2.0]
    with pytest.raises(ValueError):
        array.data[0] = 3.0


def test_dynamic_array_properties() -> None:
    """Rank, element count and emptiness follow the dimensions."""
    array: DynamicArray = DynamicArray((2, 3), np.arange(6), ElementType.INT32)
    assert array.rank == 2
    assert array.number_of_elements == 6
    assert array.is_empty is False
    assert array.data.dtype == np.int32
    assert DynamicArray.empty().is_empty is True
    assert DynamicArray.empty().dimensions == (0, 0)


def test_dynamic_array_equality_and_pickling() -> None:
    """Arrays compare by value and survive the worker pipe."""
    array: DynamicArray = DynamicArray((1, 3), [1.0, float("nan"), 3.0])
    restored: DynamicArray = pickle.loads(pickle.dumps(array))
    assert restored == array
    assert restored != DynamicArray((3, 1), [1.0, float("nan"), 3.0])
    assert restored != DynamicArray((1, 3), [1, 0, 3], ElementType.INT8)


def test_element_type_dtypes() -> None:
    """Element classes map onto numpy dtypes."""
    assert ElementType.DOUBLE.dtype == np.float64
    assert ElementType.SINGLE.dtype == np.float32
    assert ElementType.UINT16.dtype == np.uint16
    assert ElementType.LOGICAL.dtype == np.bool_


def test_outcome_success_and_failure() -> None:
    """Outcomes tell a real empty value from a degraded one."""
    success: Outcome[list[str]] = Outcome.success([])
    assert success.ok is True
    assert success.unwrap() == []

    fault: ConnectionFault = ConnectionFault("engine unreachable")
    failure: Outcome[list[str]] = Outcome.failure([], fault)
    assert failure.ok is False
    assert failure.value == []
    assert failure.fault is fault
    with pytest.raises(ConnectionFault):
        failure.unwrap()
