from collections.abc import Sequence
from enum import IntEnum
from numbers import Number

import numpy as np


class DataType(IntEnum):
    """The element types understood by a backend graph. The integer values follow the
    numbering used by dataflow graph engines for their type enums."""

    FLOAT = 1
    DOUBLE = 2
    INT32 = 3
    UINT8 = 4
    INT16 = 5
    INT8 = 6
    STRING = 7
    COMPLEX64 = 8
    INT64 = 9
    BOOL = 10
    BFLOAT16 = 14
    COMPLEX128 = 18
    HALF = 19

    @property
    def numpy(self) -> np.dtype:
        """Retrieves the numpy data type corresponding to this data type.

        Returns:
            The numpy data type. Strings map to the object data type, and bfloat16
                (which has no numpy counterpart) maps to float32.
        """
        return np.dtype(_NUMPY_DTYPES[self])

    @property
    def is_integer(self) -> bool:
        return self in INTEGER_TYPES

    @property
    def is_floating(self) -> bool:
        return self in FLOATING_TYPES


INTEGER_TYPES = frozenset(
    {DataType.INT8, DataType.INT16, DataType.INT32, DataType.INT64, DataType.UINT8}
)
FLOATING_TYPES = frozenset({DataType.HALF, DataType.BFLOAT16, DataType.FLOAT, DataType.DOUBLE})
COMPLEX_TYPES = frozenset({DataType.COMPLEX64, DataType.COMPLEX128})
INDEX_TYPES = frozenset({DataType.INT32, DataType.INT64})
NUMERIC_TYPES = INTEGER_TYPES | FLOATING_TYPES | COMPLEX_TYPES

_NUMPY_DTYPES = {
    DataType.FLOAT: np.float32,
    DataType.DOUBLE: np.float64,
    DataType.INT32: np.int32,
    DataType.UINT8: np.uint8,
    DataType.INT16: np.int16,
    DataType.INT8: np.int8,
    DataType.STRING: np.object_,
    DataType.COMPLEX64: np.complex64,
    DataType.INT64: np.int64,
    DataType.BOOL: np.bool_,
    DataType.BFLOAT16: np.float32,
    DataType.COMPLEX128: np.complex128,
    DataType.HALF: np.float16,
}

_FROM_NUMPY = {
    np.dtype(np.float32): DataType.FLOAT,
    np.dtype(np.float64): DataType.DOUBLE,
    np.dtype(np.float16): DataType.HALF,
    np.dtype(np.int8): DataType.INT8,
    np.dtype(np.int16): DataType.INT16,
    np.dtype(np.int32): DataType.INT32,
    np.dtype(np.int64): DataType.INT64,
    np.dtype(np.uint8): DataType.UINT8,
    np.dtype(np.bool_): DataType.BOOL,
    np.dtype(np.complex64): DataType.COMPLEX64,
    np.dtype(np.complex128): DataType.COMPLEX128,
}


# The data types of Python scalars, from the narrowest to the widest
_SCALAR_PROMOTION = (DataType.BOOL, DataType.INT32, DataType.FLOAT, DataType.COMPLEX64)


def _promote(dtypes: list[DataType]) -> DataType:
    kinds = set(dtypes)
    if len(kinds) == 1:
        return kinds.pop()
    if DataType.STRING in kinds:
        raise ValueError("Cannot mix strings and numbers in the same value")
    if kinds <= set(_SCALAR_PROMOTION):
        return max(kinds, key=_SCALAR_PROMOTION.index)
    promoted = np.result_type(*(d.numpy for d in kinds))
    if promoted not in _FROM_NUMPY:
        raise ValueError(f"Cannot promote the data types {sorted(d.name for d in kinds)}")
    return _FROM_NUMPY[promoted]


def dtype_value(x: Number | str | Sequence | np.ndarray) -> DataType:
    """Given a number, a string, a (nested) sequence of them or a Numpy array,
    return its data type. Python scalars map to the 32-bit backend types, as a
    literal written in user code carries no precision. The data type of a
    sequence is the widest data type of its elements, e.g., [1, 2.5] is FLOAT.

    Args:
        x: The value.

    Returns:
        The data type associated to the given value.

    Raises:
        ValueError: If the data type of the value cannot be retrieved.
    """
    # bool must be checked first, as it is a subclass of int
    if isinstance(x, (bool, np.bool_)):
        return DataType.BOOL
    if isinstance(x, int):
        return DataType.INT32
    if isinstance(x, float):
        return DataType.FLOAT
    if isinstance(x, complex):
        return DataType.COMPLEX64
    if isinstance(x, (str, bytes)):
        return DataType.STRING
    if isinstance(x, (np.ndarray, np.generic)):
        if x.dtype.kind in ("U", "S", "O"):
            return DataType.STRING
        if x.dtype in _FROM_NUMPY:
            return _FROM_NUMPY[x.dtype]
    elif isinstance(x, Sequence):
        if not x:
            raise ValueError("Cannot retrieve the data type of an empty sequence")
        return _promote([dtype_value(v) for v in x])
    raise ValueError(f"Cannot retrieve data type of value of type {type(x)}")
