from typing import TYPE_CHECKING, Any

from scopegraph.attributes import Attribute
from scopegraph.dtypes import DataType, dtype_value
from scopegraph.errors import UnsupportedDataTypeError
from scopegraph.operation import Operation, check_same_dtype
from scopegraph.tensor import Tensor

if TYPE_CHECKING:
    from scopegraph.scope import Scope

# The data types of the bounds of a range
RANGE_TYPES = frozenset({DataType.INT32, DataType.INT64, DataType.FLOAT, DataType.DOUBLE})


class BinaryOperation(Operation, abstract=True):
    """An element-wise operation on two tensors of the same data type."""

    def __init__(self, x: Tensor, y: Tensor, *, name: str | None = None):
        check_same_dtype([x, y], f"operands of {self.type_name}")
        super().__init__([x, y], name=name)


class Add(BinaryOperation):
    type_name = "Add"


class Sub(BinaryOperation):
    type_name = "Sub"


class Mul(BinaryOperation):
    type_name = "Mul"


class Range(Operation):
    type_name = "Range"
    type_attr = "Tidx"

    def __init__(self, start: Tensor, limit: Tensor, delta: Tensor, *, name: str | None = None):
        dtype = check_same_dtype([start, limit, delta], "range bounds")
        if dtype not in RANGE_TYPES:
            raise UnsupportedDataTypeError(f"Range does not support the data type {dtype.name}")
        super().__init__([start, limit, delta], name=name)


def _operands(scope: "Scope", x: Any, y: Any) -> tuple[Tensor, Tensor]:
    # Python numbers take the data type of the tensor operand
    if isinstance(x, Tensor):
        return x, scope.convert_to_tensor(y, dtype=None if isinstance(y, Tensor) else x.dtype)
    y = scope.convert_to_tensor(y)
    return scope.convert_to_tensor(x, dtype=y.dtype), y


def add(scope: "Scope", x: Any, y: Any, name: str | None = None) -> Tensor:
    x, y = _operands(scope, x, y)
    return scope.install(Add(x, y, name=name))


def sub(scope: "Scope", x: Any, y: Any, name: str | None = None) -> Tensor:
    x, y = _operands(scope, x, y)
    return scope.install(Sub(x, y, name=name))


def mul(scope: "Scope", x: Any, y: Any, name: str | None = None) -> Tensor:
    x, y = _operands(scope, x, y)
    return scope.install(Mul(x, y, name=name))


def range(  # pylint: disable=redefined-builtin
    scope: "Scope",
    start: Any,
    limit: Any = None,
    delta: Any = 1,
    dtype: DataType | None = None,
    name: str | None = None,
) -> Tensor:
    """Creates a sequence of numbers, from start (included) to limit (excluded) by
    increments of delta.

    Args:
        scope: The scope.
        start: The first number of the sequence. If limit is None, then it is the limit of
            the sequence and the first number is zero.
        limit: The limit of the sequence.
        delta: The increment.
        dtype: The data type of the sequence. If it is None, then it is the data type of the
            tensor bounds, if any, or it is retrieved from the number bounds.
        name: The name of the node.

    Returns:
        A 1-D tensor.

    Raises:
        InputTypeMismatch: If the tensor bounds do not have the same data type.
        UnsupportedDataTypeError: If the data type is not INT32, INT64, FLOAT or DOUBLE.
    """
    if limit is None:
        start, limit = 0, start
    bounds = [start, limit, delta]
    if dtype is None:
        tensors = [b for b in bounds if isinstance(b, Tensor)]
        if tensors:
            dtype = tensors[0].dtype
        elif any(dtype_value(b) == DataType.FLOAT for b in bounds):
            dtype = DataType.FLOAT
        else:
            dtype = DataType.INT32
    if dtype not in RANGE_TYPES:
        raise UnsupportedDataTypeError(f"Range does not support the data type {dtype.name}")
    start, limit, delta = (scope.convert_to_tensor(b, dtype=dtype) for b in bounds)
    return scope.install(Range(start, limit, delta, name=name))
