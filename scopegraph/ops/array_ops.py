from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from scopegraph.attributes import Attribute
from scopegraph.dtypes import INDEX_TYPES, DataType
from scopegraph.errors import (
    ArgumentCountError,
    MalformedShapeError,
    UnsupportedDataTypeError,
)
from scopegraph.operation import ConstantValue, FixedType, Operation, SameAsInput, check_same_dtype
from scopegraph.ops import math_ops
from scopegraph.shape import Dim, Shape, as_shape
from scopegraph.tensor import Tensor

if TYPE_CHECKING:
    from scopegraph.scope import Scope


def check_index_type(t: Tensor, what: str) -> DataType:
    if t.dtype not in INDEX_TYPES:
        raise UnsupportedDataTypeError(f"The {what} must be INT32 or INT64, found {t.dtype.name}")
    return t.dtype


class Const(Operation):
    type_name = "Const"
    type_attr = None

    def __init__(self, value: np.ndarray, dtype: DataType, *, name: str | None = None):
        self._value = np.asarray(value)
        super().__init__(
            attributes=[
                Attribute.from_tensor("value", self._value),
                Attribute.from_type("dtype", dtype),
            ],
            name=name,
            output_rule=FixedType(dtype),
        )

    @property
    def value(self) -> np.ndarray:
        return self._value

    def infer_shapes(self, scope: "Scope") -> list[Shape]:
        return [Shape(self._value.shape)]


class Placeholder(Operation):
    type_name = "Placeholder"
    type_attr = None

    def __init__(
        self,
        dtype: DataType,
        shape: Shape | Iterable[Dim] | None = None,
        *,
        name: str | None = None,
    ):
        self._shape = as_shape(shape)
        super().__init__(
            attributes=[
                Attribute.from_type("dtype", dtype),
                Attribute.from_shape("shape", self._shape),
            ],
            name=name,
            output_rule=FixedType(dtype),
        )

    def infer_shapes(self, scope: "Scope") -> list[Shape]:
        return [self._shape]


class Identity(Operation):
    type_name = "Identity"

    def __init__(self, x: Tensor, *, name: str | None = None):
        super().__init__([x], name=name)


class ConcatV2(Operation):
    type_name = "ConcatV2"
    default_name = "concat"

    def __init__(self, values: Sequence[Tensor], axis: Tensor, *, name: str | None = None):
        check_same_dtype(values, "concatenated tensors")
        tidx = check_index_type(axis, "concatenation axis")
        super().__init__(
            [axis],
            input_lists=[(0, values)],
            attributes=[Attribute.from_int("N", len(values)), Attribute.from_type("Tidx", tidx)],
            name=name,
        )


class ExpandDims(Operation):
    type_name = "ExpandDims"

    def __init__(self, x: Tensor, axis: Tensor, *, name: str | None = None):
        tdim = check_index_type(axis, "expanded axis")
        super().__init__([x, axis], attributes=[Attribute.from_type("Tdim", tdim)], name=name)


class Fill(Operation):
    type_name = "Fill"
    type_attr_input = 1
    output_rule = SameAsInput(1)

    def __init__(self, dims: Tensor, value: Tensor, *, name: str | None = None):
        index_type = check_index_type(dims, "dimensions")
        super().__init__(
            [dims, value], attributes=[Attribute.from_type("index_type", index_type)], name=name
        )


class Gather(Operation):
    type_name = "Gather"
    type_attr = "Tparams"

    def __init__(self, params: Tensor, indices: Tensor, *, name: str | None = None):
        tindices = check_index_type(indices, "indices")
        super().__init__(
            [params, indices], attributes=[Attribute.from_type("Tindices", tindices)], name=name
        )


class Rank(Operation):
    type_name = "Rank"
    output_rule = FixedType(DataType.INT32)

    def __init__(self, x: Tensor, *, name: str | None = None):
        super().__init__([x], name=name)

    def constant_fold(self, scope: "Scope") -> ConstantValue | None:
        rank = self.inputs[0].get_shape(scope).rank
        if rank is None:
            return None
        return ConstantValue(np.array(rank, dtype=np.int32), DataType.INT32)

    def infer_shapes(self, scope: "Scope") -> list[Shape]:
        return [Shape.scalar()]


class Reshape(Operation):
    type_name = "Reshape"

    def __init__(self, tensor: Tensor, shape: Tensor, *, name: str | None = None):
        tshape = check_index_type(shape, "target shape")
        super().__init__(
            [tensor, shape], attributes=[Attribute.from_type("Tshape", tshape)], name=name
        )


class ShapeOf(Operation):
    """The shape of a tensor, as a 1-D tensor of type out_type."""

    type_name = "Shape"

    def __init__(
        self, x: Tensor, out_type: DataType = DataType.INT32, *, name: str | None = None
    ):
        if out_type not in INDEX_TYPES:
            raise UnsupportedDataTypeError(
                f"The output type of Shape must be INT32 or INT64, found {out_type.name}"
            )
        super().__init__(
            [x],
            attributes=[Attribute.from_type("out_type", out_type)],
            name=name,
            output_rule=FixedType(out_type),
        )
        self._out_type = out_type

    def constant_fold(self, scope: "Scope") -> ConstantValue | None:
        shape = self.inputs[0].get_shape(scope)
        if not shape.is_fully_defined:
            return None
        return ConstantValue(np.array(list(shape), dtype=self._out_type.numpy), self._out_type)

    def infer_shapes(self, scope: "Scope") -> list[Shape]:
        return [Shape([self.inputs[0].get_shape(scope).rank])]


class Size(Operation):
    type_name = "Size"

    def __init__(
        self, x: Tensor, out_type: DataType = DataType.INT32, *, name: str | None = None
    ):
        if out_type not in INDEX_TYPES:
            raise UnsupportedDataTypeError(
                f"The output type of Size must be INT32 or INT64, found {out_type.name}"
            )
        super().__init__(
            [x],
            attributes=[Attribute.from_type("out_type", out_type)],
            name=name,
            output_rule=FixedType(out_type),
        )
        self._out_type = out_type

    def constant_fold(self, scope: "Scope") -> ConstantValue | None:
        num_elements = self.inputs[0].get_shape(scope).num_elements()
        if num_elements is None:
            return None
        return ConstantValue(np.array(num_elements, dtype=self._out_type.numpy), self._out_type)

    def infer_shapes(self, scope: "Scope") -> list[Shape]:
        return [Shape.scalar()]


class Squeeze(Operation):
    type_name = "Squeeze"

    def __init__(self, x: Tensor, *, name: str | None = None):
        super().__init__([x], name=name)

    def squeeze_dims(self, dims: Sequence[int]) -> "Squeeze":
        """Sets the dimensions to squeeze. If it is not set, then all the dimensions of
        size one are squeezed."""
        return self.add_attribute(Attribute.from_ints("squeeze_dims", dims))


class Slice(Operation):
    type_name = "Slice"

    def __init__(self, x: Tensor, begin: Tensor, size: Tensor, *, name: str | None = None):
        index = check_same_dtype([begin, size], "slice bounds")
        if index not in INDEX_TYPES:
            raise UnsupportedDataTypeError(
                f"The slice bounds must be INT32 or INT64, found {index.name}"
            )
        super().__init__(
            [x, begin, size], attributes=[Attribute.from_type("Index", index)], name=name
        )


class Transpose(Operation):
    type_name = "Transpose"

    def __init__(self, x: Tensor, perm: Tensor, *, name: str | None = None):
        tperm = check_index_type(perm, "permutation")
        super().__init__([x, perm], attributes=[Attribute.from_type("Tperm", tperm)], name=name)


class Where(Operation):
    """The coordinates of the true elements of a boolean tensor."""

    type_name = "Where"
    output_rule = FixedType(DataType.INT64)

    def __init__(self, condition: Tensor, *, name: str | None = None):
        if condition.dtype != DataType.BOOL:
            raise UnsupportedDataTypeError(
                f"The condition must be of type BOOL, found {condition.dtype.name}"
            )
        super().__init__([condition], name=name)


class Select(Operation):
    type_name = "Select"
    type_attr_input = 1
    output_rule = SameAsInput(1)

    def __init__(self, condition: Tensor, x: Tensor, y: Tensor, *, name: str | None = None):
        if condition.dtype != DataType.BOOL:
            raise UnsupportedDataTypeError(
                f"The condition must be of type BOOL, found {condition.dtype.name}"
            )
        check_same_dtype([x, y], "selected tensors")
        super().__init__([condition, x, y], name=name)


def _index_tensor(scope: "Scope", value: Any, dtype: DataType = DataType.INT32) -> Tensor:
    # Integer lists become INT32 constants, while tensors are kept as they are
    if isinstance(value, Tensor):
        return value
    return scope.constant(value, dtype=dtype)


def identity(scope: "Scope", x: Tensor, name: str | None = None) -> Tensor:
    return scope.install(Identity(x, name=name))


def concat(
    scope: "Scope", values: Sequence[Tensor], axis: int | Tensor, name: str | None = None
) -> Tensor:
    """Concatenates tensors along one dimension.

    Args:
        scope: The scope.
        values: The tensors to concatenate, all having the same data type.
        axis: The dimension along which to concatenate.
        name: The name of the node.

    Returns:
        The concatenated tensor.

    Raises:
        ArgumentCountError: If there are no tensors to concatenate.
        InputTypeMismatch: If the tensors do not have the same data type.
    """
    # The values are checked before installing the axis
    check_same_dtype(values, "concatenated tensors")
    return scope.install(ConcatV2(values, _index_tensor(scope, axis), name=name))


def expand_dims(scope: "Scope", x: Tensor, axis: int | Tensor, name: str | None = None) -> Tensor:
    return scope.install(ExpandDims(x, _index_tensor(scope, axis), name=name))


def fill(
    scope: "Scope", dims: Sequence[int] | Tensor, value: Any, name: str | None = None
) -> Tensor:
    """Creates a tensor of the given shape filled with a scalar value."""
    dims = _index_tensor(scope, dims)
    return scope.install(Fill(dims, scope.convert_to_tensor(value), name=name))


def gather(
    scope: "Scope", params: Tensor, indices: Sequence[int] | Tensor, name: str | None = None
) -> Tensor:
    """Gathers slices of a tensor along its first dimension.

    Args:
        scope: The scope.
        params: The tensor to gather slices from.
        indices: The indices of the slices, of type INT32 or INT64.
        name: The name of the node.

    Returns:
        A tensor of shape indices.shape + params.shape[1:].

    Raises:
        UnsupportedDataTypeError: If the indices are not of type INT32 or INT64.
    """
    if isinstance(indices, Tensor):
        check_index_type(indices, "indices")
    return scope.install(Gather(params, _index_tensor(scope, indices), name=name))


def rank(scope: "Scope", x: Tensor, name: str | None = None) -> Tensor:
    """Computes the rank of a tensor. If the rank is statically known, then the rank is
    a constant node (unless constant folding is disabled for the scope)."""
    return scope.install(Rank(x, name=name))


def reshape(
    scope: "Scope", x: Tensor, shape: Sequence[int] | Tensor, name: str | None = None
) -> Tensor:
    """Reshapes a tensor.

    Args:
        scope: The scope.
        x: The tensor.
        shape: The target shape, either as a 1-D tensor or as a list of integers where at most
            one dimension is -1, i.e., the dimension inferred from the number of elements.
        name: The name of the node.

    Returns:
        The reshaped tensor.

    Raises:
        MalformedShapeError: If the target shape is given as an invalid list of integers.
    """
    if not isinstance(shape, Tensor):
        if any(isinstance(d, bool) or not isinstance(d, (int, np.integer)) for d in shape):
            raise MalformedShapeError(f"The target shape {list(shape)} must contain integers")
        dims = [int(d) for d in shape]
        if any(d < -1 for d in dims) or dims.count(-1) > 1:
            raise MalformedShapeError(f"Invalid target shape {dims}")
        shape = scope.constant(dims, shape=[len(dims)], dtype=DataType.INT32)
    return scope.install(Reshape(x, shape, name=name))


def shape(
    scope: "Scope", x: Tensor, out_type: DataType | None = None, name: str | None = None
) -> Tensor:
    """Computes the shape of a tensor.

    Args:
        scope: The scope.
        x: The tensor.
        out_type: The data type of the output, either INT32 (the default) or INT64.
        name: The name of the node.

    Returns:
        A 1-D tensor. If the shape of x is statically known, then it is a constant.

    Raises:
        UnsupportedDataTypeError: If the output type is neither INT32 nor INT64.
    """
    return scope.install(ShapeOf(x, out_type or DataType.INT32, name=name))


def size(
    scope: "Scope", x: Tensor, out_type: DataType | None = None, name: str | None = None
) -> Tensor:
    return scope.install(Size(x, out_type or DataType.INT32, name=name))


def squeeze(
    scope: "Scope", x: Tensor, axis: Sequence[int] | None = None, name: str | None = None
) -> Tensor:
    op = Squeeze(x, name=name)
    if axis:
        op = op.squeeze_dims(axis)
    return scope.install(op)


def slice(  # pylint: disable=redefined-builtin
    scope: "Scope",
    x: Tensor,
    begin: Sequence[int] | Tensor,
    size: Sequence[int] | Tensor,  # pylint: disable=redefined-outer-name
    name: str | None = None,
) -> Tensor:
    """Extracts a slice of a tensor. The slice starts at the given offsets, and it has the
    given size, where a size of -1 denotes all the remaining elements of a dimension."""
    begin = _index_tensor(scope, begin)
    size = _index_tensor(scope, size, begin.dtype)
    return scope.install(Slice(x, begin, size, name=name))


def transpose(
    scope: "Scope", x: Tensor, perm: Sequence[int] | Tensor | None = None, name: str | None = None
) -> Tensor:
    """Permutes the dimensions of a tensor.

    Args:
        scope: The scope.
        x: The tensor.
        perm: The permutation of the dimensions. If it is None, then the dimensions are
            reversed. If the rank of x is not statically known, the reversed permutation is
            computed by the graph as (rank - 1) - range(rank).
        name: The name of the node.

    Returns:
        The transposed tensor.
    """
    if perm is None:
        r = x.get_shape(scope).rank
        if r is not None:
            perm = list(reversed(range(r)))
        else:
            n = rank(scope, x)
            perm = math_ops.sub(scope, math_ops.sub(scope, n, 1), math_ops.range(scope, 0, n, 1))
    if not isinstance(perm, Tensor):
        perm = scope.constant([int(p) for p in perm], shape=[len(perm)], dtype=DataType.INT32)
    return scope.install(Transpose(x, perm, name=name))


def where_cond(
    scope: "Scope",
    condition: Tensor,
    x: Tensor | None = None,
    y: Tensor | None = None,
    name: str | None = None,
) -> Tensor:
    """Selects elements depending on a boolean condition.

    If both x and y are given, then the output has the elements of x where the condition
    is true, and the elements of y elsewhere. If neither is given, then the output is the
    2-D tensor of the coordinates of the true elements of the condition.

    Args:
        scope: The scope.
        condition: The condition, of type BOOL.
        x: The elements selected where the condition is true.
        y: The elements selected where the condition is false.
        name: The name of the node.

    Returns:
        The selected elements, or the coordinates of the true elements.

    Raises:
        UnsupportedDataTypeError: If the condition is not of type BOOL.
        ArgumentCountError: If only one of x and y is given.
    """
    if (x is None) != (y is None):
        raise ArgumentCountError("Either both or none of x and y must be given")
    if x is None:
        return scope.install(Where(condition, name=name))
    return scope.install(Select(condition, x, y, name=name))


def zeros(
    scope: "Scope",
    shape: Sequence[int] | Tensor,  # pylint: disable=redefined-outer-name
    dtype: DataType = DataType.FLOAT,
    name: str | None = None,
) -> Tensor:
    """Creates a tensor of zeros. Tensors of strings are filled with empty strings."""
    zero = "" if dtype == DataType.STRING else 0
    if isinstance(shape, Tensor):
        return fill(scope, shape, scope.constant(zero, dtype=dtype), name=name)
    return scope.constant(zero, shape=shape, name=name, dtype=dtype)
