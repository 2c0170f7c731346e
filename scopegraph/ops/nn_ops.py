import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from scopegraph.attributes import Attribute
from scopegraph.dtypes import FLOATING_TYPES, INTEGER_TYPES
from scopegraph.errors import (
    GraphBuildError,
    MalformedAttributeError,
    UnsupportedDataTypeError,
    ValidationError,
)
from scopegraph.operation import Operation, check_same_dtype
from scopegraph.ops import array_ops, math_ops
from scopegraph.tensor import Tensor

if TYPE_CHECKING:
    from scopegraph.scope import Scope

logger = logging.getLogger(__name__)

DATA_FORMATS = ("NHWC", "NCHW")


def _check_floating(t: Tensor, type_name: str) -> None:
    if t.dtype not in FLOATING_TYPES:
        raise UnsupportedDataTypeError(
            f"{type_name} requires a floating point tensor, found {t.dtype.name}"
        )


class Relu(Operation):
    type_name = "Relu"

    def __init__(self, features: Tensor, *, name: str | None = None):
        if features.dtype not in FLOATING_TYPES | INTEGER_TYPES:
            raise UnsupportedDataTypeError(
                f"Relu requires a real number tensor, found {features.dtype.name}"
            )
        super().__init__([features], name=name)


class BiasAdd(Operation):
    type_name = "BiasAdd"

    def __init__(
        self, value: Tensor, bias: Tensor, data_format: str = "NHWC", *, name: str | None = None
    ):
        check_same_dtype([value, bias], "operands of BiasAdd")
        if data_format not in DATA_FORMATS:
            raise MalformedAttributeError(
                f"The data format must be one of {DATA_FORMATS}, found {data_format!r}"
            )
        super().__init__(
            [value, bias],
            attributes=[Attribute.from_string("data_format", data_format)],
            name=name,
        )


class Softmax(Operation):
    """The softmax of the rows of a 2-D tensor."""

    type_name = "Softmax"

    def __init__(self, logits: Tensor, *, name: str | None = None):
        _check_floating(logits, self.type_name)
        super().__init__([logits], name=name)


class LogSoftmax(Operation):
    type_name = "LogSoftmax"

    def __init__(self, logits: Tensor, *, name: str | None = None):
        _check_floating(logits, self.type_name)
        super().__init__([logits], name=name)


def relu(scope: "Scope", features: Tensor, name: str | None = None) -> Tensor:
    return scope.install(Relu(features, name=name))


def bias_add(
    scope: "Scope", value: Tensor, bias: Tensor, data_format: str = "NHWC", name: str | None = None
) -> Tensor:
    """Adds a bias to a tensor.

    Args:
        scope: The scope.
        value: The tensor, having at least two dimensions.
        bias: The 1-D bias, whose size is the size of the channel dimension of value.
        data_format: Either "NHWC", i.e., the channel dimension is the last one, or
            "NCHW", i.e., the channel dimension is the second one.
        name: The name of the node.

    Returns:
        The tensor with the bias added along the channel dimension.

    Raises:
        InputTypeMismatch: If the value and the bias do not have the same data type.
        MalformedAttributeError: If the data format is not valid.
    """
    return scope.install(BiasAdd(value, bias, data_format, name=name))


@contextmanager
def _stage(stage: str) -> Iterator[None]:
    # Annotate the errors raised while building a stage of a composite operation
    try:
        yield
    except GraphBuildError as e:
        raise e.annotate(stage)


def _flatten_outer_dims(scope: "Scope", logits: Tensor, rank: Tensor) -> Tensor:
    # Reshapes a tensor to a matrix, keeping its last dimension
    shape = logits.get_shape(scope)
    if shape.is_fully_defined:
        return array_ops.reshape(scope, logits, [math.prod(shape[:-1]), shape[-1]])
    last = math_ops.sub(scope, rank, 1)
    last_dim = array_ops.slice(
        scope, array_ops.shape(scope, logits), array_ops.expand_dims(scope, last, 0), [1]
    )
    matrix_shape = array_ops.concat(scope, [scope.constant([-1]), last_dim], 0)
    return array_ops.reshape(scope, logits, matrix_shape)


def _swap_axis(scope: "Scope", x: Tensor, dim: int, rank: Tensor) -> Tensor:
    # Swaps a dimension of a tensor with its last one
    last = math_ops.sub(scope, rank, 1)
    perm = array_ops.concat(
        scope,
        [
            math_ops.range(scope, 0, dim, 1),
            array_ops.expand_dims(scope, last, 0),
            math_ops.range(scope, dim + 1, last, 1),
            scope.constant([dim]),
        ],
        0,
    )
    if x.get_shape(scope).rank is None:
        # Fails when evaluated if dim is out of range
        dim_size = array_ops.slice(scope, array_ops.shape(scope, x), [dim], [1])
        # If dim is the last dimension, the first rank entries are the identity permutation
        perm = array_ops.slice(scope, perm, [0], array_ops.expand_dims(scope, rank, 0))
        scope = scope.with_control_dependencies(dim_size)
    return array_ops.transpose(scope, x, perm)


def _softmax(
    scope: "Scope",
    op_cls: type[Softmax] | type[LogSoftmax],
    logits: Tensor,
    dim: int,
    name: str | None,
) -> Tensor:
    _check_floating(logits, op_cls.type_name)
    shape = logits.get_shape(scope)
    ndims = shape.rank
    if ndims is None:
        if dim < -1:
            raise ValidationError(
                f"The dimension {dim} of logits of unknown rank must be -1 or non-negative"
            )
    elif not -ndims <= dim < ndims:
        raise ValidationError(f"The dimension {dim} is out of range for logits of shape {shape}")
    elif dim < 0:
        dim += ndims
    is_last_dim = dim == -1 or (ndims is not None and dim == ndims - 1)
    if ndims == 2 and is_last_dim:
        return scope.install(op_cls(logits, name=name))

    sub = scope.child(name, default_type_name=op_cls.type_name)
    logger.debug("Building %s on dimension %d in scope %s", op_cls.type_name, dim, sub.prefix)
    with _stage("rank computation"):
        input_rank = array_ops.rank(sub, logits)
    x = logits
    if not is_last_dim:
        with _stage("axis swap"):
            x = _swap_axis(sub, x, dim, input_rank)
    with _stage("shape computation"):
        shape_after_swap = array_ops.shape(sub, x)
    with _stage("flattening"):
        x = _flatten_outer_dims(sub, x, input_rank)
    with _stage(op_cls.type_name):
        output = sub.install(op_cls(x))
    with _stage("reshape"):
        output = array_ops.reshape(sub, output, shape_after_swap)
    if not is_last_dim:
        with _stage("axis swap"):
            output = _swap_axis(sub, output, dim, input_rank)
    with _stage("shape assertion"):
        output = output.set_shape(sub, shape)
    return output


def softmax(scope: "Scope", logits: Tensor, dim: int = -1, name: str | None = None) -> Tensor:
    """Computes the softmax of a tensor along one dimension.

    If the logits are 2-D and the dimension is the last one, then a single Softmax node is
    installed. Otherwise, the dimension is swapped with the last one, the tensor is
    flattened to a matrix, and the result is reshaped and swapped back.

    Args:
        scope: The scope.
        logits: The logits, of floating point type.
        dim: The dimension the softmax is computed along. The default -1 is the last one.
        name: The name of the node, or of the scope of the nodes if more than one is needed.

    Returns:
        A tensor with the same data type and shape of the logits.

    Raises:
        UnsupportedDataTypeError: If the logits are not of floating point type.
        ValidationError: If the dimension is out of range.
        GraphBuildError: If some intermediate node cannot be built. The error is annotated
            with the stage of the computation it occurred in.
    """
    return _softmax(scope, Softmax, logits, dim, name)


def log_softmax(scope: "Scope", logits: Tensor, dim: int = -1, name: str | None = None) -> Tensor:
    """Computes the log-softmax of a tensor along one dimension.
    See [softmax][scopegraph.ops.nn_ops.softmax] for the details.
    """
    return _softmax(scope, LogSoftmax, logits, dim, name)
