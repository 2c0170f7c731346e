import itertools
import math
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, Union

import torch
from torch import Tensor

from scopegraph.backend.torch.utils import as_int, as_int_list, to_torch, torch_dtype
from scopegraph.dtypes import DataType
from scopegraph.registry import InvalidRule, Registry
from scopegraph.shape import Shape

if TYPE_CHECKING:
    from scopegraph.backend.torch.graph import TorchNode

KernelArg = Union[Tensor, list[Tensor]]


class InferenceContext(ABC):
    """The information available to a kernel when inferring the shapes of a node."""

    @abstractmethod
    def shape(self, i: int) -> Shape:
        """Retrieves the static shape of the i-th positional input, which must be single."""

    @abstractmethod
    def shapes(self, i: int) -> list[Shape]:
        """Retrieves the static shapes of the i-th positional input, which must be a list."""

    @abstractmethod
    def value(self, i: int) -> Tensor | None:
        """Retrieves the value of the i-th positional input, if it can be computed statically."""

    @abstractmethod
    def attr(self, key: str, default: Any = None) -> Any:
        ...


class TorchKernel(ABC):
    """The implementation of an operation type in the torch backend."""

    type_name: ClassVar[str]
    num_outputs: ClassVar[int] = 1

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        """Infers the static shapes of the outputs.

        Raises:
            ValueError: If the inputs or attributes are not valid.
        """
        return [Shape.unknown()] * self.num_outputs

    @abstractmethod
    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        ...


def _normalize_axis(axis: int, rank: int, *, extra: int = 0) -> int:
    upper = rank + extra
    if not -upper <= axis < upper:
        raise ValueError(f"Axis {axis} is out of range for rank {rank}")
    return axis + upper if axis < 0 else axis


def _static_length(shape: Shape) -> int | None:
    # The number of elements of a 1-D tensor, if statically known
    if shape.rank != 1:
        return None
    return shape[0]


def broadcast_shapes(a: Shape, b: Shape) -> Shape:
    if a.rank is None or b.rank is None:
        return Shape.unknown()
    rank = max(a.rank, b.rank)
    da = [1] * (rank - a.rank) + list(a)
    db = [1] * (rank - b.rank) + list(b)
    dims: list[int | None] = []
    for x, y in zip(da, db):
        if x == 1:
            dims.append(y)
        elif y == 1:
            dims.append(x)
        elif x is None or y is None:
            dims.append(x if y is None else y)
        elif x == y:
            dims.append(x)
        else:
            raise ValueError(f"Shapes {a} and {b} cannot be broadcast")
    return Shape(dims)


class ConstKernel(TorchKernel):
    type_name = "Const"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        value = ctx.attr("value")
        if value is None or ctx.attr("dtype") is None:
            raise ValueError("Const nodes require the 'value' and 'dtype' attributes")
        return [Shape(value.shape)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (to_torch(attrs["value"], attrs["dtype"]),)


class PlaceholderKernel(TorchKernel):
    type_name = "Placeholder"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [ctx.attr("shape", Shape.unknown())]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        raise ValueError("A value must be fed for placeholder nodes")


class IdentityKernel(TorchKernel):
    type_name = "Identity"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [ctx.shape(0)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (args[0],)


class ConcatV2Kernel(TorchKernel):
    type_name = "ConcatV2"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        shapes = ctx.shapes(0)
        ranks = {s.rank for s in shapes if s.rank is not None}
        if len(ranks) > 1:
            raise ValueError(f"Cannot concatenate tensors of different ranks {sorted(ranks)}")
        if not ranks:
            return [Shape.unknown()]
        (rank,) = ranks
        axis = ctx.value(1)
        if axis is None or any(s.rank is None for s in shapes):
            return [Shape.unknown_of_rank(rank)]
        axis = _normalize_axis(as_int(axis), rank)
        dims: list[int | None] = []
        for d in range(rank):
            sizes = [s[d] for s in shapes]
            if d == axis:
                dims.append(None if None in sizes else sum(sizes))
                continue
            merged = Shape([None])
            for size in sizes:
                if not merged.is_compatible_with(Shape([size])):
                    raise ValueError(f"Dimension {d} of the concatenated tensors do not match")
                merged = merged.merge_with(Shape([size]))
            dims.append(merged[0])
        return [Shape(dims)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        values, axis = args
        return (torch.cat(list(values), dim=as_int(axis)),)


class ExpandDimsKernel(TorchKernel):
    type_name = "ExpandDims"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        shape, axis = ctx.shape(0), ctx.value(1)
        if shape.rank is None:
            return [Shape.unknown()]
        if axis is None:
            return [Shape.unknown_of_rank(shape.rank + 1)]
        axis = _normalize_axis(as_int(axis), shape.rank, extra=1)
        dims = list(shape)
        dims.insert(axis, 1)
        return [Shape(dims)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        x, axis = args
        return (torch.unsqueeze(x, _normalize_axis(as_int(axis), x.dim(), extra=1)),)


class FillKernel(TorchKernel):
    type_name = "Fill"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        if ctx.shape(1).rank not in (None, 0):
            raise ValueError("The fill value must be a scalar")
        dims = ctx.value(0)
        if dims is not None:
            return [Shape(as_int_list(dims))]
        length = _static_length(ctx.shape(0))
        return [Shape.unknown() if length is None else Shape.unknown_of_rank(length)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        dims, value = args
        return (torch.full(tuple(as_int_list(dims)), value.item(), dtype=value.dtype),)


class GatherKernel(TorchKernel):
    type_name = "Gather"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        params, indices = ctx.shape(0), ctx.shape(1)
        if params.rank == 0:
            raise ValueError("The gathered tensor must be at least 1-dimensional")
        if params.rank is None:
            return [Shape.unknown()]
        return [indices.concatenate(params[1:])]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        params, indices = args
        indices = indices.long()
        if indices.numel() and (indices.min() < 0 or indices.max() >= params.shape[0]):
            raise ValueError(
                f"The indices {indices.tolist()} are out of range [0, {params.shape[0]})"
            )
        return (params[indices],)


class RankKernel(TorchKernel):
    type_name = "Rank"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [Shape.scalar()]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.tensor(args[0].dim(), dtype=torch.int32),)


class ReshapeKernel(TorchKernel):
    type_name = "Reshape"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        shape, target = ctx.shape(0), ctx.value(1)
        if target is None:
            length = _static_length(ctx.shape(1))
            return [Shape.unknown() if length is None else Shape.unknown_of_rank(length)]
        dims = as_int_list(target)
        if sum(1 for d in dims if d == -1) > 1:
            raise ValueError("At most one dimension of the target shape can be -1")
        if any(d < -1 for d in dims):
            raise ValueError(f"Invalid target shape {dims}")
        num_elements = shape.num_elements()
        if -1 not in dims:
            if num_elements is not None and math.prod(dims) != num_elements:
                raise ValueError(f"Cannot reshape a tensor of shape {shape} to {dims}")
            return [Shape(dims)]
        if num_elements is None:
            return [Shape(None if d == -1 else d for d in dims)]
        known = math.prod(d for d in dims if d != -1)
        if known == 0 or num_elements % known:
            raise ValueError(f"Cannot reshape a tensor of shape {shape} to {dims}")
        return [Shape(num_elements // known if d == -1 else d for d in dims)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        x, target = args
        return (x.reshape(tuple(as_int_list(target))),)


class ShapeKernel(TorchKernel):
    type_name = "Shape"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [Shape([ctx.shape(0).rank])]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        dtype = torch_dtype(attrs.get("out_type", DataType.INT32))
        return (torch.tensor(list(args[0].shape), dtype=dtype),)


class SizeKernel(TorchKernel):
    type_name = "Size"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [Shape.scalar()]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        dtype = torch_dtype(attrs.get("out_type", DataType.INT32))
        return (torch.tensor(args[0].numel(), dtype=dtype),)


class SqueezeKernel(TorchKernel):
    type_name = "Squeeze"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        shape = ctx.shape(0)
        if shape.rank is None:
            return [Shape.unknown()]
        squeeze_dims = ctx.attr("squeeze_dims", ())
        if not squeeze_dims:
            if None in shape:
                return [Shape.unknown()]
            return [Shape(d for d in shape if d != 1)]
        axes = {_normalize_axis(a, shape.rank) for a in squeeze_dims}
        for a in axes:
            if shape[a] not in (None, 1):
                raise ValueError(f"Cannot squeeze dimension {a} of size {shape[a]}")
        return [Shape(d for i, d in enumerate(shape) if i not in axes)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        (x,) = args
        squeeze_dims = attrs.get("squeeze_dims", ())
        if not squeeze_dims:
            return (x.squeeze(),)
        for a in sorted({_normalize_axis(a, x.dim()) for a in squeeze_dims}, reverse=True):
            if x.shape[a] != 1:
                raise ValueError(f"Cannot squeeze dimension {a} of size {x.shape[a]}")
            x = x.squeeze(a)
        return (x,)


class SliceKernel(TorchKernel):
    type_name = "Slice"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        shape, begin, size = ctx.shape(0), ctx.value(1), ctx.value(2)
        if begin is None or size is None:
            rank = shape.rank
            if rank is None:
                rank = _static_length(ctx.shape(1))
            return [Shape.unknown() if rank is None else Shape.unknown_of_rank(rank)]
        begin, size = as_int_list(begin), as_int_list(size)
        if len(begin) != len(size) or (shape.rank is not None and shape.rank != len(begin)):
            raise ValueError("The begin and size of a slice must match the rank of the input")
        dims: list[int | None] = []
        for i, (b, s) in enumerate(zip(begin, size)):
            d = None if shape.rank is None else shape[i]
            if s == -1:
                dims.append(None if d is None else d - b)
            else:
                if d is not None and (b < 0 or b + s > d):
                    raise ValueError(f"Slice [{b}, {b + s}) is out of range for dimension {d}")
                dims.append(s)
        return [Shape(dims)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        x, begin, size = args
        for i, (b, s) in enumerate(zip(as_int_list(begin), as_int_list(size))):
            x = x.narrow(i, b, x.shape[i] - b if s == -1 else s)
        return (x,)


class TransposeKernel(TorchKernel):
    type_name = "Transpose"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        shape, perm = ctx.shape(0), ctx.value(1)
        if perm is None:
            rank = shape.rank
            if rank is None:
                rank = _static_length(ctx.shape(1))
            return [Shape.unknown() if rank is None else Shape.unknown_of_rank(rank)]
        perm = as_int_list(perm)
        if sorted(perm) != list(range(len(perm))):
            raise ValueError(f"{perm} is not a permutation")
        if shape.rank is None:
            return [Shape.unknown_of_rank(len(perm))]
        if shape.rank != len(perm):
            raise ValueError(f"The permutation {perm} does not match the rank {shape.rank}")
        return [Shape(shape[p] for p in perm)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        x, perm = args
        return (x.permute(*as_int_list(perm)),)


class WhereKernel(TorchKernel):
    type_name = "Where"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [Shape([None, ctx.shape(0).rank])]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.nonzero(args[0]).to(torch.int64),)


class SelectKernel(TorchKernel):
    type_name = "Select"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        x, y = ctx.shape(1), ctx.shape(2)
        if not x.is_compatible_with(y):
            raise ValueError(f"Shapes {x} and {y} of the selected tensors do not match")
        return [x.merge_with(y)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        cond, x, y = args
        if cond.dim() == 1 and x.dim() > 1:
            # A vector condition selects the rows of x and y
            cond = cond.reshape(-1, *([1] * (x.dim() - 1)))
        return (torch.where(cond, x, y),)


class RangeKernel(TorchKernel):
    type_name = "Range"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        start, limit, delta = ctx.value(0), ctx.value(1), ctx.value(2)
        if start is None or limit is None or delta is None:
            return [Shape([None])]
        start, limit, delta = start.item(), limit.item(), delta.item()
        if delta == 0:
            raise ValueError("The delta of a range must be non-zero")
        return [Shape([max(0, math.ceil((limit - start) / delta))])]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        start, limit, delta = (a.item() for a in args)
        if delta == 0:
            raise ValueError("The delta of a range must be non-zero")
        if (limit - start) * delta <= 0:
            return (torch.empty(0, dtype=args[0].dtype),)
        return (torch.arange(start, limit, delta, dtype=args[0].dtype),)


class BinaryKernel(TorchKernel, ABC):
    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [broadcast_shapes(ctx.shape(0), ctx.shape(1))]


class AddKernel(BinaryKernel):
    type_name = "Add"

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.add(args[0], args[1]),)


class SubKernel(BinaryKernel):
    type_name = "Sub"

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.sub(args[0], args[1]),)


class MulKernel(BinaryKernel):
    type_name = "Mul"

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.mul(args[0], args[1]),)


class ReluKernel(TorchKernel):
    type_name = "Relu"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        return [ctx.shape(0)]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.clamp_min(args[0], 0),)


class SoftmaxKernel(TorchKernel):
    type_name = "Softmax"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        shape = ctx.shape(0)
        if shape.rank is not None and shape.rank != 2:
            raise ValueError(f"Logits must be 2-dimensional, found shape {shape}")
        return [shape]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.softmax(args[0], dim=-1),)


class LogSoftmaxKernel(SoftmaxKernel):
    type_name = "LogSoftmax"

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        return (torch.log_softmax(args[0], dim=-1),)


class BiasAddKernel(TorchKernel):
    type_name = "BiasAdd"

    def infer_shapes(self, ctx: InferenceContext) -> list[Shape]:
        value, bias = ctx.shape(0), ctx.shape(1)
        if bias.rank is not None and bias.rank != 1:
            raise ValueError(f"The bias must be 1-dimensional, found shape {bias}")
        if value.rank is None or bias.rank is None:
            return [value]
        if value.rank < 2:
            raise ValueError(f"The value must be at least 2-dimensional, found shape {value}")
        channel = 1 if ctx.attr("data_format", "NHWC") == "NCHW" else value.rank - 1
        if not Shape([value[channel]]).is_compatible_with(bias):
            raise ValueError(f"The bias of shape {bias} does not match the value shape {value}")
        return [value]

    def compute(self, args: Sequence[KernelArg], attrs: Mapping[str, Any]) -> tuple[Tensor, ...]:
        value, bias = args
        if attrs.get("data_format", "NHWC") == "NCHW":
            bias = bias.reshape(-1, *([1] * (value.dim() - 2)))
        return (value + bias,)


class KernelRegistry(Registry[str, TorchKernel]):
    @classmethod
    def _validate_rule(cls, rule: TorchKernel) -> None:
        if not isinstance(rule, TorchKernel):
            raise InvalidRule(rule, "a kernel must be an instance of TorchKernel")

    @classmethod
    def _retrieve_signature(cls, rule: TorchKernel) -> str:
        return rule.type_name


DEFAULT_KERNELS: dict[str, TorchKernel] = {
    k.type_name: k
    for k in map(
        lambda cls: cls(),
        itertools.chain(
            [ConstKernel, PlaceholderKernel, IdentityKernel],
            [ConcatV2Kernel, ExpandDimsKernel, FillKernel, GatherKernel, RankKernel],
            [ReshapeKernel, ShapeKernel, SizeKernel, SqueezeKernel, SliceKernel],
            [TransposeKernel, WhereKernel, SelectKernel, RangeKernel],
            [AddKernel, SubKernel, MulKernel],
            [ReluKernel, SoftmaxKernel, LogSoftmaxKernel, BiasAddKernel],
        ),
    )
}
