import numpy as np
import pytest
import torch

from scopegraph.attributes import AttrKind
from scopegraph.backend.torch import DEFAULT_KERNELS, TorchGraph, TorchKernel
from scopegraph.dtypes import DataType
from scopegraph.errors import (
    BackendStatusError,
    DuplicateNameError,
    NameEncodingError,
    ShapeMismatchError,
    StatusCode,
)
from scopegraph.shape import Shape


def _const(graph: TorchGraph, name: str, value, dtype: DataType = DataType.INT32):
    builder = graph.new_node("Const", name)
    builder.set_scalar_attr("value", AttrKind.TENSOR, np.asarray(value, dtype=dtype.numpy))
    builder.set_scalar_attr("dtype", AttrKind.TYPE, dtype)
    return builder.finish()


def test_build_nodes():
    graph = TorchGraph()
    a = _const(graph, "a", [[1, 2], [3, 4]])
    b = _const(graph, "b", [[10, 20], [30, 40]])
    builder = graph.new_node("Add", "add")
    builder.add_input(a, 0)
    builder.add_input(b, 0)
    builder.set_scalar_attr("T", AttrKind.TYPE, DataType.INT32)
    c = builder.finish()
    assert len(graph) == 3
    assert graph.has_node("add")
    assert graph.node_name(c) == "add"
    assert graph.node_type(c) == "Add"
    assert graph.num_outputs(c) == 1
    assert graph.query_shape(c, 0) == Shape([2, 2])
    assert [graph.node_name(n) for n in graph.nodes()] == ["a", "b", "add"]
    (value,) = graph.evaluate([(c, 0)])
    assert value.tolist() == [[11, 22], [33, 44]]


def test_nothing_is_added_before_finish():
    graph = TorchGraph()
    graph.new_node("Const", "a")
    assert len(graph) == 0
    assert not graph.has_node("a")


@pytest.mark.parametrize("name", ["", "/a", "a b", "_a"])
def test_invalid_node_name(name):
    with pytest.raises(NameEncodingError):
        TorchGraph().new_node("Const", name)


def test_duplicate_node_name():
    graph = TorchGraph()
    _const(graph, "a", 1)
    with pytest.raises(DuplicateNameError):
        graph.new_node("Const", "a")


def test_unknown_operation_type():
    graph = TorchGraph()
    with pytest.raises(BackendStatusError) as exc_info:
        graph.new_node("MatrixInverse", "inv").finish()
    assert exc_info.value.code == StatusCode.NOT_FOUND
    assert len(graph) == 0


def test_invalid_node():
    graph = TorchGraph()
    a = _const(graph, "a", [1.0, 2.0], DataType.FLOAT)
    builder = graph.new_node("Softmax", "softmax")
    builder.add_input(a, 0)
    with pytest.raises(BackendStatusError) as exc_info:
        builder.finish()
    assert exc_info.value.code == StatusCode.INVALID_ARGUMENT
    assert not graph.has_node("softmax")


def test_missing_input():
    graph = TorchGraph()
    with pytest.raises(BackendStatusError) as exc_info:
        graph.new_node("Identity", "id").finish()
    assert exc_info.value.code == StatusCode.INVALID_ARGUMENT


def test_assert_shape():
    graph = TorchGraph()
    builder = graph.new_node("Placeholder", "x")
    builder.set_scalar_attr("dtype", AttrKind.TYPE, DataType.FLOAT)
    builder.set_scalar_attr("shape", AttrKind.SHAPE, Shape([None, 3]))
    x = builder.finish()
    graph.assert_shape(x, 0, Shape([5, None]))
    assert graph.query_shape(x, 0) == Shape([5, 3])
    with pytest.raises(ShapeMismatchError):
        graph.assert_shape(x, 0, Shape([4, 3]))


def test_evaluate_placeholder():
    graph = TorchGraph()
    builder = graph.new_node("Placeholder", "x")
    builder.set_scalar_attr("dtype", AttrKind.TYPE, DataType.FLOAT)
    builder.set_scalar_attr("shape", AttrKind.SHAPE, Shape([2]))
    x = builder.finish()
    builder = graph.new_node("Relu", "relu")
    builder.add_input(x, 0)
    y = builder.finish()
    assert graph.constant_value(y, 0) is None
    with pytest.raises(BackendStatusError) as exc_info:
        graph.evaluate([(y, 0)])
    assert exc_info.value.code == StatusCode.FAILED_PRECONDITION
    (value,) = graph.evaluate([(y, 0)], {(x, 0): [-1.0, 2.0]})
    assert value.dtype == torch.float32
    assert value.tolist() == [0.0, 2.0]
    with pytest.raises(BackendStatusError):
        graph.evaluate([(y, 0)], {(x, 0): [1.0, 2.0, 3.0]})


def test_constant_value():
    graph = TorchGraph()
    a = _const(graph, "a", [3, 4])
    builder = graph.new_node("Mul", "mul")
    builder.add_input(a, 0)
    builder.add_input(a, 0)
    m = builder.finish()
    assert graph.constant_value(m, 0).tolist() == [9, 16]


def test_custom_kernels():
    class Negate(TorchKernel):
        type_name = "Neg"

        def infer_shapes(self, ctx):
            return [ctx.shape(0)]

        def compute(self, args, attrs):
            return (-args[0],)

    graph = TorchGraph({**DEFAULT_KERNELS, "Neg": Negate()})
    assert graph.kernels.has_rule("Neg")
    a = _const(graph, "a", [1, -2])
    builder = graph.new_node("Neg", "neg")
    builder.add_input(a, 0)
    n = builder.finish()
    assert graph.evaluate([(n, 0)])[0].tolist() == [-1, 2]
