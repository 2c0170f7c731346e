import itertools

import numpy as np
import pytest

from scopegraph import DataType, Scope, Shape
from scopegraph.errors import (
    ArgumentCountError,
    BackendStatusError,
    InputTypeMismatch,
    MalformedShapeError,
    StatusCode,
    UnsupportedDataTypeError,
)
from scopegraph.ops import array_ops
from tests.utils import run


@pytest.mark.parametrize("axis,expected", [(0, [4, 3]), (1, [2, 6]), (-1, [2, 6])])
def test_concat(scope: Scope, axis: int, expected: list[int]):
    a_value = np.arange(6, dtype=np.float32).reshape(2, 3)
    b_value = np.arange(6, 12, dtype=np.float32).reshape(2, 3)
    a, b = scope.constant(a_value), scope.constant(b_value)
    c = array_ops.concat(scope, [a, b], axis)
    assert c.dtype == DataType.FLOAT
    assert c.get_shape(scope) == Shape(expected)
    (value,) = run(scope, c)
    assert list(value.shape) == expected
    assert np.array_equal(value.numpy(), np.concatenate([a_value, b_value], axis))
    assert scope.node_name(c) == "concat"


def test_concat_mixed_types(scope: Scope):
    a = scope.constant([1.0, 2.0])
    b = scope.constant([1, 2])
    num_nodes = len(scope.graph)
    with pytest.raises(InputTypeMismatch):
        array_ops.concat(scope, [a, b], 0)
    assert len(scope.graph) == num_nodes


def test_concat_nothing(scope: Scope):
    with pytest.raises(ArgumentCountError):
        array_ops.concat(scope, [], 0)
    assert len(scope.graph) == 0


def test_concat_incompatible_shapes(scope: Scope):
    a = scope.constant(np.zeros((2, 3), dtype=np.float32))
    b = scope.constant(np.zeros((2, 4), dtype=np.float32))
    with pytest.raises(BackendStatusError):
        array_ops.concat(scope, [a, b], 0)


def test_expand_dims(scope: Scope):
    x = scope.constant(np.zeros((2, 3), dtype=np.float32))
    assert array_ops.expand_dims(scope, x, 0).get_shape(scope) == [1, 2, 3]
    assert array_ops.expand_dims(scope, x, -1).get_shape(scope) == [2, 3, 1]
    (value,) = run(scope, array_ops.expand_dims(scope, x, 1))
    assert list(value.shape) == [2, 1, 3]


def test_fill(scope: Scope):
    x = array_ops.fill(scope, [2, 3], 1.5)
    assert x.dtype == DataType.FLOAT
    assert x.get_shape(scope) == [2, 3]
    (value,) = run(scope, x)
    assert value.tolist() == [[1.5] * 3] * 2


def test_gather(scope: Scope):
    params = scope.constant([0, 1, 2, 3, 4, 5])
    g = array_ops.gather(scope, params, [2, 0, 2, 5])
    assert g.dtype == DataType.INT32
    assert g.get_shape(scope) == [4]
    (value,) = run(scope, g)
    assert value.tolist() == [2, 0, 2, 5]


def test_gather_rows(scope: Scope):
    params = scope.constant(np.arange(6, dtype=np.float32).reshape(3, 2))
    indices = scope.constant([[2], [0]], dtype=DataType.INT64)
    g = array_ops.gather(scope, params, indices)
    assert g.get_shape(scope) == [2, 1, 2]
    (value,) = run(scope, g)
    assert value.tolist() == [[[4.0, 5.0]], [[0.0, 1.0]]]


def test_gather_invalid_indices(scope: Scope):
    params = scope.constant([0, 1, 2])
    with pytest.raises(UnsupportedDataTypeError):
        array_ops.gather(scope, params, scope.constant([1.0]))


@pytest.mark.parametrize("indices", [[-1], [3], [0, 6]])
def test_gather_out_of_range(scope: Scope, indices: list[int]):
    params = scope.constant([0, 1, 2])
    idx = scope.placeholder(DataType.INT32, [None])
    g = array_ops.gather(scope, params, idx)
    with pytest.raises(BackendStatusError) as exc_info:
        run(scope, g, feeds={idx: np.array(indices, dtype=np.int32)})
    assert exc_info.value.code == StatusCode.INVALID_ARGUMENT


@pytest.mark.parametrize("ndims", list(range(9)))
def test_rank_shortcut(scope: Scope, dynamic_scope: Scope, ndims: int):
    dims = [2] * ndims
    folded = array_ops.rank(scope, scope.constant(0.0, shape=dims))
    dynamic = array_ops.rank(dynamic_scope, dynamic_scope.constant(0.0, shape=dims))
    assert scope.node_type(folded) == "Const"
    assert dynamic_scope.node_type(dynamic) == "Rank"
    assert folded.dtype == dynamic.dtype == DataType.INT32
    assert folded.get_shape(scope) == dynamic.get_shape(dynamic_scope) == Shape.scalar()
    (folded_value,) = run(scope, folded)
    (dynamic_value,) = run(dynamic_scope, dynamic)
    assert folded_value.dtype == dynamic_value.dtype
    assert folded_value.item() == dynamic_value.item() == ndims


def test_rank_of_unknown_shape(scope: Scope):
    x = scope.placeholder(DataType.FLOAT)
    r = array_ops.rank(scope, x)
    assert scope.node_type(r) == "Rank"
    (value,) = run(scope, r, feeds={x: np.zeros((2, 3, 4), dtype=np.float32)})
    assert value.item() == 3


def test_reshape_round_trip(scope: Scope):
    x = scope.constant(np.arange(12, dtype=np.float64).reshape(3, 4))
    y = array_ops.reshape(scope, x, [2, -1])
    assert y.get_shape(scope) == [2, 6]
    z = array_ops.reshape(scope, y, array_ops.shape(scope, x))
    assert z.dtype == x.dtype == DataType.DOUBLE
    assert z.get_shape(scope) == x.get_shape(scope)
    x_value, z_value = run(scope, x, z)
    assert np.array_equal(x_value.numpy(), z_value.numpy())


def test_reshape_invalid_shape(scope: Scope):
    x = scope.constant(np.zeros(6, dtype=np.float32))
    with pytest.raises(MalformedShapeError):
        array_ops.reshape(scope, x, [-1, -1])
    num_nodes = len(scope.graph)
    with pytest.raises(MalformedShapeError):
        array_ops.reshape(scope, x, [2, None])
    with pytest.raises(MalformedShapeError):
        array_ops.reshape(scope, x, [2.5, 2])
    assert len(scope.graph) == num_nodes
    with pytest.raises(BackendStatusError):
        array_ops.reshape(scope, x, [4, 2])


def test_reshape_dynamic(scope: Scope):
    x = scope.placeholder(DataType.FLOAT, [None, 4])
    y = array_ops.reshape(scope, x, [-1, 2])
    assert y.get_shape(scope) == [None, 2]
    (value,) = run(scope, y, feeds={x: np.zeros((3, 4), dtype=np.float32)})
    assert list(value.shape) == [6, 2]


def test_shape(scope: Scope):
    x = scope.constant(np.zeros((3, 3), dtype=np.float32))
    s = array_ops.shape(scope, x, DataType.INT64)
    assert s.dtype == DataType.INT64
    assert s.get_shape(scope) == [2]
    (value,) = run(scope, s)
    assert value.tolist() == [3, 3]


def test_shape_dynamic(scope: Scope):
    x = scope.placeholder(DataType.FLOAT, [None, 3])
    s = array_ops.shape(scope, x)
    assert scope.node_type(s) == "Shape"
    assert s.dtype == DataType.INT32
    (value,) = run(scope, s, feeds={x: np.zeros((5, 3), dtype=np.float32)})
    assert value.tolist() == [5, 3]


def test_shape_unsupported_output_type(scope: Scope):
    x = scope.constant([1.0])
    with pytest.raises(UnsupportedDataTypeError):
        array_ops.shape(scope, x, DataType.FLOAT)


def test_size(scope: Scope, dynamic_scope: Scope):
    data = np.zeros((2, 2, 3), dtype=np.float32)
    folded = array_ops.size(scope, scope.constant(data))
    dynamic = array_ops.size(dynamic_scope, dynamic_scope.constant(data))
    assert scope.node_type(folded) == "Const"
    assert dynamic_scope.node_type(dynamic) == "Size"
    assert folded.get_shape(scope) == dynamic.get_shape(dynamic_scope) == Shape.scalar()
    (folded_value,) = run(scope, folded)
    (dynamic_value,) = run(dynamic_scope, dynamic)
    assert folded_value.item() == dynamic_value.item() == 12


def test_squeeze(scope: Scope):
    x = scope.constant(np.zeros((1, 2, 1, 3), dtype=np.float32))
    assert array_ops.squeeze(scope, x).get_shape(scope) == [2, 3]
    y = array_ops.squeeze(scope, x, [2])
    assert y.get_shape(scope) == [1, 2, 3]
    (value,) = run(scope, y)
    assert list(value.shape) == [1, 2, 3]
    with pytest.raises(BackendStatusError):
        array_ops.squeeze(scope, x, [1])


def test_slice(scope: Scope):
    x = scope.constant(np.arange(12, dtype=np.int32).reshape(3, 4))
    y = array_ops.slice(scope, x, [1, 1], [2, -1])
    assert y.get_shape(scope) == [2, 3]
    (value,) = run(scope, y)
    assert value.tolist() == [[5, 6, 7], [9, 10, 11]]


@pytest.mark.parametrize("perm", list(itertools.permutations(range(3))))
def test_transpose(scope: Scope, perm: tuple[int, ...]):
    data = np.arange(24, dtype=np.float32).reshape(2, 3, 4)
    y = array_ops.transpose(scope, scope.constant(data), perm)
    assert y.get_shape(scope) == [data.shape[p] for p in perm]
    (value,) = run(scope, y)
    assert np.array_equal(value.numpy(), np.transpose(data, perm))


def test_transpose_reversed(scope: Scope):
    data = np.arange(6, dtype=np.float32).reshape(2, 3)
    y = array_ops.transpose(scope, scope.constant(data))
    assert y.get_shape(scope) == [3, 2]
    x = scope.placeholder(DataType.FLOAT)
    z = array_ops.transpose(scope, x)
    assert z.get_shape(scope).rank is None
    y_value, z_value = run(scope, y, z, feeds={x: data})
    assert np.array_equal(y_value.numpy(), data.T)
    assert np.array_equal(z_value.numpy(), data.T)


def test_where(scope: Scope):
    cond = scope.constant([[True, False], [False, True]])
    w = array_ops.where_cond(scope, cond)
    assert w.dtype == DataType.INT64
    assert w.get_shape(scope) == [None, 2]
    (value,) = run(scope, w)
    assert value.tolist() == [[0, 0], [1, 1]]


def test_select(scope: Scope):
    cond = scope.constant([True, False, True])
    x = scope.constant([1, 2, 3])
    y = scope.constant([10, 20, 30])
    s = array_ops.where_cond(scope, cond, x, y)
    assert scope.node_type(s) == "Select"
    assert s.dtype == DataType.INT32
    (value,) = run(scope, s)
    assert value.tolist() == [1, 20, 3]


def test_where_invalid_arguments(scope: Scope):
    cond = scope.constant([True])
    x = scope.constant([1])
    with pytest.raises(ArgumentCountError):
        array_ops.where_cond(scope, cond, x=x)
    with pytest.raises(ArgumentCountError):
        array_ops.where_cond(scope, cond, y=x)
    with pytest.raises(UnsupportedDataTypeError):
        array_ops.where_cond(scope, x)
    with pytest.raises(InputTypeMismatch):
        array_ops.where_cond(scope, cond, x, scope.constant([1.0]))


def test_zeros(scope: Scope):
    z = array_ops.zeros(scope, [2, 2], DataType.INT64)
    assert z.dtype == DataType.INT64
    (value,) = run(scope, z)
    assert value.tolist() == [[0, 0], [0, 0]]
    s = array_ops.zeros(scope, [2], DataType.STRING)
    assert s.dtype == DataType.STRING
    assert scope.node_type(s) == "Const"
    node, _ = scope.resolve(s)
    assert node.attrs["value"].tolist() == ["", ""]


def test_zeros_dynamic_shape(scope: Scope):
    x = scope.placeholder(DataType.FLOAT, [None, 2])
    z = array_ops.zeros(scope, array_ops.shape(scope, x))
    assert scope.node_type(z) == "Fill"
    (value,) = run(scope, z, feeds={x: np.ones((3, 2), dtype=np.float32)})
    assert value.tolist() == [[0.0, 0.0]] * 3
