from collections import Counter

import numpy as np
import pytest
import torch

from scopegraph import DataType, Scope, Shape
from scopegraph.backend.torch import DEFAULT_KERNELS, TorchGraph
from scopegraph.errors import (
    BackendStatusError,
    InputTypeMismatch,
    MalformedAttributeError,
    StatusCode,
    UnsupportedDataTypeError,
    ValidationError,
)
from scopegraph.ops import nn_ops
from tests.floats import allclose
from tests.utils import node_types, run


def test_relu(scope: Scope):
    x = scope.constant([[-1.0, 2.0], [3.0, -4.0]])
    y = nn_ops.relu(scope, x)
    assert y.get_shape(scope) == [2, 2]
    (value,) = run(scope, y)
    assert value.tolist() == [[0.0, 2.0], [3.0, 0.0]]
    with pytest.raises(UnsupportedDataTypeError):
        nn_ops.relu(scope, scope.constant([True]))


@pytest.mark.parametrize("data_format", ["NHWC", "NCHW"])
def test_bias_add(scope: Scope, data_format: str):
    data = np.zeros((2, 3, 3), dtype=np.float32)
    bias = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    y = nn_ops.bias_add(scope, scope.constant(data), scope.constant(bias), data_format)
    assert y.get_shape(scope) == [2, 3, 3]
    (value,) = run(scope, y)
    expected = data + (bias if data_format == "NHWC" else bias.reshape(3, 1))
    assert allclose(value, expected)


def test_bias_add_invalid_arguments(scope: Scope):
    x = scope.constant(np.zeros((2, 3), dtype=np.float32))
    with pytest.raises(MalformedAttributeError):
        nn_ops.bias_add(scope, x, scope.constant([1.0, 2.0, 3.0]), "NWC")
    with pytest.raises(InputTypeMismatch):
        nn_ops.bias_add(scope, x, scope.constant([1, 2, 3]))


@pytest.mark.parametrize("func", [nn_ops.softmax, nn_ops.log_softmax])
def test_softmax_matrix(scope: Scope, func):
    data = np.random.randn(4, 5).astype(np.float32)
    x = scope.constant(data)
    num_nodes = len(scope.graph)
    y = func(scope, x, name="probs")
    assert len(scope.graph) == num_nodes + 1
    assert scope.node_name(y) == "probs"
    expected_type = "Softmax" if func is nn_ops.softmax else "LogSoftmax"
    assert scope.node_type(y) == expected_type
    assert y.get_shape(scope) == [4, 5]
    (value,) = run(scope, y)
    torch_func = torch.softmax if func is nn_ops.softmax else torch.log_softmax
    assert allclose(value, torch_func(torch.from_numpy(data), dim=1))


@pytest.mark.parametrize("func", [nn_ops.softmax, nn_ops.log_softmax])
@pytest.mark.parametrize(
    "shape,dim", [((2, 3, 4), 0), ((2, 3, 4), 1), ((2, 3, 4), -1), ((3, 4), 0), ((5,), 0)]
)
def test_softmax_any_dimension(scope: Scope, func, shape: tuple[int, ...], dim: int):
    data = np.random.randn(*shape).astype(np.float32)
    x = scope.constant(data)
    y = func(scope, x, dim)
    assert y.dtype == DataType.FLOAT
    assert y.get_shape(scope) == Shape(shape)
    (value,) = run(scope, y)
    torch_func = torch.softmax if func is nn_ops.softmax else torch.log_softmax
    assert allclose(value, torch_func(torch.from_numpy(data), dim=dim))


def test_softmax_scaffold(scope: Scope):
    x = scope.constant(np.random.randn(2, 3, 4).astype(np.float32))
    y = nn_ops.softmax(scope, x, 0)
    counts = Counter(node_types(scope))
    assert counts["Softmax"] == 1
    assert counts["Transpose"] == 2
    assert counts["Reshape"] == 2
    assert scope.node_name(y).startswith("Softmax/")
    assert y.get_shape(scope) == [2, 3, 4]


def test_softmax_scaffold_without_folding(dynamic_scope: Scope):
    data = np.random.randn(2, 3, 4).astype(np.float32)
    x = dynamic_scope.constant(data)
    y = nn_ops.softmax(dynamic_scope, x, 1)
    assert "Rank" in node_types(dynamic_scope)
    assert y.get_shape(dynamic_scope) == [2, 3, 4]
    (value,) = run(dynamic_scope, y)
    assert allclose(value, torch.softmax(torch.from_numpy(data), dim=1))


@pytest.mark.parametrize(
    "shape,dim", [((2, 3, 4), -1), ((2, 3, 4), 0), ((2, 3, 4), 1), ((2, 3, 4), 2), ((3, 4), 1)]
)
def test_softmax_unknown_rank(scope: Scope, shape: tuple[int, ...], dim: int):
    x = scope.placeholder(DataType.FLOAT)
    y = nn_ops.softmax(scope, x, dim)
    assert y.get_shape(scope).rank is None
    data = np.random.randn(*shape).astype(np.float32)
    (value,) = run(scope, y, feeds={x: data})
    assert allclose(value, torch.softmax(torch.from_numpy(data), dim=dim))


def test_softmax_unknown_rank_dimension_out_of_range(scope: Scope):
    x = scope.placeholder(DataType.FLOAT)
    y = nn_ops.softmax(scope, x, 3)
    data = np.random.randn(2, 3, 4).astype(np.float32)
    with pytest.raises(BackendStatusError) as exc_info:
        run(scope, y, feeds={x: data})
    assert exc_info.value.code == StatusCode.INVALID_ARGUMENT


@pytest.mark.parametrize("shape,dim", [([2, 3], 2), ([2, 3], -3), ([], 0), (None, -2)])
def test_softmax_invalid_dimension(scope: Scope, shape, dim: int):
    x = scope.placeholder(DataType.FLOAT, shape)
    num_nodes = len(scope.graph)
    with pytest.raises(ValidationError):
        nn_ops.softmax(scope, x, dim)
    assert len(scope.graph) == num_nodes


def test_softmax_unsupported_type(scope: Scope):
    x = scope.constant([[1, 2]])
    with pytest.raises(UnsupportedDataTypeError):
        nn_ops.softmax(scope, x)
    with pytest.raises(UnsupportedDataTypeError):
        nn_ops.log_softmax(scope, x, 0)


def test_softmax_errors_are_annotated():
    kernels = {k: v for k, v in DEFAULT_KERNELS.items() if k != "Transpose"}
    scope = Scope(TorchGraph(kernels))
    x = scope.placeholder(DataType.FLOAT, [2, 3, 4])
    with pytest.raises(BackendStatusError) as exc_info:
        nn_ops.softmax(scope, x, 0)
    assert exc_info.value.code == StatusCode.NOT_FOUND
    assert exc_info.value.stages == ["axis swap"]
    assert "(during axis swap)" in str(exc_info.value)
