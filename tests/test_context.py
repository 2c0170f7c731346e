import pytest

from scopegraph import BuildContext, Scope
from scopegraph.backend import SUPPORTED_BACKENDS, retrieve_backend
from scopegraph.backend.torch import TorchGraph
from scopegraph.ops import array_ops


def test_default_context():
    ctx = BuildContext.current()
    assert ctx.backend == "torch"
    assert ctx.fold_constants
    scope = Scope()
    assert isinstance(scope.graph, TorchGraph)
    assert scope.fold_constants


def test_nested_contexts():
    with BuildContext(fold_constants=False) as outer:
        assert BuildContext.current() is outer
        assert not Scope().fold_constants
        with BuildContext() as inner:
            assert BuildContext.current() is inner
            assert Scope().fold_constants
        assert BuildContext.current() is outer
    assert BuildContext.current() is not outer


def test_new_scope():
    ctx = BuildContext(fold_constants=False)
    scope = ctx.new_scope()
    x = scope.constant([[1.0, 2.0]])
    r = array_ops.rank(scope, x)
    assert scope.node_type(r) == "Rank"
    # Each scope created by the context has its own graph
    assert len(ctx.new_scope().graph) == 0


def test_unknown_backend():
    assert "torch" in SUPPORTED_BACKENDS
    with pytest.raises(NotImplementedError):
        BuildContext("tensorflow")
    with pytest.raises(NotImplementedError):
        retrieve_backend("jax")
