import pytest

from scopegraph.errors import DuplicateIdentityError, FrameworkInvariantError
from scopegraph.ident import IdentityRegistry, NodeIdent


def test_identities_are_distinct():
    registry = IdentityRegistry()
    idents = [registry.allocate() for _ in range(100)] + [NodeIdent.new() for _ in range(100)]
    assert len(set(idents)) == len(idents)


def test_resolve_unbound_identity():
    registry = IdentityRegistry()
    ident = registry.allocate()
    assert registry.resolve(ident) is None
    assert not registry.is_bound(ident)
    assert ident not in registry


def test_bind_identity():
    registry = IdentityRegistry()
    ident = registry.allocate()
    node = object()
    registry.bind(ident, node, 2)
    binding = registry.resolve(ident)
    assert binding.node is node
    assert binding.num_outputs == 2
    assert registry.is_bound(ident)
    assert len(registry) == 1


def test_bind_identity_twice():
    registry = IdentityRegistry()
    ident = registry.allocate()
    registry.bind(ident, object(), 1)
    with pytest.raises(DuplicateIdentityError) as exc_info:
        registry.bind(ident, object(), 1)
    assert isinstance(exc_info.value, FrameworkInvariantError)
    assert len(registry) == 1
