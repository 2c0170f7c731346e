import itertools
from typing import Any, NamedTuple

from scopegraph.errors import DuplicateIdentityError

_IDENT_COUNTER = itertools.count()


class NodeIdent:
    """An opaque token identifying a logical graph node. Identities are allocated when an
    operation is constructed, i.e., before the corresponding node exists in any backend
    graph, and they are never reused."""

    __slots__ = ("_value",)

    def __init__(self, value: int):
        self._value = value

    @classmethod
    def new(cls) -> "NodeIdent":
        return cls(next(_IDENT_COUNTER))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NodeIdent):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __lt__(self, other: "NodeIdent") -> bool:
        return self._value < other._value

    def __repr__(self) -> str:
        return f"NodeIdent({self._value})"


class Binding(NamedTuple):
    node: Any
    num_outputs: int


class IdentityRegistry:
    """The side table mapping node identities to the backend nodes they have been
    installed as. There is one registry per backend graph."""

    def __init__(self):
        self._bindings: dict[NodeIdent, Binding] = {}

    def allocate(self) -> NodeIdent:
        return NodeIdent.new()

    def is_bound(self, ident: NodeIdent) -> bool:
        return ident in self._bindings

    def resolve(self, ident: NodeIdent) -> Binding | None:
        """Resolve a node identity.

        Args:
            ident: The node identity.

        Returns:
            The backend node and its number of outputs, or None if the node identity
                has not been installed yet.
        """
        return self._bindings.get(ident)

    def bind(self, ident: NodeIdent, node: Any, num_outputs: int) -> None:
        """Bind a node identity to a backend node. Each identity can be bound only once.

        Args:
            ident: The node identity.
            node: The backend node.
            num_outputs: The number of outputs of the backend node.

        Raises:
            DuplicateIdentityError: If the node identity has already been bound.
        """
        if ident in self._bindings:
            raise DuplicateIdentityError(ident)
        self._bindings[ident] = Binding(node, num_outputs)

    def __contains__(self, ident: object) -> bool:
        return ident in self._bindings

    def __len__(self) -> int:
        return len(self._bindings)
