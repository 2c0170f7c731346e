from collections.abc import Iterable
from typing import TYPE_CHECKING

from scopegraph.dtypes import DataType
from scopegraph.errors import ShapeMismatchError
from scopegraph.ident import NodeIdent
from scopegraph.shape import Dim, Shape, as_shape

if TYPE_CHECKING:
    from scopegraph.scope import Scope


class Tensor:
    """A symbolic tensor, i.e., an immutable handle to one output slot of a (possibly not yet
    installed) graph node. A tensor stores the identity of the node producing it, the index of
    the output slot, the data type of its elements and a static shape hint. It never stores a
    reference to a backend node: this is resolved through the scope the tensor is used in.

    Two tensors are equal if and only if they refer to the same output slot of the same node.
    """

    __slots__ = ("_ident", "_index", "_dtype", "_shape")

    def __init__(
        self,
        ident: NodeIdent,
        index: int,
        dtype: DataType,
        shape: Shape | Iterable[Dim] | None = None,
    ):
        if index < 0:
            raise ValueError("The output index must be non-negative")
        self._ident = ident
        self._index = index
        self._dtype = dtype
        self._shape = as_shape(shape)

    @property
    def ident(self) -> NodeIdent:
        return self._ident

    @property
    def index(self) -> int:
        return self._index

    @property
    def dtype(self) -> DataType:
        return self._dtype

    @property
    def shape_hint(self) -> Shape:
        """Retrieves the static shape known when the tensor has been created. Use
        [get_shape][scopegraph.tensor.Tensor.get_shape] to also take into account the
        shape information known by the backend.

        Returns:
            The shape hint.
        """
        return self._shape

    def get_shape(self, scope: "Scope") -> Shape:
        """Retrieves the best known static shape of the tensor.

        Args:
            scope: The scope whose graph contains the node producing the tensor.

        Returns:
            The shape, which merges the shape hint with the shape inferred by the backend.

        Raises:
            NodeNotInstalledError: If the node producing the tensor has not been installed.
        """
        if self._shape.is_fully_defined:
            return self._shape
        node, index = scope.resolve(self)
        return self._shape.merge_with(scope.graph.query_shape(node, index))

    def set_shape(self, scope: "Scope", shape: Shape | Iterable[Dim] | None) -> "Tensor":
        """Asserts the static shape of the tensor. This is useful after operations whose
        shape inference is weaker than what the caller can prove, e.g., after a sequence of
        reshapes and transpositions whose net effect is statically known.

        Args:
            scope: The scope whose graph contains the node producing the tensor.
            shape: The shape to assert.

        Returns:
            A tensor referring to the same output slot, with the refined shape hint.

        Raises:
            ShapeMismatchError: If the asserted shape is incompatible with the known shape,
                either in rank or in some fixed dimension.
        """
        shape = as_shape(shape)
        known = self.get_shape(scope)
        if not known.is_compatible_with(shape):
            raise ShapeMismatchError(
                f"Cannot assert shape {shape} on tensor {self} having shape {known}"
            )
        merged = known.merge_with(shape)
        node, index = scope.resolve(self)
        scope.graph.assert_shape(node, index, merged)
        return Tensor(self._ident, self._index, self._dtype, merged)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tensor):
            return NotImplemented
        return self._ident == other._ident and self._index == other._index

    def __hash__(self) -> int:
        return hash((self._ident, self._index))

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"ident={self._ident}, "
            f"index={self._index}, "
            f"dtype={self._dtype.name}, "
            f"shape={self._shape}"
            ")"
        )
