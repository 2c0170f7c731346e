from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from typing import Any, Generic, TypeVar

from scopegraph.attributes import AttrKind
from scopegraph.shape import Shape

BackendNode = TypeVar("BackendNode")


class NodeBuilder(ABC, Generic[BackendNode]):
    """The builder of a backend node. Nothing is added to the backend graph until
    [finish][scopegraph.backend.base.NodeBuilder.finish] succeeds."""

    @abstractmethod
    def set_scalar_attr(self, key: str, kind: AttrKind, value: Any) -> None:
        ...

    @abstractmethod
    def set_list_attr(self, key: str, kind: AttrKind, values: Sequence[Any]) -> None:
        ...

    @abstractmethod
    def add_input(self, node: BackendNode, index: int) -> None:
        ...

    @abstractmethod
    def add_input_list(self, inputs: Sequence[tuple[BackendNode, int]]) -> None:
        ...

    @abstractmethod
    def add_control_input(self, node: BackendNode) -> None:
        ...

    @abstractmethod
    def finish(self) -> BackendNode:
        """Finalizes the node and adds it to the backend graph.

        Returns:
            The backend node.

        Raises:
            BackendStatusError: If the backend fails to finalize the node.
        """


class GraphBackend(ABC, Generic[BackendNode]):
    """The interface of the backend graph engine that graphs are built against."""

    @abstractmethod
    def new_node(self, type_name: str, name: str) -> NodeBuilder[BackendNode]:
        """Starts building a new node.

        Args:
            type_name: The canonical type name of the operation.
            name: The fully qualified name of the node.

        Returns:
            The node builder.

        Raises:
            DuplicateNameError: If a node with the same name already exists.
            NameEncodingError: If the name is not a valid node name.
        """

    @abstractmethod
    def has_node(self, name: str) -> bool:
        ...

    @abstractmethod
    def query_shape(self, node: BackendNode, index: int) -> Shape:
        ...

    @abstractmethod
    def assert_shape(self, node: BackendNode, index: int, shape: Shape) -> None:
        """Asserts the static shape of a node output.

        Raises:
            ShapeMismatchError: If the shape is not compatible with the known one.
        """

    @abstractmethod
    def node_name(self, node: BackendNode) -> str:
        ...

    @abstractmethod
    def node_type(self, node: BackendNode) -> str:
        ...

    @abstractmethod
    def num_outputs(self, node: BackendNode) -> int:
        ...

    @abstractmethod
    def nodes(self) -> Iterator[BackendNode]:
        ...

    def __len__(self) -> int:
        return sum(1 for _ in self.nodes())
