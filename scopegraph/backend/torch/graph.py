import logging
import re
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

import torch
from torch import Tensor

from scopegraph.attributes import AttrKind
from scopegraph.backend.base import GraphBackend, NodeBuilder
from scopegraph.backend.torch.kernels import (
    DEFAULT_KERNELS,
    InferenceContext,
    KernelRegistry,
    TorchKernel,
)
from scopegraph.backend.torch.utils import to_torch, torch_dtype
from scopegraph.errors import (
    BackendStatusError,
    DuplicateNameError,
    GraphBuildError,
    NameEncodingError,
    StatusCode,
)
from scopegraph.shape import Shape

logger = logging.getLogger(__name__)

# The node names accepted by the graph, i.e., slash-separated scope components
_NODE_NAME_RE = re.compile(r"^[A-Za-z0-9.][A-Za-z0-9_.\-/]*$")

NodeOutput = tuple["TorchNode", int]


class TorchNode:
    """A node of a torch graph. Nodes are immutable once they have been added to the
    graph, except for the static shapes of their outputs, which can only be refined."""

    __slots__ = ("index", "name", "type_name", "attrs", "inputs", "control_inputs", "shapes")

    def __init__(
        self,
        index: int,
        name: str,
        type_name: str,
        attrs: dict[str, Any],
        inputs: list[NodeOutput | list[NodeOutput]],
        control_inputs: list["TorchNode"],
    ):
        self.index = index
        self.name = name
        self.type_name = type_name
        self.attrs = attrs
        self.inputs = inputs
        self.control_inputs = control_inputs
        self.shapes: list[Shape] = []

    def __repr__(self) -> str:
        return f"TorchNode(name={self.name}, type_name={self.type_name})"


class _NodeInferenceContext(InferenceContext):
    def __init__(self, graph: "TorchGraph", node: TorchNode):
        self._graph = graph
        self._node = node

    def _single(self, i: int) -> NodeOutput:
        slot = self._node.inputs[i]
        if isinstance(slot, list):
            raise ValueError(f"Expected a single input at position {i}, found an input list")
        return slot

    def shape(self, i: int) -> Shape:
        node, index = self._single(i)
        return node.shapes[index]

    def shapes(self, i: int) -> list[Shape]:
        slot = self._node.inputs[i]
        if not isinstance(slot, list):
            raise ValueError(f"Expected an input list at position {i}, found a single input")
        return [node.shapes[index] for node, index in slot]

    def value(self, i: int) -> Tensor | None:
        node, index = self._single(i)
        return self._graph.constant_value(node, index)

    def attr(self, key: str, default: Any = None) -> Any:
        return self._node.attrs.get(key, default)


class TorchNodeBuilder(NodeBuilder[TorchNode]):
    def __init__(self, graph: "TorchGraph", type_name: str, name: str):
        self._graph = graph
        self._type_name = type_name
        self._name = name
        self._attrs: dict[str, Any] = {}
        self._inputs: list[NodeOutput | list[NodeOutput]] = []
        self._control_inputs: list[TorchNode] = []
        self._finished = False

    def _set_attr(self, key: str, value: Any) -> None:
        if key in self._attrs:
            raise BackendStatusError(
                StatusCode.INVALID_ARGUMENT,
                f"Attribute '{key}' of node '{self._name}' is set twice",
            )
        self._attrs[key] = value

    def set_scalar_attr(self, key: str, kind: AttrKind, value: Any) -> None:
        self._set_attr(key, value)

    def set_list_attr(self, key: str, kind: AttrKind, values: Sequence[Any]) -> None:
        self._set_attr(key, tuple(values))

    def add_input(self, node: TorchNode, index: int) -> None:
        self._inputs.append((node, index))

    def add_input_list(self, inputs: Sequence[NodeOutput]) -> None:
        self._inputs.append(list(inputs))

    def add_control_input(self, node: TorchNode) -> None:
        self._control_inputs.append(node)

    def finish(self) -> TorchNode:
        if self._finished:
            raise BackendStatusError(
                StatusCode.FAILED_PRECONDITION, f"Node '{self._name}' has already been finished"
            )
        node = self._graph._commit(
            self._type_name, self._name, self._attrs, self._inputs, self._control_inputs
        )
        self._finished = True
        return node


class TorchGraph(GraphBackend[TorchNode]):
    """A dataflow graph whose nodes are evaluated with PyTorch. Shapes are inferred
    statically when nodes are added, and values are computed lazily by
    [evaluate][scopegraph.backend.torch.graph.TorchGraph.evaluate]."""

    def __init__(self, kernels: Mapping[str, TorchKernel] | None = None):
        """Initializes an empty torch graph.

        Args:
            kernels: The kernels implementing the operation types, indexed by type name.
                If it is None, then the default kernels are used.
        """
        self._kernels = KernelRegistry(DEFAULT_KERNELS if kernels is None else kernels)
        self._nodes: list[TorchNode] = []
        self._by_name: dict[str, TorchNode] = {}
        self._constant: dict[int, bool] = {}
        self._values: dict[int, tuple[Tensor, ...]] = {}

    @property
    def kernels(self) -> KernelRegistry:
        return self._kernels

    def new_node(self, type_name: str, name: str) -> TorchNodeBuilder:
        if not isinstance(name, str) or not _NODE_NAME_RE.match(name):
            raise NameEncodingError(f"Invalid node name {name!r}")
        if name in self._by_name:
            raise DuplicateNameError(name)
        return TorchNodeBuilder(self, type_name, name)

    def _commit(
        self,
        type_name: str,
        name: str,
        attrs: dict[str, Any],
        inputs: list[NodeOutput | list[NodeOutput]],
        control_inputs: list[TorchNode],
    ) -> TorchNode:
        if name in self._by_name:
            raise DuplicateNameError(name)
        if not self._kernels.has_rule(type_name):
            raise BackendStatusError(
                StatusCode.NOT_FOUND, f"No kernel is registered for operation type '{type_name}'"
            )
        kernel = self._kernels.retrieve_rule(type_name)
        for n in self._input_nodes(inputs) + control_inputs:
            if n.index >= len(self._nodes) or self._nodes[n.index] is not n:
                raise BackendStatusError(
                    StatusCode.INVALID_ARGUMENT, f"Node '{n.name}' does not belong to this graph"
                )
        node = TorchNode(len(self._nodes), name, type_name, attrs, inputs, control_inputs)
        try:
            shapes = kernel.infer_shapes(_NodeInferenceContext(self, node))
        except (GraphBuildError, ValueError, IndexError) as e:
            raise BackendStatusError(
                StatusCode.INVALID_ARGUMENT, f"Node '{name}' of type '{type_name}': {e}"
            ) from e
        if len(shapes) != kernel.num_outputs:
            raise BackendStatusError(
                StatusCode.INTERNAL,
                f"Kernel '{type_name}' inferred {len(shapes)} shapes "
                f"for {kernel.num_outputs} outputs",
            )
        node.shapes = list(shapes)
        self._nodes.append(node)
        self._by_name[name] = node
        logger.debug("Added node %s of type %s with shapes %s", name, type_name, node.shapes)
        return node

    @staticmethod
    def _input_nodes(inputs: list[NodeOutput | list[NodeOutput]]) -> list[TorchNode]:
        nodes = []
        for slot in inputs:
            if isinstance(slot, list):
                nodes.extend(n for n, _ in slot)
            else:
                nodes.append(slot[0])
        return nodes

    def has_node(self, name: str) -> bool:
        return name in self._by_name

    def node(self, name: str) -> TorchNode:
        return self._by_name[name]

    def query_shape(self, node: TorchNode, index: int) -> Shape:
        return node.shapes[index]

    def assert_shape(self, node: TorchNode, index: int, shape: Shape) -> None:
        node.shapes[index] = node.shapes[index].merge_with(shape)

    def node_name(self, node: TorchNode) -> str:
        return node.name

    def node_type(self, node: TorchNode) -> str:
        return node.type_name

    def num_outputs(self, node: TorchNode) -> int:
        return len(node.shapes)

    def nodes(self) -> Iterator[TorchNode]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def _is_constant(self, node: TorchNode) -> bool:
        # Whether the value of the node does not depend on any placeholder
        if node.index not in self._constant:
            self._constant[node.index] = node.type_name != "Placeholder" and all(
                self._is_constant(n) for n in self._input_nodes(node.inputs)
            )
        return self._constant[node.index]

    def constant_value(self, node: TorchNode, index: int) -> Tensor | None:
        """Computes the value of a node output, if it does not depend on any placeholder.

        Args:
            node: The node.
            index: The output index.

        Returns:
            The value, or None if it depends on some placeholder or it cannot be computed.
        """
        if not self._is_constant(node):
            return None
        try:
            (value,) = self.evaluate([(node, index)])
        except BackendStatusError as e:
            logger.debug("Cannot compute the value of node %s: %s", node.name, e)
            return None
        return value

    def evaluate(
        self,
        fetches: Sequence[NodeOutput],
        feeds: Mapping[NodeOutput, Any] | None = None,
    ) -> list[Tensor]:
        """Evaluates some node outputs.

        Args:
            fetches: The node outputs to evaluate.
            feeds: The values of some node outputs, e.g., of the placeholders.

        Returns:
            The values of the fetched node outputs, in the same order.

        Raises:
            BackendStatusError: If some placeholder is not fed, or if some node fails
                to compute its outputs.
        """
        feeds = {} if feeds is None else dict(feeds)
        fed_nodes = {n.index for n, _ in feeds}
        needed: dict[int, TorchNode] = {}
        stack = [n for n, _ in fetches]
        while stack:
            n = stack.pop()
            if n.index in needed:
                continue
            needed[n.index] = n
            if n.index not in fed_nodes:
                stack.extend(self._input_nodes(n.inputs))
                stack.extend(n.control_inputs)
        values: dict[int, tuple[Tensor, ...]] = {}
        for i in sorted(needed):
            n = needed[i]
            if i in fed_nodes:
                values[i] = tuple(
                    self._feed_value(n, k, feeds[(n, k)]) for k in range(len(n.shapes))
                )
            elif i in self._values:
                values[i] = self._values[i]
            else:
                values[i] = self._compute(n, values)
                if self._is_constant(n):
                    self._values[i] = values[i]
        return [values[n.index][k] for n, k in fetches]

    def _feed_value(self, node: TorchNode, index: int, value: Any) -> Tensor:
        dtype = node.attrs.get("dtype")
        if isinstance(value, Tensor):
            tensor = value if dtype is None else value.to(torch_dtype(dtype))
        elif dtype is not None:
            tensor = to_torch(value, dtype)
        else:
            tensor = torch.as_tensor(value)
        if not node.shapes[index].is_compatible_with(Shape(tensor.shape)):
            raise BackendStatusError(
                StatusCode.INVALID_ARGUMENT,
                f"The value fed to node '{node.name}' has shape {list(tensor.shape)}, "
                f"which is not compatible with {node.shapes[index]}",
            )
        return tensor

    def _compute(
        self, node: TorchNode, values: dict[int, tuple[Tensor, ...]]
    ) -> tuple[Tensor, ...]:
        if node.type_name == "Placeholder":
            raise BackendStatusError(
                StatusCode.FAILED_PRECONDITION,
                f"A value must be fed for placeholder node '{node.name}'",
            )
        args: list[Tensor | list[Tensor]] = []
        for slot in node.inputs:
            if isinstance(slot, list):
                args.append([values[n.index][k] for n, k in slot])
            else:
                args.append(values[slot[0].index][slot[1]])
        kernel = self._kernels.retrieve_rule(node.type_name)
        try:
            return kernel.compute(args, node.attrs)
        except (RuntimeError, ValueError, IndexError, TypeError) as e:
            raise BackendStatusError(
                StatusCode.INVALID_ARGUMENT, f"Node '{node.name}' failed to compute: {e}"
            ) from e

    def __repr__(self) -> str:
        return f"TorchGraph(num_nodes={len(self._nodes)})"
