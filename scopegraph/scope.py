import logging
from collections.abc import Iterable
from typing import Any

import numpy as np

from scopegraph.backend import GraphBackend
from scopegraph.context import BuildContext
from scopegraph.dtypes import DataType, dtype_value
from scopegraph.errors import (
    InputTypeMismatch,
    MalformedShapeError,
    NodeNotInstalledError,
    UnsupportedDataTypeError,
    ValidationError,
    ValueCountMismatch,
)
from scopegraph.ident import IdentityRegistry, NodeIdent
from scopegraph.install import install_operation
from scopegraph.operation import Operation
from scopegraph.ops.array_ops import Const, Placeholder
from scopegraph.shape import Dim, Shape, as_shape
from scopegraph.tensor import Tensor

logger = logging.getLogger(__name__)


class _NameCounter:
    """The counters of the base names used in one name prefix. It is shared by the scopes
    having the same prefix."""

    def __init__(self):
        self._counts: dict[str, int] = {}

    def next(self, base: str) -> int:
        n = self._counts.get(base, 0)
        self._counts[base] = n + 1
        return n


def constant_array(
    values: Any, shape: Shape | Iterable[Dim] | None = None, dtype: DataType | None = None
) -> tuple[np.ndarray, DataType]:
    """Builds the value of a constant.

    Args:
        values: The values, e.g., a number, a (nested) list or a Numpy array.
        shape: The shape of the constant. If it is None, then the shape of the values is used.
            Otherwise, the number of values must match the number of elements, or it must be
            one, in which case the value is repeated.
        dtype: The data type. If it is None, then it is retrieved from the values.

    Returns:
        The value as a Numpy array, and its data type.

    Raises:
        UnsupportedDataTypeError: If the data type cannot be retrieved from the values.
        MalformedShapeError: If the shape is not fully defined, or the values are ragged.
        ValueCountMismatch: If the number of values does not match the shape.
    """
    if dtype is None:
        try:
            dtype = dtype_value(values)
        except ValueError as e:
            raise UnsupportedDataTypeError(str(e)) from e
    try:
        array = np.asarray(values, dtype=dtype.numpy)
    except (TypeError, ValueError) as e:
        raise MalformedShapeError(f"Cannot build a constant of type {dtype.name}: {e}") from e
    if shape is None:
        return array, dtype
    shape = as_shape(shape)
    if not shape.is_fully_defined:
        raise MalformedShapeError(f"The shape {shape} of a constant must be fully defined")
    dims = tuple(shape)
    if array.size == shape.num_elements():
        return array.reshape(dims), dtype
    if array.size == 1:
        return np.full(dims, array.reshape(()).item(), dtype=dtype.numpy), dtype
    raise ValueCountMismatch(
        f"Found {array.size} values for a constant of shape {shape}, "
        f"which has {shape.num_elements()} elements"
    )


class Scope:
    """A scope is the handle through which graphs are built. It owns a name prefix, the name
    counters of the prefix and the set of control dependencies applied to the nodes it
    installs. All the scopes derived from the same root share the backend graph and the
    identity registry, i.e., the side table binding node identities to backend nodes.

    Scopes are derived with [child][scopegraph.scope.Scope.child], which nests the name
    prefix, and with [with_control_dependencies][scopegraph.scope.Scope.with_control_dependencies],
    which extends the control dependencies. The derived scopes never affect their parent.
    """

    def __init__(self, graph: GraphBackend | None = None, *, fold_constants: bool | None = None):
        """Initializes a root scope.

        Args:
            graph: The backend graph. If it is None, then a fresh graph is created by the
                current build context (see [BuildContext][scopegraph.context.BuildContext]).
            fold_constants: Whether to replace the operations whose outputs are statically
                known with constant nodes. If it is None, then the flag of the current build
                context is used.
        """
        ctx = BuildContext.current()
        self._graph = ctx.new_graph() if graph is None else graph
        self._registry = IdentityRegistry()
        self._fold_constants = ctx.fold_constants if fold_constants is None else fold_constants
        self._prefix = ""
        self._names = _NameCounter()
        self._control: frozenset[NodeIdent] = frozenset()

    def _derive(self, prefix: str, names: _NameCounter, control: frozenset[NodeIdent]) -> "Scope":
        scope = object.__new__(Scope)
        scope._graph = self._graph
        scope._registry = self._registry
        scope._fold_constants = self._fold_constants
        scope._prefix = prefix
        scope._names = names
        scope._control = control
        return scope

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def graph(self) -> GraphBackend:
        return self._graph

    @property
    def registry(self) -> IdentityRegistry:
        return self._registry

    @property
    def control_dependencies(self) -> frozenset[NodeIdent]:
        return self._control

    @property
    def fold_constants(self) -> bool:
        return self._fold_constants

    def qualify(self, name: str) -> str:
        return f"{self._prefix}/{name}" if self._prefix else name

    def unique_name(self, base: str) -> str:
        """Generates a fully qualified name that is not used in the backend graph. The names
        generated for the same base name are base, base_1, base_2, and so on.

        Args:
            base: The base name.

        Returns:
            The fully qualified name.
        """
        while True:
            n = self._names.next(base)
            name = self.qualify(base if n == 0 else f"{base}_{n}")
            if not self._graph.has_node(name):
                return name

    def child(self, name_hint: str | None = None, default_type_name: str | None = None) -> "Scope":
        """Creates a nested scope.

        Args:
            name_hint: The name of the nested scope.
            default_type_name: The name of the nested scope, if no name hint is given.

        Returns:
            A scope whose prefix is the unique name of the nested scope in this scope. It has
                fresh name counters, and the same control dependencies of this scope.

        Raises:
            ValidationError: If neither a name hint nor a default type name is given.
        """
        base = name_hint or default_type_name
        if not base:
            raise ValidationError("A nested scope requires either a name hint or a type name")
        prefix = self.unique_name(base)
        logger.debug("Created scope %s", prefix)
        return self._derive(prefix, _NameCounter(), self._control)

    def with_control_dependencies(self, *deps: Tensor | NodeIdent) -> "Scope":
        """Creates a scope whose nodes depend on the given nodes for execution order.

        Args:
            *deps: The tensors, or the identities, of the nodes to depend on.

        Returns:
            A scope with the same prefix and name counters of this scope, whose control
                dependencies extend the ones of this scope.

        Raises:
            NodeNotInstalledError: If some node has not been installed yet.
        """
        idents = set(self._control)
        for dep in deps:
            ident = dep.ident if isinstance(dep, Tensor) else dep
            if not self._registry.is_bound(ident):
                raise NodeNotInstalledError(f"Control dependency {ident} has not been installed")
            idents.add(ident)
        return self._derive(self._prefix, self._names, frozenset(idents))

    def install(self, op: Operation) -> Tensor | tuple[Tensor, ...]:
        """Installs an operation as a node of the backend graph.
        See [install_operation][scopegraph.install.install_operation].
        """
        return install_operation(self, op)

    def resolve(self, tensor: Tensor) -> tuple[Any, int]:
        """Resolves a tensor to the backend node output it refers to.

        Args:
            tensor: The tensor.

        Returns:
            The backend node and the output index.

        Raises:
            NodeNotInstalledError: If the node producing the tensor has not been installed
                in the graph of this scope.
        """
        binding = self._registry.resolve(tensor.ident)
        if binding is None:
            raise NodeNotInstalledError(
                f"The node {tensor.ident} producing {tensor} has not been installed"
            )
        if tensor.index >= binding.num_outputs:
            raise ValidationError(
                f"Output {tensor.index} is out of range for a node "
                f"with {binding.num_outputs} outputs"
            )
        return binding.node, tensor.index

    def constant(
        self,
        values: Any,
        shape: Shape | Iterable[Dim] | None = None,
        name: str | None = None,
        dtype: DataType | None = None,
    ) -> Tensor:
        """Installs a constant. See [constant_array][scopegraph.scope.constant_array] for
        the accepted values.

        Returns:
            The constant tensor.
        """
        array, dtype = constant_array(values, shape, dtype)
        return self.install(Const(array, dtype, name=name))

    def placeholder(
        self,
        dtype: DataType,
        shape: Shape | Iterable[Dim] | None = None,
        name: str | None = None,
    ) -> Tensor:
        return self.install(Placeholder(dtype, shape, name=name))

    def convert_to_tensor(
        self, value: Any, dtype: DataType | None = None, name: str | None = None
    ) -> Tensor:
        """Converts a value to a tensor.

        Args:
            value: A tensor, or the values of a constant.
            dtype: The expected data type. If it is None, then any data type is accepted.
            name: The name of the constant, if one is installed.

        Returns:
            The tensor itself, or the installed constant.

        Raises:
            InputTypeMismatch: If the value is a tensor with a data type other than the
                expected one.
        """
        if isinstance(value, Tensor):
            if dtype is not None and value.dtype != dtype:
                raise InputTypeMismatch(
                    f"Expected a tensor of type {dtype.name}, found {value.dtype.name}"
                )
            return value
        return self.constant(value, name=name, dtype=dtype)

    def get_shape(self, tensor: Tensor) -> Shape:
        return tensor.get_shape(self)

    def set_shape(self, tensor: Tensor, shape: Shape | Iterable[Dim] | None) -> Tensor:
        return tensor.set_shape(self, shape)

    def node_name(self, tensor: Tensor) -> str:
        node, _ = self.resolve(tensor)
        return self._graph.node_name(node)

    def node_type(self, tensor: Tensor) -> str:
        node, _ = self.resolve(tensor)
        return self._graph.node_type(node)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"prefix={self._prefix!r}, "
            f"num_control_dependencies={len(self._control)}, "
            f"fold_constants={self._fold_constants}"
            ")"
        )
