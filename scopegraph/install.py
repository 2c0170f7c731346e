import logging
from typing import TYPE_CHECKING

from scopegraph.attributes import AttrKind
from scopegraph.errors import DuplicateIdentityError, DuplicateNameError
from scopegraph.operation import ConstantValue, Operation
from scopegraph.shape import Shape
from scopegraph.tensor import Tensor

if TYPE_CHECKING:
    from scopegraph.scope import Scope

logger = logging.getLogger(__name__)


def resolve_name(scope: "Scope", op: Operation) -> str:
    """Resolves the fully qualified name of the node an operation is installed as.

    Args:
        scope: The scope.
        op: The operation.

    Returns:
        The explicit name of the operation qualified by the scope prefix, or a fresh
            unique name built from the base name of the operation.

    Raises:
        DuplicateNameError: If the explicit name is already taken by a node.
    """
    if op.name is None:
        return scope.unique_name(op.base_name(scope))
    name = scope.qualify(op.name)
    if scope.graph.has_node(name):
        raise DuplicateNameError(name)
    return name


def _emit_constant(scope: "Scope", name: str, folded: ConstantValue):
    builder = scope.graph.new_node("Const", name)
    builder.set_scalar_attr("value", AttrKind.TENSOR, folded.value)
    builder.set_scalar_attr("dtype", AttrKind.TYPE, folded.dtype)
    for ident in sorted(scope.control_dependencies):
        builder.add_control_input(scope.registry.resolve(ident).node)
    return builder.finish()


def _emit(scope: "Scope", op: Operation, name: str):
    builder = scope.graph.new_node(op.type_name, name)
    attrs = list(op.attributes)
    dtype_attr = op.dtype_attribute()
    if dtype_attr is not None:
        attrs.append(dtype_attr)
    for attr in attrs:
        if attr.is_list:
            builder.set_list_attr(attr.key, attr.kind, attr.value)
        else:
            builder.set_scalar_attr(attr.key, attr.kind, attr.value)
    for slot in op.positional_inputs():
        if isinstance(slot, Tensor):
            builder.add_input(*scope.resolve(slot))
        else:
            builder.add_input_list([scope.resolve(t) for t in slot])
    for ident in sorted(scope.control_dependencies):
        builder.add_control_input(scope.registry.resolve(ident).node)
    return builder.finish()


def install_operation(scope: "Scope", op: Operation) -> Tensor | tuple[Tensor, ...]:
    """Installs an operation in the backend graph of a scope. The installation either
    succeeds and binds the identity of the operation to exactly one backend node, or it
    fails leaving the backend graph and the identity registry unchanged.

    Args:
        scope: The scope.
        op: The operation.

    Returns:
        The output tensor if the operation has a single output, otherwise a tuple of
            output tensors, one per output slot.

    Raises:
        DuplicateIdentityError: If the operation has already been installed.
        DuplicateNameError: If the explicit name of the operation is already taken.
        NodeNotInstalledError: If some input has not been installed in the scope graph.
        BackendStatusError: If the backend graph rejects the node.
    """
    if scope.registry.is_bound(op.ident):
        raise DuplicateIdentityError(op.ident)
    # Resolve the inputs before reserving a name, so that failures leave no trace
    for slot in op.positional_inputs():
        for t in (slot,) if isinstance(slot, Tensor) else slot:
            scope.resolve(t)
    name = resolve_name(scope, op)
    folded = op.constant_fold(scope) if scope.fold_constants else None
    if folded is not None:
        node = _emit_constant(scope, name, folded)
        hints = [Shape(folded.value.shape)]
        logger.debug("Folded %s into constant node %s", op.type_name, name)
    else:
        node = _emit(scope, op, name)
        hints = op.infer_shapes(scope)
        logger.debug("Installed %s node %s", op.type_name, name)
    outputs = tuple(
        Tensor(op.ident, i, dtype, hints[i].merge_with(scope.graph.query_shape(node, i)))
        for i, dtype in enumerate(op.output_dtypes)
    )
    scope.registry.bind(op.ident, node, scope.graph.num_outputs(node))
    if len(outputs) == 1:
        return outputs[0]
    return outputs
