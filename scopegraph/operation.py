from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, TypeVar

import numpy as np

from scopegraph.attributes import Attribute, check_encodable
from scopegraph.dtypes import DataType
from scopegraph.errors import (
    ArgumentCountError,
    InputTypeMismatch,
    MalformedAttributeError,
    OperationDefinitionError,
    ValidationError,
)
from scopegraph.ident import NodeIdent
from scopegraph.registry import InvalidRule, Registry
from scopegraph.shape import Shape
from scopegraph.tensor import Tensor

if TYPE_CHECKING:
    from scopegraph.scope import Scope

OperationT = TypeVar("OperationT", bound="Operation")


class OutputRule(ABC):
    """The rule computing the data type of the outputs of an operation."""

    @abstractmethod
    def dtype(self, op: "Operation") -> DataType:
        ...


class SameAsInput(OutputRule):
    """The outputs have the same data type of the n-th positional input. If the n-th
    positional input is an input list, then the data type of its elements is used."""

    def __init__(self, index: int = 0):
        self.index = index

    def dtype(self, op: "Operation") -> DataType:
        slots = op.positional_inputs()
        if self.index >= len(slots):
            raise ArgumentCountError(
                f"Operation '{op.type_name}' has no positional input {self.index}"
            )
        slot = slots[self.index]
        if isinstance(slot, Tensor):
            return slot.dtype
        if not slot:
            raise ArgumentCountError(
                f"The input list {self.index} of operation '{op.type_name}' is empty"
            )
        return slot[0].dtype

    def __repr__(self) -> str:
        return f"SameAsInput({self.index})"


class FixedType(OutputRule):
    def __init__(self, dtype: DataType):
        self._dtype = dtype

    def dtype(self, op: "Operation") -> DataType:
        return self._dtype

    def __repr__(self) -> str:
        return f"FixedType({self._dtype.name})"


@dataclass(frozen=True)
class ConstantValue:
    """A statically known value of an operation output, used by the constant folding shortcut.
    The value must be identical to what the backend would compute for the operation."""

    value: np.ndarray
    dtype: DataType


@dataclass(frozen=True)
class OperationDescriptor:
    """The validated, pre-installation description of one operation instance."""

    ident: NodeIdent
    type_name: str
    name: str | None
    inputs: tuple[Tensor, ...]
    input_lists: tuple[tuple[int, tuple[Tensor, ...]], ...]
    attributes: tuple[Attribute, ...]
    num_outputs: int
    output_dtypes: tuple[DataType, ...]


def check_same_dtype(tensors: Sequence[Tensor], what: str = "inputs") -> DataType:
    """Checks that the tensors of a homogeneous input group share one data type.

    Args:
        tensors: The tensors.
        what: A description of the input group, used in the error message.

    Returns:
        The shared data type.

    Raises:
        ArgumentCountError: If there are no tensors.
        InputTypeMismatch: If the tensors do not share one data type.
    """
    if not tensors:
        raise ArgumentCountError(f"Expected at least one tensor as {what}")
    dtype = tensors[0].dtype
    for t in tensors[1:]:
        if t.dtype != dtype:
            raise InputTypeMismatch(
                f"All the {what} must have the same data type, "
                f"found {dtype.name} and {t.dtype.name}"
            )
    return dtype


class Operation(ABC):
    """The base class of operation kinds. An operation kind is defined by subclassing this
    class and declaring, once:
        1. type_name: The canonical type name of the operation in the backend.
        2. The constructor, which validates its arguments and calls ```__init__``` of this
            class with the inputs, the input lists, the attributes and the name.
        3. The naming convention: default_name (the type name if not given) is the base name
            of unnamed nodes, unless name_input is the position of the input whose producing
            node type is the base name. type_attr is the key of the data type attribute,
            which is set to the data type of the positional input type_attr_input.
        4. output_rule and num_outputs: The number of outputs and their data type.
        5. Optionally, fluent builder methods adding attributes, a constant folding shortcut
            (see [constant_fold][scopegraph.operation.Operation.constant_fold]) and static
            shape hints (see [infer_shapes][scopegraph.operation.Operation.infer_shapes]).
    Every concrete subclass is registered in the operation registry when it is created, and
    it is installed by [Scope.install][scopegraph.scope.Scope.install] without any
    operation-specific installation logic.
    """

    type_name: ClassVar[str]
    default_name: ClassVar[str | None] = None
    name_input: ClassVar[int | None] = None
    type_attr: ClassVar[str | None] = "T"
    type_attr_input: ClassVar[int] = 0
    output_rule: ClassVar[OutputRule] = SameAsInput(0)
    num_outputs: ClassVar[int] = 1

    def __init_subclass__(cls, abstract: bool = False, **kwargs):
        super().__init_subclass__(**kwargs)
        if not abstract:
            OPERATION_REGISTRY.add_rule(cls)

    def __init__(
        self,
        inputs: Sequence[Tensor] = (),
        *,
        input_lists: Iterable[tuple[int, Sequence[Tensor]]] = (),
        attributes: Iterable[Attribute] = (),
        name: str | None = None,
        output_rule: OutputRule | None = None,
    ):
        """Initializes an operation, i.e., it builds the operation descriptor.

        Args:
            inputs: The single inputs, in positional order.
            input_lists: The input lists, each given with its position among the positional
                inputs.
            attributes: The attributes.
            name: The explicit name of the node. If it is None or empty, then a default name
                is generated when the operation is installed.
            output_rule: An output rule overriding the one declared by the operation kind.

        Raises:
            ValidationError: If some input is not a tensor.
            ArgumentCountError: If the positions of the input lists are not valid.
            MalformedAttributeError: If two attributes have the same key.
            NameEncodingError: If the name cannot be represented by the backend.
        """
        self._ident = NodeIdent.new()
        self._inputs = tuple(inputs)
        self._input_lists = tuple((pos, tuple(ts)) for pos, ts in input_lists)
        for t in self._inputs + tuple(t for _, ts in self._input_lists for t in ts):
            if not isinstance(t, Tensor):
                raise ValidationError(
                    f"Operation '{self.type_name}' expects tensors as inputs, found {type(t)}"
                )
        num_slots = len(self._inputs) + len(self._input_lists)
        positions = [pos for pos, _ in self._input_lists]
        if len(set(positions)) != len(positions) or any(
            p < 0 or p >= num_slots for p in positions
        ):
            raise ArgumentCountError(
                f"Invalid input list positions {positions} for operation '{self.type_name}'"
            )
        self._attributes: list[Attribute] = []
        for attr in attributes:
            self.add_attribute(attr)
        self._name = check_encodable(name) if name else None
        if output_rule is not None:
            self.output_rule = output_rule
        self._output_dtypes = tuple(self.output_rule.dtype(self) for _ in range(self.num_outputs))

    @property
    def ident(self) -> NodeIdent:
        return self._ident

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def inputs(self) -> tuple[Tensor, ...]:
        return self._inputs

    @property
    def input_lists(self) -> tuple[tuple[int, tuple[Tensor, ...]], ...]:
        return self._input_lists

    @property
    def attributes(self) -> tuple[Attribute, ...]:
        return tuple(self._attributes)

    @property
    def output_dtypes(self) -> tuple[DataType, ...]:
        return self._output_dtypes

    @property
    def descriptor(self) -> OperationDescriptor:
        return OperationDescriptor(
            ident=self._ident,
            type_name=self.type_name,
            name=self._name,
            inputs=self._inputs,
            input_lists=self._input_lists,
            attributes=self.attributes,
            num_outputs=self.num_outputs,
            output_dtypes=self._output_dtypes,
        )

    def add_attribute(self: OperationT, attr: Attribute) -> OperationT:
        """Adds an attribute to the operation.

        Args:
            attr: The attribute.

        Returns:
            The operation itself, such that builder methods can be chained.

        Raises:
            MalformedAttributeError: If an attribute with the same key is already present.
        """
        if any(a.key == attr.key for a in self._attributes):
            raise MalformedAttributeError(
                f"Duplicate attribute '{attr.key}' for operation '{self.type_name}'"
            )
        self._attributes.append(attr)
        return self

    def positional_inputs(self) -> list[Tensor | tuple[Tensor, ...]]:
        """Retrieves the inputs in their declared positional order, where each input list
        occupies a single position.

        Returns:
            The positional inputs.
        """
        lists = dict(self._input_lists)
        singles = iter(self._inputs)
        num_slots = len(self._inputs) + len(self._input_lists)
        return [lists[pos] if pos in lists else next(singles) for pos in range(num_slots)]

    def base_name(self, scope: "Scope") -> str:
        """Retrieves the base of the default name of the node the operation is installed as.

        Args:
            scope: The scope the operation is being installed in.

        Returns:
            The type of the node producing the name input, if the operation kind declares
                one, or the default name of the operation kind otherwise.
        """
        slots = self.positional_inputs()
        if self.name_input is not None and self.name_input < len(slots):
            slot = slots[self.name_input]
            if isinstance(slot, Tensor):
                return scope.node_type(slot)
            if slot:
                return scope.node_type(slot[0])
        return self.default_name or self.type_name

    def dtype_attribute(self) -> Attribute | None:
        """Retrieves the data type attribute, according to the naming convention of the
        operation kind.

        Returns:
            The data type attribute, or None if the operation kind does not have one, or
                if it has been set explicitly.
        """
        if self.type_attr is None or any(a.key == self.type_attr for a in self._attributes):
            return None
        slots = self.positional_inputs()
        if self.type_attr_input >= len(slots):
            return None
        slot = slots[self.type_attr_input]
        if isinstance(slot, Tensor):
            return Attribute.from_type(self.type_attr, slot.dtype)
        if not slot:
            return None
        return Attribute.from_type(self.type_attr, slot[0].dtype)

    def constant_fold(self, scope: "Scope") -> ConstantValue | None:
        """The constant folding shortcut. An operation kind can override this method to
        recognize when its output is statically known, e.g., the rank of a tensor whose
        rank is known at build time. The folded value must be identical to the value the
        backend would compute. Folding is always safe to skip.

        Args:
            scope: The scope the operation is being installed in.

        Returns:
            The constant value of the (single) output, or None if it is not known.
        """
        return None

    def infer_shapes(self, scope: "Scope") -> list[Shape]:
        """Computes static shape hints of the outputs, which are merged with the shapes
        inferred by the backend.

        Args:
            scope: The scope the operation is being installed in.

        Returns:
            One shape per output.
        """
        return [Shape.unknown()] * self.num_outputs

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"ident={self._ident}, "
            f"type_name={self.type_name}, "
            f"name={self._name}, "
            f"num_inputs={len(self._inputs)}, "
            f"num_input_lists={len(self._input_lists)}, "
            f"attributes={self.attributes}"
            ")"
        )


class OperationRegistry(Registry[str, type[Operation]]):
    """The registry of operation kinds, indexed by their canonical type name."""

    @classmethod
    def _validate_rule(cls, rule: type[Operation]) -> None:
        type_name = getattr(rule, "type_name", None)
        if not isinstance(type_name, str) or not type_name:
            raise InvalidRule(rule, "the canonical type name is not declared")
        check_encodable(type_name)
        if not isinstance(rule.output_rule, OutputRule):
            raise InvalidRule(rule, "the output rule is not valid")
        if rule.num_outputs < 1:
            raise InvalidRule(rule, "an operation must have at least one output")
        if rule.name_input is not None and (
            not isinstance(rule.name_input, int) or rule.name_input < 0
        ):
            raise InvalidRule(rule, "the name input must be a non-negative position")

    @classmethod
    def _retrieve_signature(cls, rule: type[Operation]) -> str:
        return rule.type_name

    def add_rule(self, rule: type[Operation], *, signature: str | None = None) -> None:
        self._validate_rule(rule)
        signature = rule.type_name if signature is None else signature
        other = self._rules.get(signature)
        if other is not None and other.__qualname__ != rule.__qualname__:
            raise OperationDefinitionError(
                f"The operation type '{signature}' is already defined by {other.__qualname__}"
            )
        super().add_rule(rule, signature=signature)


# The registry of all the operation kinds that have been defined
OPERATION_REGISTRY = OperationRegistry()
