from collections.abc import Sequence
from enum import IntEnum, auto
from typing import Any

import numpy as np

from scopegraph.dtypes import DataType
from scopegraph.errors import MalformedAttributeError, NameEncodingError
from scopegraph.shape import Shape, as_shape


class AttrKind(IntEnum):
    """The kinds of values an operation attribute can hold."""

    INT = auto()
    FLOAT = auto()
    BOOL = auto()
    STRING = auto()
    TYPE = auto()
    TENSOR = auto()
    """A constant tensor value, stored as a Numpy array."""
    SHAPE = auto()


# The attribute kinds that have a list form
LISTABLE_KINDS = frozenset(
    {AttrKind.INT, AttrKind.FLOAT, AttrKind.BOOL, AttrKind.STRING, AttrKind.TYPE}
)


def check_encodable(s: str) -> str:
    """Checks that a string can be represented by the backend, i.e., that it can be encoded
    as a NUL-terminated UTF-8 string.

    Args:
        s: The string.

    Returns:
        The string itself.

    Raises:
        NameEncodingError: If the string contains a NUL character or cannot be encoded.
    """
    if not isinstance(s, str):
        raise NameEncodingError(f"Expected a string, found {type(s)}")
    if "\0" in s:
        raise NameEncodingError(f"The string {s!r} contains a NUL character")
    try:
        s.encode("utf-8")
    except UnicodeEncodeError as e:
        raise NameEncodingError(f"The string {s!r} cannot be encoded as UTF-8") from e
    return s


def _check_scalar(kind: AttrKind, value: Any) -> Any:
    if kind == AttrKind.INT:
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise MalformedAttributeError(f"Expected an integer, found {value!r}")
        return int(value)
    if kind == AttrKind.FLOAT:
        if not isinstance(value, (int, float, np.number)) or isinstance(value, bool):
            raise MalformedAttributeError(f"Expected a float, found {value!r}")
        return float(value)
    if kind == AttrKind.BOOL:
        if not isinstance(value, (bool, np.bool_)):
            raise MalformedAttributeError(f"Expected a boolean, found {value!r}")
        return bool(value)
    if kind == AttrKind.STRING:
        return check_encodable(value)
    if kind == AttrKind.TYPE:
        if not isinstance(value, DataType):
            raise MalformedAttributeError(f"Expected a data type, found {value!r}")
        return value
    if kind == AttrKind.TENSOR:
        return np.asarray(value)
    return as_shape(value)


class Attribute:
    """A keyed, tagged attribute value attached to an operation descriptor."""

    def __init__(self, key: str, kind: AttrKind, value: Any, *, is_list: bool = False):
        """Initializes an attribute.

        Args:
            key: The attribute key.
            kind: The kind of the attribute value, or of its elements if it is a list.
            value: The value.
            is_list: Whether the backend expects the list form of the attribute.

        Raises:
            NameEncodingError: If the key or a string value cannot be represented.
            MalformedAttributeError: If the value does not match the kind, or the kind
                has no list form.
        """
        check_encodable(key)
        if is_list:
            if kind not in LISTABLE_KINDS:
                raise MalformedAttributeError(f"Attributes of kind {kind.name} have no list form")
            if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
                raise MalformedAttributeError(
                    f"The list attribute '{key}' expects a sequence, found {value!r}"
                )
            value = tuple(_check_scalar(kind, v) for v in value)
        else:
            value = _check_scalar(kind, value)
        self.key = key
        self.kind = kind
        self.value = value
        self.is_list = is_list

    @classmethod
    def from_int(cls, key: str, value: int) -> "Attribute":
        return cls(key, AttrKind.INT, value)

    @classmethod
    def from_ints(cls, key: str, values: Sequence[int]) -> "Attribute":
        return cls(key, AttrKind.INT, values, is_list=True)

    @classmethod
    def from_float(cls, key: str, value: float) -> "Attribute":
        return cls(key, AttrKind.FLOAT, value)

    @classmethod
    def from_bool(cls, key: str, value: bool) -> "Attribute":
        return cls(key, AttrKind.BOOL, value)

    @classmethod
    def from_string(cls, key: str, value: str) -> "Attribute":
        return cls(key, AttrKind.STRING, value)

    @classmethod
    def from_strings(cls, key: str, values: Sequence[str]) -> "Attribute":
        return cls(key, AttrKind.STRING, values, is_list=True)

    @classmethod
    def from_type(cls, key: str, value: DataType) -> "Attribute":
        return cls(key, AttrKind.TYPE, value)

    @classmethod
    def from_types(cls, key: str, values: Sequence[DataType]) -> "Attribute":
        return cls(key, AttrKind.TYPE, values, is_list=True)

    @classmethod
    def from_tensor(cls, key: str, value: np.ndarray) -> "Attribute":
        return cls(key, AttrKind.TENSOR, value)

    @classmethod
    def from_shape(cls, key: str, value: Shape | Sequence[int | None] | None) -> "Attribute":
        return cls(key, AttrKind.SHAPE, value)

    def __repr__(self) -> str:
        form = "list " if self.is_list else ""
        return f"Attribute({self.key}: {form}{self.kind.name}={self.value!r})"
