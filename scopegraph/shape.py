from collections.abc import Iterable, Iterator
from functools import reduce
from typing import Union

from scopegraph.errors import MalformedShapeError, ShapeMismatchError

Dim = Union[int, None]


class Shape:
    """An immutable, possibly partial, static shape. A shape either has an unknown rank,
    or it is a sequence of dimensions where each dimension is either a known
    non-negative size or unknown (None). An unknown dimension is never confused
    with a zero-sized dimension.
    """

    def __init__(self, dims: Iterable[Dim] | None = None):
        """Initializes a shape.

        Args:
            dims: The dimensions, where None denotes an unknown dimension size.
                It can be None as to construct a shape of unknown rank.

        Raises:
            MalformedShapeError: If some dimension is negative or not an integer.
        """
        if dims is None:
            self._dims: tuple[Dim, ...] | None = None
            return
        checked = []
        for d in dims:
            if d is not None:
                if isinstance(d, bool) or not isinstance(d, int):
                    try:
                        d = int(d)
                    except (TypeError, ValueError) as e:
                        raise MalformedShapeError(f"Invalid dimension {d!r}") from e
                if d < 0:
                    raise MalformedShapeError(f"Dimensions must be non-negative, found {d}")
            checked.append(d)
        self._dims = tuple(checked)

    @classmethod
    def unknown(cls) -> "Shape":
        return cls(None)

    @classmethod
    def unknown_of_rank(cls, rank: int) -> "Shape":
        return cls([None] * rank)

    @classmethod
    def scalar(cls) -> "Shape":
        return cls(())

    @property
    def rank(self) -> int | None:
        """Retrieves the rank of the shape.

        Returns:
            The number of dimensions, or None if the rank is unknown.
        """
        return None if self._dims is None else len(self._dims)

    @property
    def dims(self) -> tuple[Dim, ...] | None:
        return self._dims

    @property
    def is_fully_defined(self) -> bool:
        return self._dims is not None and all(d is not None for d in self._dims)

    def num_elements(self) -> int | None:
        """Computes the number of elements of a tensor having this shape.

        Returns:
            The number of elements, or None if the shape is not fully defined.
        """
        if not self.is_fully_defined:
            return None
        return reduce(lambda a, b: a * b, self._dims, 1)

    def as_list(self) -> list[Dim] | None:
        return None if self._dims is None else list(self._dims)

    def is_compatible_with(self, other: "Shape") -> bool:
        """Checks whether this shape is compatible with another one. Two shapes are
        compatible if either of them has unknown rank, or if they have the same rank
        and all their known dimensions match.

        Args:
            other: The other shape.

        Returns:
            Whether the two shapes are compatible.
        """
        if self._dims is None or other._dims is None:
            return True
        if len(self._dims) != len(other._dims):
            return False
        return all(a is None or b is None or a == b for a, b in zip(self._dims, other._dims))

    def merge_with(self, other: "Shape") -> "Shape":
        """Merges the information of two compatible shapes.

        Args:
            other: The other shape.

        Returns:
            The most specific shape that is compatible with both shapes.

        Raises:
            ShapeMismatchError: If the shapes are not compatible.
        """
        if not self.is_compatible_with(other):
            raise ShapeMismatchError(f"Shapes {self} and {other} are not compatible")
        if self._dims is None:
            return other
        if other._dims is None:
            return self
        return Shape(a if a is not None else b for a, b in zip(self._dims, other._dims))

    def concatenate(self, other: "Shape") -> "Shape":
        if self._dims is None or other._dims is None:
            return Shape.unknown()
        return Shape(self._dims + other._dims)

    def __getitem__(self, index):
        if self._dims is None:
            raise ValueError("Cannot index a shape of unknown rank")
        if isinstance(index, slice):
            return Shape(self._dims[index])
        return self._dims[index]

    def __len__(self) -> int:
        if self._dims is None:
            raise ValueError("The length of a shape of unknown rank is not defined")
        return len(self._dims)

    def __bool__(self) -> bool:
        return self._dims is not None

    def __iter__(self) -> Iterator[Dim]:
        if self._dims is None:
            raise ValueError("Cannot iterate over a shape of unknown rank")
        return iter(self._dims)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Shape):
            return self._dims == other._dims
        if isinstance(other, (list, tuple)):
            return self._dims is not None and self._dims == tuple(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._dims)

    def __repr__(self) -> str:
        if self._dims is None:
            return "Shape(<unknown>)"
        return f"Shape({list(self._dims)})"


def as_shape(shape: "Shape | Iterable[Dim] | None") -> Shape:
    if isinstance(shape, Shape):
        return shape
    return Shape(shape)
