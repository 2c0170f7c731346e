import pytest

from scopegraph.errors import MalformedShapeError, ShapeMismatchError
from scopegraph.shape import Shape, as_shape


def test_unknown_shape():
    s = Shape.unknown()
    assert s.rank is None
    assert not s.is_fully_defined
    assert s.num_elements() is None
    assert s.as_list() is None
    with pytest.raises(ValueError):
        len(s)


def test_partial_shape():
    s = Shape([2, None, 3])
    assert s.rank == 3
    assert not s.is_fully_defined
    assert s[1] is None
    assert s[::2] == Shape([2, 3])
    assert s == [2, None, 3]


def test_zero_dimension_is_not_unknown():
    s = Shape([0, 4])
    assert s.is_fully_defined
    assert s.num_elements() == 0
    assert s != Shape([None, 4])


def test_scalar_shape():
    s = Shape.scalar()
    assert s.rank == 0
    assert s.is_fully_defined
    assert s.num_elements() == 1


@pytest.mark.parametrize("dims", [[-1], [2, -3], ["a"]])
def test_malformed_shape(dims):
    with pytest.raises(MalformedShapeError):
        Shape(dims)


@pytest.mark.parametrize(
    "a,b,expected",
    [
        (Shape.unknown(), Shape([2, 3]), Shape([2, 3])),
        (Shape([2, None]), Shape([None, 3]), Shape([2, 3])),
        (Shape([None, None]), Shape.unknown_of_rank(2), Shape([None, None])),
    ],
)
def test_merge_shapes(a, b, expected):
    assert a.is_compatible_with(b)
    assert a.merge_with(b) == expected
    assert b.merge_with(a) == expected


@pytest.mark.parametrize("a,b", [(Shape([2, 3]), Shape([2])), (Shape([2, 3]), Shape([2, 4]))])
def test_merge_incompatible_shapes(a, b):
    assert not a.is_compatible_with(b)
    with pytest.raises(ShapeMismatchError):
        a.merge_with(b)


def test_concatenate_shapes():
    assert Shape([2]).concatenate(Shape([None, 3])) == Shape([2, None, 3])
    assert Shape([2]).concatenate(Shape.unknown()).rank is None


def test_as_shape():
    s = Shape([1])
    assert as_shape(s) is s
    assert as_shape(None).rank is None
    assert as_shape((4, 5)) == Shape([4, 5])
