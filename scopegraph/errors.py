from enum import Enum


class GraphBuildError(Exception):
    """The base class of the errors returned to the caller while building a graph.

    Composite operations do not re-type the errors raised by the primitives they are
    built from. Rather, they annotate the same exception object with the stage at which
    it occurred (see [annotate][scopegraph.errors.GraphBuildError.annotate]).
    """

    def __init__(self, msg: str):
        super().__init__(msg)
        self.msg = msg
        self.stages: list[str] = []

    def annotate(self, stage: str) -> "GraphBuildError":
        """Record the stage of a composite operation during which this error occurred.

        Args:
            stage: A short description of the stage, e.g., "rank computation".

        Returns:
            The exception itself, such that it can be re-raised.
        """
        self.stages.append(stage)
        return self

    def __str__(self) -> str:
        if not self.stages:
            return self.msg
        return f"{self.msg} (during {' <- '.join(self.stages)})"


class StatusCode(Enum):
    INVALID_ARGUMENT = "InvalidArgument"
    NOT_FOUND = "NotFound"
    FAILED_PRECONDITION = "FailedPrecondition"
    UNIMPLEMENTED = "Unimplemented"
    INTERNAL = "Internal"


class BackendStatusError(GraphBuildError):
    """A failure reported by the backend graph engine, e.g., when finalizing a node."""

    def __init__(self, code: StatusCode, message: str):
        super().__init__(f"{code.value}: {message}")
        self.code = code
        self.message = message


class NameEncodingError(GraphBuildError):
    """An identifier or a string attribute contains a value the backend cannot represent."""


class ValidationError(GraphBuildError):
    """An operation constructor rejected its arguments. It never reaches the backend."""


class TypeMismatchError(ValidationError):
    pass


class InputTypeMismatch(TypeMismatchError):
    """The inputs of a homogeneous input group do not share one data type."""


class ValueCountMismatch(TypeMismatchError):
    """The number of constant values is inconsistent with the declared shape."""


class ArgumentCountError(ValidationError):
    pass


class UnsupportedDataTypeError(ValidationError):
    pass


class MalformedShapeError(ValidationError):
    pass


class MalformedAttributeError(ValidationError):
    pass


class ShapeMismatchError(ValidationError):
    """Two shapes are incompatible, either in rank or in some fixed dimension."""


class NodeNotInstalledError(GraphBuildError):
    """A tensor refers to a node identity that has not been installed in the graph."""


class OperationDefinitionError(GraphBuildError):
    """An operation kind has been declared incorrectly."""


class FrameworkInvariantError(RuntimeError):
    """The base class of fatal programming errors, i.e., violations of the invariants of
    the graph building framework. These are not meant to be recovered from."""


class DuplicateIdentityError(FrameworkInvariantError):
    def __init__(self, ident: object):
        super().__init__(f"The node identity {ident} has already been bound to a node")
        self.ident = ident


class DuplicateNameError(FrameworkInvariantError):
    def __init__(self, name: str):
        super().__init__(f"Duplicate node name in graph: '{name}'")
        self.name = name
