from scopegraph.context import BuildContext as BuildContext
from scopegraph.dtypes import DataType as DataType
from scopegraph.errors import GraphBuildError as GraphBuildError
from scopegraph.operation import Operation as Operation
from scopegraph.scope import Scope as Scope
from scopegraph.shape import Shape as Shape
from scopegraph.tensor import Tensor as Tensor
