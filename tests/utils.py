from collections.abc import Mapping
from typing import Any

import torch

from scopegraph import Scope, Tensor


def run(
    scope: Scope, *tensors: Tensor, feeds: Mapping[Tensor, Any] | None = None
) -> list[torch.Tensor]:
    """Evaluates some tensors on the torch graph of a scope.

    Args:
        scope: The scope.
        *tensors: The tensors to evaluate.
        feeds: The values of some tensors, e.g., of the placeholders.

    Returns:
        The values of the tensors.
    """
    fetches = [scope.resolve(t) for t in tensors]
    feeds = {} if feeds is None else {scope.resolve(t): v for t, v in feeds.items()}
    return scope.graph.evaluate(fetches, feeds)


def node_types(scope: Scope) -> list[str]:
    return [scope.graph.node_type(n) for n in scope.graph.nodes()]
