"""
This module contains the interface between the graph building framework and the backend graph
engine, i.e., the dataflow system owning executable nodes. The framework only builds and
describes nodes for the backend. We currently ship a reference backend built on PyTorch.
"""
from scopegraph.backend.base import GraphBackend, NodeBuilder

SUPPORTED_BACKENDS = ["torch"]


def retrieve_backend(backend: str, **backend_kwargs) -> GraphBackend:
    """Creates an empty backend graph.

    Args:
        backend: The backend name.
        **backend_kwargs: The arguments to pass to the backend graph.

    Returns:
        An empty backend graph.

    Raises:
        NotImplementedError: If the backend is not supported.
    """
    if backend not in SUPPORTED_BACKENDS:
        raise NotImplementedError(f"Backend '{backend}' is not implemented")
    # pylint: disable-next=import-outside-toplevel
    from scopegraph.backend.torch.graph import TorchGraph

    return TorchGraph(**backend_kwargs)


__all__ = ["GraphBackend", "NodeBuilder", "SUPPORTED_BACKENDS", "retrieve_backend"]
