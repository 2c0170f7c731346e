from scopegraph.backend.torch.graph import TorchGraph, TorchNode, TorchNodeBuilder
from scopegraph.backend.torch.kernels import DEFAULT_KERNELS, KernelRegistry, TorchKernel

__all__ = [
    "DEFAULT_KERNELS",
    "KernelRegistry",
    "TorchGraph",
    "TorchKernel",
    "TorchNode",
    "TorchNodeBuilder",
]
