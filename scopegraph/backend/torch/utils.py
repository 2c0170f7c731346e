from typing import Any

import numpy as np
import torch

from scopegraph.dtypes import DataType

TORCH_DTYPES: dict[DataType, torch.dtype] = {
    DataType.FLOAT: torch.float32,
    DataType.DOUBLE: torch.float64,
    DataType.INT32: torch.int32,
    DataType.UINT8: torch.uint8,
    DataType.INT16: torch.int16,
    DataType.INT8: torch.int8,
    DataType.COMPLEX64: torch.complex64,
    DataType.INT64: torch.int64,
    DataType.BOOL: torch.bool,
    DataType.BFLOAT16: torch.bfloat16,
    DataType.COMPLEX128: torch.complex128,
    DataType.HALF: torch.float16,
}


def torch_dtype(dtype: DataType) -> torch.dtype:
    """Retrieves the torch data type corresponding to a data type.

    Args:
        dtype: The data type.

    Returns:
        The torch data type.

    Raises:
        ValueError: If the data type has no torch counterpart, e.g., strings.
    """
    if dtype not in TORCH_DTYPES:
        raise ValueError(f"The data type {dtype.name} is not supported by the torch backend")
    return TORCH_DTYPES[dtype]


def to_torch(value: Any, dtype: DataType) -> torch.Tensor:
    """Converts a constant value to a torch tensor of the given data type."""
    tdtype = torch_dtype(dtype)
    if dtype == DataType.BFLOAT16:
        # numpy has no bfloat16, so the value goes through float32
        return torch.as_tensor(np.asarray(value, dtype=np.float32)).to(tdtype)
    return torch.as_tensor(np.asarray(value, dtype=dtype.numpy)).to(tdtype)


def as_int_list(x: torch.Tensor) -> list[int]:
    return [int(v) for v in x.reshape(-1).tolist()]


def as_int(x: torch.Tensor) -> int:
    if x.numel() != 1:
        raise ValueError(f"Expected a scalar, found a tensor of shape {list(x.shape)}")
    return int(x.reshape(-1)[0].item())
