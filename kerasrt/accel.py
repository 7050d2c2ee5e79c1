"""Accelerated backend primitives (PyTorch).

Tensors live on CUDA when it is available, otherwise on the CPU device;
the code path is the same either way. The accelerated representation is
always at least 2-D: a logical shape (n,) is stored as (1, n). The stored
shape is what callers record as a Tensor's `actual_shape`.
"""

from functools import lru_cache

import numpy as np
import torch


@lru_cache(maxsize=None)
def device() -> torch.device:
    """Device used for all accelerated tensors."""
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def padded_shape(shape: tuple[int, ...]) -> tuple[int, ...]:
    """Shape of the accelerated representation for a logical shape."""
    if len(shape) == 0:
        return (1, 1)
    if len(shape) == 1:
        return (1, shape[0])
    return tuple(shape)


def upload(array: np.ndarray) -> tuple[torch.Tensor, tuple[int, ...]]:
    """Copy a host array to the device. Returns (handle, actual_shape)."""
    actual_shape = padded_shape(array.shape)
    host = np.ascontiguousarray(array, dtype=np.float32).reshape(actual_shape)
    handle = torch.from_numpy(host.copy()).to(device())
    return handle, actual_shape


def download(handle: torch.Tensor, shape: tuple[int, ...]) -> np.ndarray:
    """Copy a device tensor back to a flat host float32 buffer.

    `shape` is the logical shape; padding dims are dropped by the reshape.
    """
    data = handle.detach().to("cpu", dtype=torch.float32).contiguous().numpy()
    return data.reshape(shape).ravel().copy()


def clone(handle: torch.Tensor) -> torch.Tensor:
    """Device-side copy of a handle (no host round-trip)."""
    return handle.detach().clone()
