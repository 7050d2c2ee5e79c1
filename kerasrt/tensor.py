"""Tensor value type shared by every layer and the scheduler.

A Tensor pairs a flat float32 buffer with its logical shape. A tensor
whose data lives on the accelerated backend carries a device handle and
the padded `actual_shape` of that handle instead of host data.

Tensors are treated as immutable: code that wants different data builds
a new Tensor (see `replace_buffer`, `copy`, `accelerated_copy`) rather
than writing into a buffer some other owner may still be reading.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

import numpy as np

from . import accel


class Backend(Enum):
    """Which backend currently owns a tensor's data."""
    HOST        = auto()
    ACCELERATED = auto()


def _num_elements(shape: tuple[int, ...]) -> int:
    return int(np.prod(shape, dtype=np.int64)) if shape else 1


@dataclass
class Tensor:
    """Flat numeric buffer plus shape.

    Fields:
        buffer: Flat float32 host data. Empty for accelerated tensors.
        shape: Logical shape.
        backend: HOST or ACCELERATED.
        handle: Device tensor (torch.Tensor), accelerated only.
        actual_shape: Shape of `handle` (may pad dims), accelerated only.
    """
    buffer: np.ndarray
    shape: tuple[int, ...]
    backend: Backend = Backend.HOST
    handle: Any = None
    actual_shape: tuple[int, ...] | None = None

    def __post_init__(self) -> None:
        self.shape = tuple(int(d) for d in self.shape)
        if self.backend is Backend.HOST:
            self.buffer = np.asarray(self.buffer, dtype=np.float32).reshape(-1)
            expected = _num_elements(self.shape)
            # An empty buffer is a placeholder awaiting data (input tensors)
            if self.buffer.size and self.buffer.size != expected:
                raise ValueError(
                    f"Buffer of {self.buffer.size} elements does not match "
                    f"shape {self.shape} ({expected} elements)"
                )

    # --- Constructors ---

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Tensor":
        """Host tensor taking its shape from `array`."""
        array = np.asarray(array, dtype=np.float32)
        return cls(array.reshape(-1), array.shape)

    @classmethod
    def from_handle(cls, handle: Any, shape: tuple[int, ...]) -> "Tensor":
        """Accelerated tensor wrapping a device handle."""
        return cls(
            buffer=np.empty(0, dtype=np.float32),
            shape=shape,
            backend=Backend.ACCELERATED,
            handle=handle,
            actual_shape=tuple(handle.shape),
        )

    @classmethod
    def placeholder(cls, shape: tuple[int, ...]) -> "Tensor":
        """Empty host tensor of a declared shape (filled per predict call)."""
        return cls(np.empty(0, dtype=np.float32), shape)

    # --- Views ---

    @property
    def array(self) -> np.ndarray:
        """Host data reshaped to the logical shape."""
        if self.backend is not Backend.HOST:
            raise ValueError("Tensor data lives on the accelerated backend")
        return self.buffer.reshape(self.shape)

    @property
    def size(self) -> int:
        return _num_elements(self.shape)

    @property
    def is_accelerated(self) -> bool:
        return self.backend is Backend.ACCELERATED

    # --- Replacement / duplication ---

    def replace_buffer(self, data: np.ndarray) -> "Tensor":
        """New host tensor of this shape holding a private copy of `data`."""
        return Tensor(np.array(data, dtype=np.float32, copy=True).reshape(-1), self.shape)

    def copy(self) -> "Tensor":
        """Deep copy of a host tensor."""
        if self.backend is not Backend.HOST:
            raise ValueError("copy() is host-only; use accelerated_copy()")
        return Tensor(self.buffer.copy(), self.shape)

    def accelerated_copy(self) -> "Tensor":
        """Device-level copy of an accelerated tensor (handle + shape metadata)."""
        if self.backend is not Backend.ACCELERATED:
            raise ValueError("accelerated_copy() requires an accelerated tensor")
        return Tensor(
            buffer=np.empty(0, dtype=np.float32),
            shape=self.shape,
            backend=Backend.ACCELERATED,
            handle=accel.clone(self.handle),
            actual_shape=tuple(self.actual_shape),
        )

    def to_accelerated(self) -> "Tensor":
        """Upload a host tensor to the accelerated backend."""
        if self.backend is Backend.ACCELERATED:
            return self
        handle, _ = accel.upload(self.array)
        return Tensor.from_handle(handle, self.shape)

    def to_host(self) -> "Tensor":
        """Download an accelerated tensor into a new host tensor."""
        if self.backend is Backend.HOST:
            return self
        return Tensor(accel.download(self.handle, self.shape), self.shape)
