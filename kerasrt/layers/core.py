"""Core layers: input, dense, activation, and shape manipulation."""

from typing import Any

import numpy as np
import torch

from .. import activations, kernels
from ..errors import InvalidInputError
from ..tensor import Tensor
from .base import Layer


class InputLayer(Layer):
    """Graph entry point. Validates the size of the data it is seeded with."""

    def __init__(self, shape: tuple[int, ...] = (), **attrs: Any) -> None:
        super().__init__(**attrs)
        self.shape = tuple(int(d) for d in shape)

    def call(self, x: Tensor) -> Tensor:
        expected = int(np.prod(self.shape, dtype=np.int64))
        if x.buffer.size != expected:
            raise InvalidInputError(
                f"Input '{self.name}' expects {expected} values for shape "
                f"{self.shape}, got {x.buffer.size}"
            )
        return x


class Dense(Layer):
    """Fully connected layer: y = activation(x @ W + b)."""
    supports_acceleration = True

    def __init__(self, output_dim: int = 1, activation: str = "linear",
                 bias: bool = True, input_dim: int | None = None,
                 **attrs: Any) -> None:
        self.output_dim = int(output_dim)
        self.input_dim = input_dim
        self.activation = activations.resolve(activation)
        self.bias = bias
        self.params = ("W", "b") if bias else ("W",)
        super().__init__(**attrs)

    def _check_weights(self) -> None:
        self._expect_shape("W", (self.input_dim, self.output_dim))
        if self.bias:
            self._expect_shape("b", (self.output_dim,))

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        out_shape = x.shape[:-1] + (self.output_dim,)
        if self.bias:
            y = kernels.run("matmul_add",
                            [x, self.host_weight("W"), self.host_weight("b")], out_shape)
        else:
            y = kernels.run("matmul", [x, self.host_weight("W")], out_shape)
        return activations.host(self.activation)(y)

    def _call_accelerated(self, x, shape):
        y = torch.matmul(x, self.device_weight("W"))
        if self.bias:
            y = y + self.device_weight("b")
        y = activations.accelerated(self.activation)(y)
        return y, shape[:-1] + (self.output_dim,)


class Activation(Layer):
    """Applies an activation function elementwise."""
    supports_acceleration = True

    def __init__(self, activation: str = "linear", **attrs: Any) -> None:
        self.activation = activations.resolve(activation)
        super().__init__(**attrs)

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        return activations.host(self.activation)(x)

    def _call_accelerated(self, x, shape):
        return activations.accelerated(self.activation)(x), shape


class Dropout(Layer):
    """Identity at inference time."""
    supports_acceleration = True

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        return kernels.run("copy", [x], x.shape)

    def _call_accelerated(self, x, shape):
        return x.clone(), shape


class Flatten(Layer):

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        return kernels.run("copy", [x], (x.size,))


class Reshape(Layer):
    """Reshape to `target_shape`; one dimension may be -1."""

    def __init__(self, target_shape: tuple[int, ...] = (), **attrs: Any) -> None:
        super().__init__(**attrs)
        self.target_shape = tuple(int(d) for d in target_shape)

    def _resolve_shape(self, size: int) -> tuple[int, ...]:
        if -1 not in self.target_shape:
            return self.target_shape
        known = int(np.prod([d for d in self.target_shape if d != -1], dtype=np.int64))
        return tuple(size // known if d == -1 else d for d in self.target_shape)

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        return kernels.run("copy", [x], self._resolve_shape(x.size))


class Permute(Layer):
    """Permute dimensions. `dims` is 1-based, as in the architecture files."""

    def __init__(self, dims: tuple[int, ...] = (), **attrs: Any) -> None:
        super().__init__(**attrs)
        self.dims = tuple(int(d) for d in dims)

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        axes = tuple(d - 1 for d in self.dims)
        out_shape = tuple(x.shape[a] for a in axes)
        return kernels.run("transpose", [x], out_shape, {"axes": axes})


class RepeatVector(Layer):
    """(d,) -> (n, d)."""

    def __init__(self, n: int = 1, **attrs: Any) -> None:
        super().__init__(**attrs)
        self.n = int(n)

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        return kernels.run("repeat", [x], (self.n,) + x.shape)
