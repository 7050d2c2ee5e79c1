"""Recurrent layers. Inputs are (timesteps, input_dim)."""

from typing import Any

import numpy as np

from .. import activations, kernels
from .base import Layer


class SimpleRNN(Layer):
    """Fully connected recurrence: h_t = activation(x_t @ W + h_{t-1} @ U + b).

    With go_backwards the sequence is consumed last step first, and the
    returned sequence (return_sequences=True) is in processing order.
    """
    params = ("W", "U", "b")

    def __init__(self, output_dim: int = 1, activation: str = "tanh",
                 return_sequences: bool = False, go_backwards: bool = False,
                 **attrs: Any) -> None:
        super().__init__(**attrs)
        self.output_dim = int(output_dim)
        self.activation = activations.resolve(activation)
        self.return_sequences = return_sequences
        self.go_backwards = go_backwards

    def _check_weights(self) -> None:
        self._expect_shape("W", (None, self.output_dim))
        self._expect_shape("U", (self.output_dim, self.output_dim))
        self._expect_shape("b", (self.output_dim,))

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        W, U, b = (self.host_weight(p) for p in self.params)
        act = activations.host(self.activation)

        steps = x[::-1] if self.go_backwards else x
        # Input projection for every step at once
        projected = kernels.run("matmul_add", [steps, W, b], (steps.shape[0], self.output_dim))

        h = np.zeros(self.output_dim, dtype=np.float32)
        outputs = np.zeros((steps.shape[0], self.output_dim), dtype=np.float32)
        for t in range(steps.shape[0]):
            h = act(projected[t] + kernels.run("matmul", [h, U], (self.output_dim,)))
            outputs[t] = h

        if self.return_sequences:
            return outputs
        return h.astype(np.float32)
