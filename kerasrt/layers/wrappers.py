"""Wrapper layers built around already-constructed inner layers."""

from typing import Any

import numpy as np

from .. import kernels
from ..tensor import Tensor
from .base import Layer


class Bidirectional(Layer):
    """Runs a recurrent layer over the sequence in both directions.

    The graph builder constructs both inner layers from the nested spec
    (the backward one with go_backwards set) and injects them here.
    Weights arrive as the forward layer's params followed by the backward
    layer's params.
    """

    def __init__(self, forward_layer: Layer, backward_layer: Layer,
                 merge_mode: str = "concat", **attrs: Any) -> None:
        if merge_mode not in ("concat", "sum", "mul", "ave"):
            raise ValueError(f"Unsupported bidirectional merge mode '{merge_mode}'")
        self.forward_layer = forward_layer
        self.backward_layer = backward_layer
        self.merge_mode = merge_mode
        self.params = tuple(forward_layer.params) + tuple(backward_layer.params)
        super().__init__(**attrs)

    def toggle_acceleration(self, enabled: bool) -> None:
        super().toggle_acceleration(enabled)
        self.forward_layer.toggle_acceleration(enabled)
        self.backward_layer.toggle_acceleration(enabled)

    def set_weights(self, weights: list[Tensor]) -> None:
        n = len(self.forward_layer.params)
        self.forward_layer.set_weights(weights[:n])
        self.backward_layer.set_weights(weights[n:])
        self.weights = dict(zip(
            [f"forward_{p}" for p in self.forward_layer.params]
            + [f"backward_{p}" for p in self.backward_layer.params],
            weights,
        ))

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        forward = self.forward_layer.call(Tensor.from_array(x)).array
        backward = self.backward_layer.call(Tensor.from_array(x)).array
        if getattr(self.backward_layer, "return_sequences", False):
            # Align backward outputs with forward time order
            backward = np.ascontiguousarray(backward[::-1])

        if self.merge_mode == "concat":
            shape = forward.shape[:-1] + (forward.shape[-1] + backward.shape[-1],)
            return kernels.run("cat", [forward, backward], shape, {"axis": -1})
        kernel = {"sum": "add", "mul": "mul", "ave": "mean"}[self.merge_mode]
        return kernels.run(kernel, [forward, backward], forward.shape)


class TimeDistributed(Layer):
    """Applies the inner layer independently to every timestep of the input."""

    def __init__(self, layer: Layer, **attrs: Any) -> None:
        self.layer = layer
        self.params = tuple(layer.params)
        super().__init__(**attrs)

    def toggle_acceleration(self, enabled: bool) -> None:
        super().toggle_acceleration(enabled)
        self.layer.toggle_acceleration(enabled)

    def set_weights(self, weights: list[Tensor]) -> None:
        self.layer.set_weights(weights)
        self.weights = dict(zip(self.params, weights))

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        steps = [self.layer.call(Tensor.from_array(x[t])).to_host().array
                 for t in range(x.shape[0])]
        return np.stack(steps).astype(np.float32)
