"""Layer base class: the contract the graph builder and scheduler consume.

A layer is called with a Tensor (a list of Tensors for merge-style layers)
and returns a new Tensor. It never writes into its input. Layers hold
weights and backend preferences only; per-run results and visitation
flags belong to the scheduler.

Backend behavior:
    accelerate=False    host numpy kernels, host results.
    accelerate=True     torch kernels on the accelerated device; the result
                        is downloaded back to the host, unless
    pipeline=True       is also set, in which case the result stays on the
                        device for the next layer.
"""

import logging
from typing import Any

import numpy as np

from ..tensor import Backend, Tensor
from .. import accel


logger = logging.getLogger(__name__)


class Layer:
    """Base layer.

    Class attributes:
        params: Ordered weight slot identifiers (e.g. ("W", "b")).
        supports_acceleration: Layer has a torch implementation.
        multi_input: Layer is called with a list of tensors (Merge).
    """
    params: tuple[str, ...] = ()
    supports_acceleration: bool = False
    multi_input: bool = False

    def __init__(self, name: str = "", accelerate: bool = False,
                 pipeline: bool = False, **attrs: Any) -> None:
        self.name = name
        self.weights: dict[str, Tensor] = {}
        self.pipeline = pipeline
        self.accelerate = False
        self._device_weights: dict[str, Any] = {}
        # Remaining architecture fields (regularizers, trainable, ...) are
        # irrelevant at inference time.
        self.unused_attrs = attrs
        self.toggle_acceleration(accelerate)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    # --- Backend preference ---

    @property
    def pipeline_enabled(self) -> bool:
        """Results stay on the accelerated backend between layers."""
        return self.accelerate and self.pipeline

    def toggle_acceleration(self, enabled: bool) -> None:
        """Set the backend preference. Ignored by host-only layers."""
        self.accelerate = bool(enabled) and self.supports_acceleration
        if enabled and not self.supports_acceleration:
            logger.debug("%s: no accelerated implementation, staying on host", self)

    # --- Weights ---

    def set_weights(self, weights: list[Tensor]) -> None:
        """Assign weight tensors, in `params` order, and validate them."""
        if len(weights) != len(self.params):
            raise ValueError(
                f"Layer '{self.name}' expects {len(self.params)} weights "
                f"{list(self.params)}, got {len(weights)}"
            )
        self.weights = dict(zip(self.params, weights))
        self._device_weights = {}
        self._check_weights()

    def _check_weights(self) -> None:
        """Validate weight shapes against the layer's configuration."""

    def _expect_shape(self, param: str, shape: tuple[int | None, ...]) -> None:
        actual = self.weights[param].shape
        if len(actual) != len(shape) or any(
                want is not None and want != got for want, got in zip(shape, actual)):
            raise ValueError(
                f"Layer '{self.name}' weight '{param}' has shape {actual}, "
                f"expected {shape}"
            )

    def host_weight(self, param: str) -> np.ndarray:
        return self.weights[param].array

    def device_weight(self, param: str):
        """Device copy of a weight, uploaded once and cached."""
        handle = self._device_weights.get(param)
        if handle is None:
            handle = accel.upload(self.weights[param].array)[0]
            if len(self.weights[param].shape) == 1:
                handle = handle.reshape(-1)
            self._device_weights[param] = handle
        return handle

    # --- Computation ---

    def call(self, x: Tensor) -> Tensor:
        """Compute the layer output for one input tensor."""
        if self.accelerate:
            x = x.to_accelerated()
            handle, shape = self._call_accelerated(x.handle, x.shape)
            return self._emit(handle, shape)
        if x.backend is Backend.ACCELERATED:
            x = self.transfer_from_accelerated(x)
        return Tensor.from_array(self._call_host(x.array))

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError(f"{type(self).__name__} has no host implementation")

    def _call_accelerated(self, x, shape: tuple[int, ...]):
        """Torch implementation. Returns (handle, logical_shape)."""
        raise NotImplementedError(f"{type(self).__name__} has no accelerated implementation")

    def _emit(self, handle, shape: tuple[int, ...]) -> Tensor:
        """Wrap a device result: keep it on the device in pipeline mode."""
        tensor = Tensor.from_handle(handle, shape)
        if self.pipeline_enabled:
            return tensor
        return self.transfer_from_accelerated(tensor)

    def transfer_from_accelerated(self, x: Tensor) -> Tensor:
        """Copy one of this layer's accelerated results into a host tensor."""
        return x.to_host()
