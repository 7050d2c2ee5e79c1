from typing import Any

import numpy as np
import torch

from .. import kernels
from .base import Layer


class BatchNormalization(Layer):
    """Inference-mode batch normalization over the last axis.

    y = (x - running_mean) / sqrt(running_std + epsilon) * gamma + beta
    """
    params = ("gamma", "beta", "running_mean", "running_std")
    supports_acceleration = True

    def __init__(self, epsilon: float = 1e-3, **attrs: Any) -> None:
        super().__init__(**attrs)
        self.epsilon = float(epsilon)

    def _check_weights(self) -> None:
        size = self.weights["gamma"].shape
        for param in self.params:
            self._expect_shape(param, size)

    def _call_host(self, x: np.ndarray) -> np.ndarray:
        inputs = [x] + [self.host_weight(p) for p in self.params]
        return kernels.run("batchnorm", inputs, x.shape, {"eps": self.epsilon})

    def _call_accelerated(self, x, shape):
        gamma, beta, mean, std = (self.device_weight(p) for p in self.params)
        y = (x - mean) / torch.sqrt(std + self.epsilon) * gamma + beta
        return y, shape
