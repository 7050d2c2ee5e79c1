"""Activation functions for host (numpy) and accelerated (torch) paths.

Architecture files spell activations in several ways ("hard_sigmoid",
"hardSigmoid", "HardSigmoid"). `resolve()` maps any of them to the one
internal identifier used as the key of both tables below.
"""

import re
from typing import Callable

import numpy as np
import torch

from .errors import UnknownActivationError


HostFn = Callable[[np.ndarray], np.ndarray]
AccelFn = Callable[[torch.Tensor], torch.Tensor]


def _softmax(x: np.ndarray) -> np.ndarray:
    shifted = x - np.max(x, axis=-1, keepdims=True)
    e = np.exp(shifted)
    return e / np.sum(e, axis=-1, keepdims=True)


def _hard_sigmoid(x: np.ndarray) -> np.ndarray:
    return np.clip(0.2 * x + 0.5, 0.0, 1.0)


def _elu(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(x > 0, x, alpha * (np.exp(np.minimum(x, 0)) - 1))


HOST_ACTIVATIONS: dict[str, HostFn] = {
    "linear": np.copy,
    "relu": lambda x: np.maximum(x, 0),
    "sigmoid": lambda x: 1.0 / (1.0 + np.exp(-x)),
    "hard_sigmoid": _hard_sigmoid,
    "tanh": np.tanh,
    "softmax": _softmax,
    "softplus": lambda x: np.log1p(np.exp(x)),
    "softsign": lambda x: x / (1.0 + np.abs(x)),
    "elu": _elu,
}


ACCEL_ACTIVATIONS: dict[str, AccelFn] = {
    "linear": torch.clone,
    "relu": torch.relu,
    "sigmoid": torch.sigmoid,
    "hard_sigmoid": lambda x: torch.clamp(0.2 * x + 0.5, 0.0, 1.0),
    "tanh": torch.tanh,
    "softmax": lambda x: torch.softmax(x, dim=-1),
    "softplus": torch.nn.functional.softplus,
    "softsign": torch.nn.functional.softsign,
    "elu": torch.nn.functional.elu,
}


def snake_case(name: str) -> str:
    """camelCase / PascalCase / snake_case -> snake_case."""
    name = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()


def resolve(name: str | None) -> str:
    """Translate a human-readable activation identifier to the internal one."""
    if name is None:
        return "linear"
    key = snake_case(name)
    if key not in HOST_ACTIVATIONS:
        raise UnknownActivationError(
            f"Unknown activation '{name}'",
            context={"known": sorted(HOST_ACTIVATIONS)},
        )
    return key


def host(name: str) -> HostFn:
    return HOST_ACTIVATIONS[name]


def accelerated(name: str) -> AccelFn:
    return ACCEL_ACTIVATIONS[name]
