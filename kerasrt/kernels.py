"""Host (numpy) kernels used by the layers' CPU path.

Uses numpy's `out=` parameter to write directly into a pre-allocated
output buffer, so a kernel never hands back an array that aliases one of
its inputs. Layers call these through `run()`, which allocates the output.
"""

from typing import Any, Callable

import numpy as np


# In-place kernels: (inputs, output, attrs) -> None
KernelFn = Callable[[list[np.ndarray], np.ndarray, dict[str, Any]], None]


def _matmul(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    np.matmul(inputs[0], inputs[1], out=output)


def _matmul_add(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    a, b, bias = inputs[0], inputs[1], inputs[2]
    np.matmul(a, b, out=output)
    np.add(output, bias, out=output)


def _add(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    np.copyto(output, inputs[0])
    for x in inputs[1:]:
        np.add(output, x, out=output)


def _mul(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    np.copyto(output, inputs[0])
    for x in inputs[1:]:
        np.multiply(output, x, out=output)


def _mean(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    _add(inputs, output, attrs)
    np.divide(output, len(inputs), out=output)


def _max(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    np.copyto(output, inputs[0])
    for x in inputs[1:]:
        np.maximum(output, x, out=output)


def _cat(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    np.concatenate(inputs, axis=attrs["axis"], out=output)


def _dot(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    np.sum(inputs[0] * inputs[1], axis=-1, keepdims=True, out=output)


def _batchnorm(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    x, gamma, beta, mean, std = inputs
    eps = attrs.get("eps", 1e-3)
    np.copyto(output, (x - mean) / np.sqrt(std + eps) * gamma + beta)


def _transpose(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    # transpose returns a view, so we need to copy into output
    np.copyto(output, np.transpose(inputs[0], attrs["axes"]))


def _copy(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    np.copyto(output, inputs[0].reshape(output.shape))


def _repeat(inputs: list[np.ndarray], output: np.ndarray, attrs: dict[str, Any]) -> None:
    output[:] = inputs[0]


_KERNELS: dict[str, KernelFn] = {
    "matmul": _matmul,
    "matmul_add": _matmul_add,
    "add": _add,
    "mul": _mul,
    "mean": _mean,
    "max": _max,
    "cat": _cat,
    "dot": _dot,
    "batchnorm": _batchnorm,
    "transpose": _transpose,
    "copy": _copy,
    "repeat": _repeat,
}


def get_kernel(name: str) -> KernelFn:
    """Return the host kernel registered under `name`."""
    kernel = _KERNELS.get(name)
    if kernel is None:
        raise RuntimeError(f"No host kernel for '{name}'")
    return kernel


def run(name: str, inputs: list[np.ndarray], output_shape: tuple[int, ...],
        attrs: dict[str, Any] | None = None) -> np.ndarray:
    """Run a single kernel into a freshly allocated output array."""
    output = np.zeros(output_shape, dtype=np.float32)
    get_kernel(name)(inputs, output, attrs or {})
    return output
