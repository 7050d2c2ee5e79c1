"""Merge layer: combines the results of several inbound layers."""

from typing import Any

import torch

from .. import kernels
from ..tensor import Backend, Tensor
from .base import Layer


# mode -> host kernel name
_HOST_MODES = {
    "sum": "add",
    "mul": "mul",
    "ave": "mean",
    "max": "max",
    "concat": "cat",
    "dot": "dot",
}


class Merge(Layer):
    """Combines several input tensors into one.

    Modes: sum, mul, ave, max (elementwise, equal shapes), concat (along
    concat_axis), dot (inner product over the last axis of two inputs).
    """
    supports_acceleration = True
    multi_input = True

    def __init__(self, mode: str = "sum", concat_axis: int = -1, **attrs: Any) -> None:
        if mode not in _HOST_MODES:
            raise ValueError(f"Unsupported merge mode '{mode}'")
        self.mode = mode
        # Architecture files count the batch axis; positive axes shift by one
        self.concat_axis = int(concat_axis) - 1 if concat_axis > 0 else int(concat_axis)
        super().__init__(**attrs)

    def _output_shape(self, shapes: list[tuple[int, ...]]) -> tuple[int, ...]:
        if self.mode == "concat":
            axis = self.concat_axis % len(shapes[0])
            out = list(shapes[0])
            out[axis] = sum(s[axis] for s in shapes)
            return tuple(out)
        if self.mode == "dot":
            return shapes[0][:-1] + (1,)
        if any(s != shapes[0] for s in shapes):
            raise ValueError(
                f"Merge '{self.name}' ({self.mode}) needs equal input shapes, got {shapes}"
            )
        return shapes[0]

    def call(self, inputs: list[Tensor]) -> Tensor:
        if len(inputs) < 2:
            raise ValueError(f"Merge '{self.name}' needs at least 2 inputs, got {len(inputs)}")
        if self.mode == "dot" and len(inputs) != 2:
            raise ValueError(f"Merge '{self.name}' (dot) takes exactly 2 inputs")
        shape = self._output_shape([x.shape for x in inputs])

        if self.accelerate:
            handles = [x.to_accelerated().handle for x in inputs]
            return self._emit(self._merge_accelerated(handles, len(shape)), shape)

        arrays = [
            (self.transfer_from_accelerated(x) if x.backend is Backend.ACCELERATED else x).array
            for x in inputs
        ]
        attrs = {"axis": self.concat_axis}
        return Tensor.from_array(kernels.run(_HOST_MODES[self.mode], arrays, shape, attrs))

    def _merge_accelerated(self, handles: list, ndim: int):
        if self.mode == "sum":
            return torch.stack(handles).sum(dim=0)
        if self.mode == "mul":
            return torch.stack(handles).prod(dim=0)
        if self.mode == "ave":
            return torch.stack(handles).mean(dim=0)
        if self.mode == "max":
            return torch.stack(handles).amax(dim=0)
        if self.mode == "concat":
            # Padding only prepends dims, so index from the end
            axis = self.concat_axis if self.concat_axis < 0 else self.concat_axis - ndim
            return torch.cat(handles, dim=axis)
        return (handles[0] * handles[1]).sum(dim=-1, keepdim=True)
