"""Weight binding: metadata entries -> Tensor views into the raw weight buffer.

The weights artifact is every weight array flattened and concatenated
as float32. The metadata artifact lists, per array, which layer and
weight it belongs to, its byte offset, element count, and shape.
"""

import re
from dataclasses import dataclass
from typing import Any

import numpy as np

from .errors import MissingWeightError
from .tensor import Tensor


@dataclass(frozen=True)
class WeightMetadataEntry:
    """One contiguous region of the raw weight buffer.

    `offset` is in bytes, `length` in float32 elements.
    """
    layer_name: str
    weight_name: str
    offset: int
    length: int
    shape: tuple[int, ...]

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "WeightMetadataEntry":
        return cls(
            layer_name=d["layer_name"],
            weight_name=d["weight_name"],
            offset=int(d["offset"]),
            length=int(d["length"]),
            shape=tuple(int(s) for s in d["shape"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer_name": self.layer_name,
            "weight_name": self.weight_name,
            "offset": self.offset,
            "length": self.length,
            "shape": list(self.shape),
        }


def parse_metadata(raw: list[dict[str, Any]]) -> list[WeightMetadataEntry]:
    return [WeightMetadataEntry.from_dict(d) for d in raw]


def find_entry(metadata: list[WeightMetadataEntry], layer_name: str,
               weight_name: str) -> WeightMetadataEntry:
    """The unique entry of `layer_name` whose weight name starts with `weight_name`."""
    pattern = re.compile(f"^{re.escape(weight_name)}")
    matches = [
        meta for meta in metadata
        if meta.layer_name == layer_name and pattern.match(meta.weight_name)
    ]
    if len(matches) != 1:
        raise MissingWeightError(layer_name, weight_name, len(matches))
    return matches[0]


def bind_weights(layer_name: str, weight_names: list[str],
                 metadata: list[WeightMetadataEntry],
                 buffer: bytes | memoryview) -> list[Tensor]:
    """Build one read-only Tensor per weight slot, in `weight_names` order.

    Each tensor's data is a view over the shared raw buffer, not a copy.
    """
    tensors = []
    for weight_name in weight_names:
        entry = find_entry(metadata, layer_name, weight_name)
        data = np.frombuffer(buffer, dtype="<f4", count=entry.length, offset=entry.offset)
        # bytearray-backed buffers come back writeable
        data.flags.writeable = False
        tensors.append(Tensor(data, entry.shape))
    return tensors
