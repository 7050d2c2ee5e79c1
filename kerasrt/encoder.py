"""Write model artifacts: architecture JSON, packed weights, weight metadata.

The weights file is every array flattened to little-endian float32 and
concatenated; the metadata records where each one starts (byte offset)
and how many elements it holds, so the binder can rebuild zero-copy views.

    paths = save_artifacts(tmp_dir, model_config, {
        "dense_1": [("dense_1_W", W), ("dense_1_b", b)],
    })
    model = Model(filepaths=paths)
"""

import json
from pathlib import Path
from typing import Any

import numpy as np

from .weights import WeightMetadataEntry


LayerWeights = dict[str, list[tuple[str, np.ndarray]]]


def encode_weights(layers: LayerWeights) -> tuple[bytes, list[WeightMetadataEntry]]:
    """Pack weight arrays into one blob plus metadata entries."""
    blobs: list[bytes] = []
    metadata: list[WeightMetadataEntry] = []
    offset = 0
    for layer_name, weights in layers.items():
        for weight_name, array in weights:
            buf = np.ascontiguousarray(array, dtype="<f4")
            raw = buf.tobytes()
            metadata.append(WeightMetadataEntry(
                layer_name=layer_name,
                weight_name=weight_name,
                offset=offset,
                length=int(buf.size),
                shape=tuple(int(d) for d in buf.shape),
            ))
            blobs.append(raw)
            offset += len(raw)
    return b"".join(blobs), metadata


def save_artifacts(directory: str | Path, model_config: dict[str, Any],
                   layers: LayerWeights, stem: str = "model") -> dict[str, str]:
    """Write {stem}.json, {stem}_weights.buf, {stem}_metadata.json.

    Returns the filepaths mapping accepted by Model(filepaths=...).
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    blob, metadata = encode_weights(layers)

    paths = {
        "model": directory / f"{stem}.json",
        "weights": directory / f"{stem}_weights.buf",
        "metadata": directory / f"{stem}_metadata.json",
    }
    with open(paths["model"], "w") as f:
        json.dump(model_config, f, indent=2)
    paths["weights"].write_bytes(blob)
    with open(paths["metadata"], "w") as f:
        json.dump([entry.to_dict() for entry in metadata], f, indent=2)

    return {name: str(path) for name, path in paths.items()}
