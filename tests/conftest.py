"""Shared fixtures and helpers for the test suite.

pytest discovers conftest.py automatically; fixtures defined here are
available to all test files in this directory without explicit imports.
Helpers (spec builders, load_model, predict) are imported explicitly.
"""

import asyncio
from collections import Counter

import numpy as np
import pytest

from kerasrt import Model
from kerasrt.encoder import save_artifacts


# ---------------------------------------------------------------------------
# Architecture spec builders
# ---------------------------------------------------------------------------

def dense(name, output_dim, activation="linear", input_dim=None, bias=True):
    config = {"name": name, "output_dim": output_dim, "activation": activation,
              "bias": bias, "trainable": True}
    if input_dim is not None:
        config["input_dim"] = input_dim
        config["batch_input_shape"] = [None, input_dim]
    return {"class_name": "Dense", "config": config}


def input_layer(name, shape):
    return {
        "class_name": "InputLayer",
        "name": name,
        "config": {"name": name, "batch_input_shape": [None, *shape]},
        "inbound_nodes": [],
    }


def node(spec, *inbound):
    """Functional-form spec: attach inbound_nodes references."""
    spec = dict(spec)
    spec["name"] = spec["config"]["name"]
    spec["inbound_nodes"] = [[[name, 0, 0] for name in inbound]] if inbound else []
    return spec


def merge(name, mode="sum", concat_axis=-1):
    return {"class_name": "Merge",
            "config": {"name": name, "mode": mode, "concat_axis": concat_axis}}


def sequential(*specs):
    return {"class_name": "Sequential", "config": list(specs)}


def functional(*specs):
    return {"class_name": "Model", "config": {"name": "model", "layers": list(specs)}}


def dense_weights(name, W, b=None):
    weights = [(f"{name}_W", np.asarray(W, dtype=np.float32))]
    if b is not None:
        weights.append((f"{name}_b", np.asarray(b, dtype=np.float32)))
    return weights


def random_dense(name, n_in, n_out, rng):
    W = rng.standard_normal((n_in, n_out)).astype(np.float32)
    b = rng.standard_normal(n_out).astype(np.float32)
    return W, b


# ---------------------------------------------------------------------------
# Model helpers
# ---------------------------------------------------------------------------

def load_model(directory, model_config, weights, **options):
    """Write artifacts to `directory` and return a ready Model."""
    paths = save_artifacts(directory, model_config, weights)
    model = Model(filepaths=paths, **options)
    asyncio.run(model.ready())
    return model


def predict(model, inputs):
    return asyncio.run(model.predict(inputs))


def count_calls(model):
    """Wrap every layer's call() to count invocations. Returns the Counter."""
    counts = Counter()
    for name, layer in model.layers.items():
        original = layer.call

        def counted(x, _name=name, _original=original):
            counts[_name] += 1
            return _original(x)

        layer.call = counted
    return counts


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture(params=["host", "accelerated", "pipeline"])
def backend_options(request):
    """Parametrized fixture: tests using this run once per backend mode."""
    if request.param == "host":
        return {}
    if request.param == "accelerated":
        return {"accelerate": True}
    return {"accelerate": True, "pipeline": True}
