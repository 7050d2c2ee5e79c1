"""Model: the user-facing API for loading a model and running inference.

Wraps artifact fetching, graph building, weight binding and traversal
behind a ready/predict interface.

    model = Model(filepaths={
        "model": "model.json",
        "weights": "model_weights.buf",
        "metadata": "model_metadata.json",
    })
    await model.ready()
    outputs = await model.predict({"input": np.zeros(784, dtype=np.float32)})

    # Accelerated layers keep their results on the device between layers:
    model = Model(filepaths=paths, accelerate=True, pipeline=True)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import numpy as np

from .errors import ConfigurationError, InvalidInputError, ModelBusyError
from .graph import SEQUENTIAL, ModelGraph, build_graph
from .layers import Layer
from .loader import ArtifactLoader, Artifacts, validate_filepaths
from .scheduler import Scheduler
from .tensor import Backend, Tensor


logger = logging.getLogger(__name__)

SEQUENTIAL_OUTPUT_NAME = "output"


class Model:
    """A pretrained network loaded from model/weights/metadata artifacts.

    Args:
        filepaths: {"model", "weights", "metadata"} -> URL or local path.
            All three are required.
        headers: Extra HTTP headers for URL fetches.
        accelerate: Run layers that support it on the accelerated backend.
        pipeline: Keep accelerated results on the device between layers
            (requires accelerate).
        yield_between_layers: Yield to the event loop after every layer.
        verbose: Print the graph summary once it is built.

    Raises:
        ConfigurationError: Missing filepaths, or pipeline without accelerate.

    predict() calls must not overlap: per-node results are shared state.
    """

    def __init__(
        self,
        filepaths: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        accelerate: bool = False,
        pipeline: bool = False,
        yield_between_layers: bool = False,
        verbose: bool = False,
    ) -> None:
        self.filepaths = validate_filepaths(filepaths)
        if pipeline and not accelerate:
            raise ConfigurationError("pipeline mode requires accelerate=True")

        self.headers = dict(headers or {})
        self.accelerate = accelerate
        self.pipeline = pipeline
        self.yield_between_layers = yield_between_layers
        self.verbose = verbose

        self.loader = ArtifactLoader(self.filepaths, self.headers)
        self.data: Artifacts | None = None
        self.graph: ModelGraph | None = None
        # Input name -> tensor holding the most recent input data
        self.input_tensors: dict[str, Tensor] = {}
        self._scheduler: Scheduler | None = None
        self._ready: asyncio.Future | None = None
        self.is_running = False

    # --- Loading ---

    async def ready(self) -> Model:
        """Load artifacts and build the graph (once). Returns self.

        Raises:
            ArtifactLoadError, UnknownLayerClassError, MissingWeightError,
            GraphBuildError: Loading or building failed.
        """
        if self._ready is None:
            self._ready = asyncio.ensure_future(self._initialize())
        await self._ready
        return self

    async def _initialize(self) -> None:
        try:
            self.data = await self.loader.load()
        except Exception:
            logger.exception("failed to load model artifacts")
            raise
        self.graph, self.input_tensors = build_graph(
            self.data.model, self.data.metadata, self.data.weights,
            accelerate=self.accelerate, pipeline=self.pipeline,
        )
        self._scheduler = Scheduler(self.graph, self.yield_between_layers)
        if self.verbose:
            print(self.graph.summary())
            print()

    @property
    def loading_progress(self) -> int:
        """Load progress in percent, averaged over the three artifacts."""
        return self.loader.progress

    @property
    def is_ready(self) -> bool:
        return self.graph is not None

    @property
    def layers(self) -> dict[str, Layer]:
        return self.graph.layers if self.graph is not None else {}

    @property
    def layers_with_results(self) -> list[str]:
        """Computed layers of the last predict() call, in completion order."""
        if self._scheduler is None:
            return []
        return list(self._scheduler.trace.order)

    @property
    def input_names(self) -> list[str]:
        return sorted(self.input_tensors)

    # --- Backend ---

    def toggle_acceleration(self, enabled: bool | None = None) -> None:
        """Set (or flip, if no argument) the accelerated-backend preference."""
        self.accelerate = (not self.accelerate) if enabled is None else bool(enabled)
        for layer in self.layers.values():
            layer.toggle_acceleration(self.accelerate)

    # --- Inference ---

    def _validate_inputs(self, inputs: dict[str, Any]) -> None:
        """Check names, types, and sizes without touching any state."""
        names = self.input_names
        if not isinstance(inputs, dict) or set(inputs) != set(names):
            got = sorted(map(repr, inputs)) if isinstance(inputs, dict) else type(inputs).__name__
            raise InvalidInputError(
                "predict() must take a dict keyed by the named inputs of the model",
                context={"expected": names, "got": got},
            )
        for name in names:
            value = inputs[name]
            if not isinstance(value, np.ndarray) or value.dtype != np.float32 or value.ndim != 1:
                raise InvalidInputError(
                    "predict() input values must be flat float32 numpy arrays",
                    context={"input": name},
                )
            expected = self.input_tensors[name].size
            if value.size != expected:
                raise InvalidInputError(
                    f"Input '{name}' expects {expected} values, got {value.size}",
                    context={"shape": self.input_tensors[name].shape},
                )

    async def predict(self, inputs: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        """Run inference.

        Args:
            inputs: Input name -> flat float32 array. Keys must equal the
                model's input names exactly.

        Returns:
            Output name -> flat float32 array. Sequential models return
            the single key "output"; graph models key by output layer name.

        Raises:
            RuntimeError: ready() has not completed.
            ModelBusyError: Another predict() is in flight.
            InvalidInputError: Bad input names, types, or sizes.
        """
        if self._scheduler is None:
            raise RuntimeError("Model not ready: await ready() first")
        if self.is_running:
            raise ModelBusyError("predict() is already running on this model")
        self._validate_inputs(inputs)

        self.is_running = True
        try:
            scheduler = self._scheduler
            scheduler.reset()
            for name in self.graph.inputs:
                tensor = self.input_tensors[name].replace_buffer(inputs[name])
                self.input_tensors[name] = tensor
                scheduler.seed(name, self.graph[name].layer.call(tensor))

            await scheduler.run(self.graph.inputs)
            return self._collect_outputs()
        finally:
            self.is_running = False

    def _collect_outputs(self) -> dict[str, np.ndarray]:
        outputs = {}
        for name in self.graph.outputs:
            result = self._scheduler.result(name)
            if result.backend is Backend.ACCELERATED:
                result = self.graph[name].layer.transfer_from_accelerated(result)
            outputs[name] = result.buffer.copy()

        if self.graph.kind == SEQUENTIAL:
            return {SEQUENTIAL_OUTPUT_NAME: next(iter(outputs.values()))}
        return outputs
