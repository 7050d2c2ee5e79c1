"""Error taxonomy for model loading and inference.

Construction errors (ConfigurationError) are raised synchronously by
Model(). Load and build errors surface from Model.ready(). Input errors
from predict() are recoverable: no engine state is touched before the
inputs are validated.

    KerasRTError
    ├── ConfigurationError
    ├── ArtifactLoadError
    ├── GraphBuildError
    │   ├── UnknownLayerClassError
    │   ├── UnknownActivationError
    │   └── MissingWeightError
    ├── InvalidInputError
    └── ModelBusyError
"""

from typing import Any


class KerasRTError(Exception):
    """Base class for all kerasrt errors.

    Attributes:
        message: Human-readable error message.
        context: Extra key/value details, appended to the rendered message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ConfigurationError(KerasRTError):
    """Bad or missing constructor arguments."""


class ArtifactLoadError(KerasRTError):
    """Model, weights, or metadata could not be fetched."""

    def __init__(self, artifact: str, cause: BaseException) -> None:
        self.artifact = artifact
        self.cause = cause
        super().__init__(
            f"Failed to load {artifact}: {cause}",
            context={"artifact": artifact},
        )


class GraphBuildError(KerasRTError):
    """The architecture description could not be turned into a graph."""


class UnknownLayerClassError(GraphBuildError):
    """A layer spec names a class that is not in the layer registry."""

    def __init__(self, layer_class: str, layer_name: str | None = None) -> None:
        self.layer_class = layer_class
        context = {"layer": layer_name} if layer_name else None
        super().__init__(
            f"Layer class '{layer_class}' specified in model configuration "
            f"is not implemented",
            context=context,
        )


class UnknownActivationError(GraphBuildError):
    """An activation identifier could not be resolved."""


class MissingWeightError(GraphBuildError):
    """Zero or several metadata entries match a declared weight slot."""

    def __init__(self, layer_name: str, weight_name: str, matches: int) -> None:
        self.layer_name = layer_name
        self.weight_name = weight_name
        self.matches = matches
        reason = "no matching entry" if matches == 0 else f"{matches} ambiguous entries"
        super().__init__(
            f"Error loading weight '{weight_name}' for layer '{layer_name}': {reason}",
        )


class InvalidInputError(KerasRTError):
    """predict() was called with the wrong input names, types, or sizes."""


class ModelBusyError(KerasRTError):
    """predict() was called while another predict() is still in flight."""
