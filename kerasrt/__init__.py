from .errors import (  # noqa: F401
    KerasRTError,
    ConfigurationError,
    ArtifactLoadError,
    GraphBuildError,
    UnknownLayerClassError,
    UnknownActivationError,
    MissingWeightError,
    InvalidInputError,
    ModelBusyError,
)
from .graph import LayerNode, ModelGraph, build_graph  # noqa: F401
from .model import Model  # noqa: F401
from .tensor import Backend, Tensor  # noqa: F401
from .weights import WeightMetadataEntry, bind_weights  # noqa: F401

__version__ = "0.1.0"
