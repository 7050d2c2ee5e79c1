"""Layer kinds and the registry the graph builder dispatches through.

Adding a layer kind: subclass Layer and add it to LAYER_REGISTRY under
the class identifier used in architecture files.
"""

from .base import Layer
from .core import (
    InputLayer, Dense, Activation, Dropout, Flatten, Reshape, Permute, RepeatVector,
)
from .merge import Merge
from .normalization import BatchNormalization
from .recurrent import SimpleRNN
from .wrappers import Bidirectional, TimeDistributed


LAYER_REGISTRY: dict[str, type[Layer]] = {
    "InputLayer": InputLayer,
    "Dense": Dense,
    "Activation": Activation,
    "Dropout": Dropout,
    "Flatten": Flatten,
    "Reshape": Reshape,
    "Permute": Permute,
    "RepeatVector": RepeatVector,
    "BatchNormalization": BatchNormalization,
    "SimpleRNN": SimpleRNN,
    "Merge": Merge,
    "Bidirectional": Bidirectional,
    "TimeDistributed": TimeDistributed,
}

WRAPPER_CLASSES = frozenset({"Bidirectional", "TimeDistributed"})
