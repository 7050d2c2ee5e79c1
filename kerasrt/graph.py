"""Model graph: layer nodes connected by named inbound/outbound edges.

Node-centric design: every node owns exactly one layer and lists the
names of the nodes it reads from (inbound) and the nodes that read from
it (outbound). Input nodes hold an InputLayer and are never computed;
the model seeds their results before traversal.

`build_graph` turns a parsed architecture description into a graph.
Two description forms are accepted:

    Sequential          a list of layer specs; each layer reads the
                        previous one, and a synthetic "input" node
                        precedes the first.
    Model / Functional  named layer specs with explicit inbound_nodes.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Iterator

from . import activations
from .errors import GraphBuildError, UnknownLayerClassError
from .layers import LAYER_REGISTRY, WRAPPER_CLASSES, Layer
from .tensor import Tensor
from .weights import WeightMetadataEntry, bind_weights


logger = logging.getLogger(__name__)

SEQUENTIAL = "Sequential"
FUNCTIONAL = ("Model", "Functional")
INPUT_CLASS = "InputLayer"
SEQUENTIAL_INPUT_NAME = "input"

# Architecture field name -> constructor argument name
_KEY_ALIASES = {
    "units": "output_dim",
    "use_bias": "bias",
}

_TUPLE_KEYS = ("target_shape", "dims", "batch_input_shape")


@dataclass
class LayerNode:
    """One layer plus its edges in the graph."""
    name: str
    layer_class: str
    layer: Layer
    inbound: list[str] = field(default_factory=list)
    outbound: list[str] = field(default_factory=list)

    @property
    def is_input(self) -> bool:
        return self.layer_class == INPUT_CLASS


class ModelGraph:
    """Mapping from node name to LayerNode, plus the declared input names.

    Acyclicity is guaranteed by the architecture description and is not
    re-checked here; `topological_order()` raises if it is violated.
    """

    def __init__(self, kind: str = SEQUENTIAL) -> None:
        self.kind = kind
        self.nodes: dict[str, LayerNode] = {}
        self.inputs: list[str] = []

    # --- Builder methods ---

    def add_node(self, name: str, layer_class: str, layer: Layer) -> LayerNode:
        if name in self.nodes:
            raise GraphBuildError(f"Duplicate layer name: {name}")
        node = LayerNode(name=name, layer_class=layer_class, layer=layer)
        self.nodes[name] = node
        if node.is_input:
            self.inputs.append(name)
        return node

    def connect(self, src: str, dst: str) -> None:
        """Add an edge src -> dst."""
        for name in (src, dst):
            if name not in self.nodes:
                raise GraphBuildError(f"Edge {src} -> {dst} references unknown layer '{name}'")
        self.nodes[dst].inbound.append(src)
        self.nodes[src].outbound.append(dst)

    # --- Lookups ---

    def __getitem__(self, name: str) -> LayerNode:
        return self.nodes[name]

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def outputs(self) -> list[str]:
        """Nodes with no outbound edges, in insertion order."""
        return [name for name, node in self.nodes.items() if not node.outbound]

    @property
    def layers(self) -> dict[str, Layer]:
        return {name: node.layer for name, node in self.nodes.items()}

    def topological_order(self) -> list[str]:
        """Node names in Kahn order (inputs first)."""
        in_degree = {name: len(node.inbound) for name, node in self.nodes.items()}
        queue = deque(name for name, deg in in_degree.items() if deg == 0)
        order: list[str] = []
        while queue:
            name = queue.popleft()
            order.append(name)
            for dst in self.nodes[name].outbound:
                in_degree[dst] -= 1
                if in_degree[dst] == 0:
                    queue.append(dst)
        if len(order) != len(self.nodes):
            stuck = [n for n in self.nodes if n not in set(order)]
            raise GraphBuildError(f"Graph has cycles involving layers: {stuck}")
        return order

    def __iter__(self) -> Iterator[LayerNode]:
        for name in self.topological_order():
            yield self.nodes[name]

    # --- Summary ---

    def summary(self) -> str:
        """Human-readable summary of the graph structure."""
        class_counts = Counter(node.layer_class for node in self.nodes.values())
        classes_str = ", ".join(f"{c}: {n}" for c, n in class_counts.most_common())
        lines = [
            f"{self.kind} graph: {len(self.nodes)} layers "
            f"({len(self.inputs)} inputs, {len(self.outputs)} outputs)",
            f"  Layers:  {classes_str}",
            f"  Inputs:  {', '.join(self.inputs)}",
            f"  Outputs: {', '.join(self.outputs)}",
        ]
        return "\n".join(lines)

    def dump(self) -> str:
        """Full node-by-node listing in topological order."""
        lines = [self.summary(), ""]
        for node in self:
            backend = "accel" if node.layer.accelerate else "host"
            inbound = ", ".join(node.inbound) or "-"
            lines.append(
                f"  {node.name:<24} {node.layer_class:<20} <- {inbound} [{backend}]"
            )
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Architecture description -> layer constructor arguments
# ---------------------------------------------------------------------------

def translate_attrs(config: dict[str, Any]) -> dict[str, Any]:
    """Architecture field names/values -> constructor keyword arguments.

    Keys are converted to snake_case (so camelCase descriptions load the
    same way) and activation identifiers are resolved to internal names.
    """
    attrs: dict[str, Any] = {}
    for key, value in config.items():
        key = activations.snake_case(key)
        key = _KEY_ALIASES.get(key, key)
        if key in _TUPLE_KEYS and value is not None:
            value = tuple(value)
        attrs[key] = value
    for key in ("activation", "inner_activation"):
        if key in attrs:
            attrs[key] = activations.resolve(attrs[key])
    return attrs


def _input_shape(layer_name: str, attrs: dict[str, Any]) -> tuple[int, ...]:
    batch_shape = attrs.get("batch_input_shape")
    if batch_shape is None:
        raise GraphBuildError(f"Layer '{layer_name}' declares no batch_input_shape")
    shape = batch_shape[1:]
    if any(d is None for d in shape):
        raise GraphBuildError(
            f"Input shape of '{layer_name}' must be fully defined, got {shape}"
        )
    return tuple(int(d) for d in shape)


def _layer_class(spec: dict[str, Any]) -> str:
    layer_class = spec.get("class_name")
    if layer_class not in LAYER_REGISTRY:
        name = (spec.get("config") or {}).get("name")
        raise UnknownLayerClassError(str(layer_class), name)
    return layer_class


def _forward_name(name: str) -> str:
    return name if name.startswith("forward") else f"forward_{name}"


def construct_layer(spec: dict[str, Any], accelerate: bool = False,
                    pipeline: bool = False) -> tuple[Layer, list[str]]:
    """Instantiate a layer from its spec.

    Returns the layer and the weight names to look up in the metadata
    (for wrappers, the inner layer's params namespaced under its name).
    """
    layer_class = _layer_class(spec)
    config = dict(spec.get("config") or {})
    attrs = translate_attrs({k: v for k, v in config.items() if k != "layer"})
    attrs.setdefault("name", spec.get("name", ""))
    name = attrs["name"]

    if layer_class not in WRAPPER_CLASSES:
        if layer_class == INPUT_CLASS:
            attrs["shape"] = _input_shape(name, attrs)
        layer = LAYER_REGISTRY[layer_class](accelerate=accelerate, pipeline=pipeline, **attrs)
        return layer, [f"{name}_{param}" for param in layer.params]

    inner_spec = config.get("layer")
    if not inner_spec:
        raise GraphBuildError(f"Wrapper layer '{name}' has no inner layer spec")
    inner_config = dict(inner_spec.get("config") or {})

    if layer_class == "Bidirectional":
        forward_name = _forward_name(inner_config.get("name", name))
        backward_name = forward_name.replace("forward", "backward", 1)
        forward_spec = {
            "class_name": inner_spec.get("class_name"),
            "config": dict(inner_config, name=forward_name),
        }
        backward_spec = {
            "class_name": inner_spec.get("class_name"),
            "config": dict(inner_config, name=backward_name,
                           go_backwards=not inner_config.get("go_backwards", False)),
        }
        # Inner layers follow the backend preference but never pipeline: the
        # wrapper consumes their results on the host.
        forward_layer, forward_weights = construct_layer(forward_spec, accelerate)
        backward_layer, backward_weights = construct_layer(backward_spec, accelerate)
        layer = LAYER_REGISTRY[layer_class](
            forward_layer=forward_layer, backward_layer=backward_layer,
            accelerate=accelerate, pipeline=pipeline, **attrs,
        )
        return layer, forward_weights + backward_weights

    inner_layer, inner_weights = construct_layer(inner_spec, accelerate)
    layer = LAYER_REGISTRY[layer_class](
        layer=inner_layer, accelerate=accelerate, pipeline=pipeline, **attrs,
    )
    return layer, inner_weights


def _add_layer(graph: ModelGraph, spec: dict[str, Any],
               metadata: list[WeightMetadataEntry], weights: bytes | memoryview,
               accelerate: bool, pipeline: bool) -> LayerNode:
    layer, weight_names = construct_layer(spec, accelerate, pipeline)
    if weight_names:
        layer.set_weights(bind_weights(layer.name, weight_names, metadata, weights))
    logger.debug("built %s '%s' (%d weights)", spec["class_name"], layer.name, len(weight_names))
    return graph.add_node(layer.name, spec["class_name"], layer)


def _layer_specs(model_config: dict[str, Any]) -> list[dict[str, Any]]:
    config = model_config.get("config")
    if isinstance(config, dict):
        config = config.get("layers")
    if not config:
        raise GraphBuildError("Model configuration declares no layers")
    return list(config)


def build_graph(model_config: dict[str, Any], metadata: list[WeightMetadataEntry],
                weights: bytes | memoryview, accelerate: bool = False,
                pipeline: bool = False) -> tuple[ModelGraph, dict[str, Tensor]]:
    """Build the layer graph and the input placeholder tensors.

    Args:
        model_config: Parsed architecture description.
        metadata: Weight metadata entries.
        weights: Raw weight buffer shared by every layer's weight views.
        accelerate: Construct layers with the accelerated backend enabled.
        pipeline: Keep accelerated results on the device between layers.

    Returns:
        (graph, input_tensors) where input_tensors maps each input name to
        an empty placeholder of the declared input shape.

    Raises:
        UnknownLayerClassError: A spec names an unsupported class.
        MissingWeightError: A weight slot has zero or several metadata entries.
        GraphBuildError: The description is otherwise malformed.
    """
    model_class = model_config.get("class_name")
    specs = _layer_specs(model_config)
    input_tensors: dict[str, Tensor] = {}

    if model_class == SEQUENTIAL:
        graph = ModelGraph(SEQUENTIAL)
        first = specs[0]
        if _layer_class(first) == INPUT_CLASS:
            specs = specs[1:]
        shape = _input_shape(SEQUENTIAL_INPUT_NAME, translate_attrs(first.get("config") or {}))
        graph.add_node(SEQUENTIAL_INPUT_NAME, INPUT_CLASS,
                       LAYER_REGISTRY[INPUT_CLASS](name=SEQUENTIAL_INPUT_NAME, shape=shape))
        input_tensors[SEQUENTIAL_INPUT_NAME] = Tensor.placeholder(shape)

        prev = SEQUENTIAL_INPUT_NAME
        for spec in specs:
            node = _add_layer(graph, spec, metadata, weights, accelerate, pipeline)
            graph.connect(prev, node.name)
            prev = node.name

    elif model_class in FUNCTIONAL:
        graph = ModelGraph(model_class)
        inbound_refs: dict[str, list[str]] = {}
        for spec in specs:
            node = _add_layer(graph, spec, metadata, weights, accelerate, pipeline)
            if node.is_input:
                input_tensors[node.name] = Tensor.placeholder(node.layer.shape)
            inbound_nodes = spec.get("inbound_nodes") or []
            inbound_refs[node.name] = [ref[0] for ref in inbound_nodes[0]] if inbound_nodes else []
        # Edges are added after every node exists, so spec order does not matter
        for name, refs in inbound_refs.items():
            for ref in refs:
                graph.connect(ref, name)

    else:
        raise UnknownLayerClassError(str(model_class))

    logger.info("built %s", graph.summary().splitlines()[0])
    return graph, input_tensors
