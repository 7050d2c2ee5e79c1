"""Dependency-ordered execution of a ModelGraph.

Each node carries a pending-inbound counter. Seeded input nodes release
their consumers; a consumer whose counter reaches zero has all of its
inbound results and is dispatched. Independent branches run as
interleaved asyncio coroutines on one thread. There is no suspension
inside a layer call, so a node only ever reads results that are final.

Per-node state (result, has_result, visited) lives here, not on the
layers, and is rebuilt by reset() at the start of every run.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from .graph import ModelGraph
from .tensor import Tensor
from .transfer import prepare_input, prepare_inputs


logger = logging.getLogger(__name__)


@dataclass
class NodeState:
    """Execution state of one node for one run.

    has_result and visited are set together, once, when the node completes.
    """
    pending: int
    has_result: bool = False
    visited: bool = False
    result: Tensor | None = None


@dataclass
class RunTrace:
    """Order in which nodes completed during the last run."""
    order: list[str] = field(default_factory=list)
    computed: dict[str, int] = field(default_factory=dict)

    def record(self, name: str) -> None:
        self.order.append(name)
        self.computed[name] = self.computed.get(name, 0) + 1


class Scheduler:
    """Computes every node of a graph exactly once per run.

    Args:
        graph: The graph to execute.
        yield_between_layers: Yield to the event loop after each node, so
            other coroutines can interleave with a long traversal.
    """

    def __init__(self, graph: ModelGraph, yield_between_layers: bool = False) -> None:
        self.graph = graph
        self.yield_between_layers = yield_between_layers
        self.states: dict[str, NodeState] = {}
        self.trace = RunTrace()
        self.reset()

    def reset(self) -> None:
        """Fresh state for every node: nothing computed, nothing visited."""
        self.states = {
            name: NodeState(pending=len(node.inbound))
            for name, node in self.graph.nodes.items()
        }
        self.trace = RunTrace()

    def seed(self, name: str, result: Tensor) -> None:
        """Mark an input node computed with the given result."""
        state = self.states[name]
        state.result = result
        state.has_result = True
        state.visited = True

    def result(self, name: str) -> Tensor:
        state = self.states[name]
        if not state.has_result:
            raise RuntimeError(f"Layer '{name}' has no result")
        return state.result

    async def run(self, sources: list[str]) -> None:
        """Traverse the graph from the seeded source nodes to completion."""
        for name in sources:
            if not self.states[name].has_result:
                raise RuntimeError(f"Input '{name}' was not seeded")
        await asyncio.gather(*(self._release(name) for name in sources))

        stuck = [name for name, s in self.states.items() if not s.has_result]
        if stuck:
            raise RuntimeError(f"Layers never became ready: {stuck}")

    async def _release(self, name: str) -> None:
        """Count one completed dependency for each consumer of `name`."""
        ready = []
        for dst in self.graph.nodes[name].outbound:
            state = self.states[dst]
            state.pending -= 1
            if state.pending == 0:
                ready.append(dst)
        if len(ready) == 1:
            await self._visit(ready[0])
        elif ready:
            await asyncio.gather(*(self._visit(dst) for dst in ready))

    async def _visit(self, name: str) -> None:
        state = self.states[name]
        if state.visited:
            return
        node = self.graph.nodes[name]

        state.result = self._compute(name)
        state.has_result = True
        state.visited = True
        self.trace.record(name)
        logger.debug("computed %s (%s)", name, node.layer_class)

        if self.yield_between_layers:
            await asyncio.sleep(0)
        await self._release(name)

    def _compute(self, name: str) -> Tensor:
        """Hand inbound results to the layer and call it."""
        node = self.graph.nodes[name]
        inbound = [self.graph.nodes[src] for src in node.inbound]
        results = [self.result(src.name) for src in inbound]
        # Copy only on real fan-out; a single consumer gets the reference
        shared = [len(src.outbound) > 1 for src in inbound]
        layer = node.layer

        if layer.multi_input:
            inputs = prepare_inputs([src.layer for src in inbound], results, layer, shared)
            return layer.call(inputs)
        if len(inbound) != 1:
            raise RuntimeError(
                f"Layer '{name}' ({node.layer_class}) takes one input, "
                f"got {len(inbound)}"
            )
        x = prepare_input(inbound[0].layer, results[0], layer, shared[0])
        return layer.call(x)
