"""Hand-off of a producer's result to a consuming layer.

Decides, per inbound edge, whether the consumer gets the producer's
tensor as-is, a host copy of an accelerated tensor, or a private
duplicate. Duplication on fan-out is what keeps sibling consumers from
ever observing each other's writes.

Rules, in order:
    1. accelerated result, and the consumer cannot take it (not pipeline
       enabled, or not all of its inputs are accelerated)
                                   -> producer downloads it to the host
    2. host result, shared          -> deep copy of the buffer
    3. accelerated result, shared   -> device-level copy of the handle
    4. otherwise                    -> pass the reference through
"""

from .layers import Layer
from .tensor import Backend, Tensor


def prepare_input(producer: Layer, result: Tensor, consumer: Layer,
                  shared: bool, all_accelerated: bool | None = None) -> Tensor:
    """Tensor the consumer should receive for one inbound edge.

    Args:
        producer: Layer that computed `result` (owns the device transfer).
        result: The producer's output.
        consumer: Layer about to be called.
        shared: The result is also read by another consumer.
        all_accelerated: Every input of the consumer is accelerated.
            Defaults to whether `result` itself is (single-input case).
    """
    accelerated = result.backend is Backend.ACCELERATED
    if all_accelerated is None:
        all_accelerated = accelerated

    if accelerated and (not consumer.pipeline_enabled or not all_accelerated):
        return producer.transfer_from_accelerated(result)
    if not accelerated and shared:
        return result.copy()
    if accelerated and shared:
        return result.accelerated_copy()
    return result


def prepare_inputs(producers: list[Layer], results: list[Tensor], consumer: Layer,
                   shared: list[bool]) -> list[Tensor]:
    """prepare_input applied independently to each inbound edge of a merge."""
    all_accelerated = all(r.backend is Backend.ACCELERATED for r in results)
    return [
        prepare_input(producer, result, consumer, is_shared, all_accelerated)
        for producer, result, is_shared in zip(producers, results, shared)
    ]
