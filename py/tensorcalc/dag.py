"""Evaluation ordering over a scope's registered tensors."""

import logging

from .errors import NotFoundError

logger = logging.getLogger(__name__)


def build_dag(tensors, want_tensors):
    """Return an evaluation order for every tensor whose dependencies resolve.

    Repeats full passes over ``tensors`` (in ascending id order), marking a
    tensor done once all of its dependencies are done, until a pass makes no
    progress. Tensors in a cycle, or depending on an id that was never
    registered, are never marked done. The order covers the whole registered
    graph, not just the ancestors of ``want_tensors``.

    Raises NotFoundError if any wanted id is not covered.
    """
    tensors = sorted(tensors, key=lambda t: t.id)
    order = []
    done = set()

    while True:
        progress = False
        for tensor in tensors:
            if tensor.id in done:
                continue
            if all(dep in done for dep in tensor.dependencies):
                done.add(tensor.id)
                order.append(tensor.id)
                progress = True
        if not progress:
            break

    for tensor_id in want_tensors:
        if tensor_id not in done:
            raise NotFoundError(
                f'tensor {tensor_id} could not be computed (unreachable in computation graph)')

    if len(order) < len(tensors):
        logger.debug('%d of %d tensors unreachable', len(tensors) - len(order), len(tensors))
    return order
