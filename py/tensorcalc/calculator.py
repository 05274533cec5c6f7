"""Calculate request handler: one scope per request."""

import logging
import time

from .engines import new_scope
from .errors import CalculationError
from .evaluate import evaluate

logger = logging.getLogger(__name__)


class Calculator:
    """Serves Calculate calls on a fixed engine.

    Holds no per-request state, so one instance can serve concurrent callers.
    """

    def __init__(self, engine=None):
        self.engine = engine

    def calculate(self, request):
        started = time.perf_counter()
        with new_scope(self.engine) as scope:
            try:
                response = evaluate(scope, request)
            except CalculationError as e:
                logger.info('calculate failed on %s: %s %s', scope.engine, e.code, e.message)
                raise
        logger.info('calculate on %s: %d tensors, %d outputs in %.2f ms', scope.engine,
                    len(request.tensors), len(response.results),
                    (time.perf_counter() - started) * 1e3)
        return response
