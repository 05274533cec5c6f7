"""
Scope -- the tensor registry for one request.

A scope owns every tensor registered into it and whatever backend resources
back them. Backends subclass Scope and fill in the hooks at the bottom.
"""

import logging

from . import api
from .dag import build_dag
from .errors import AlreadyExistsError, InvalidArgumentError, NotFoundError, UnavailableError

logger = logging.getLogger(__name__)


class TensorRecord:
    """Registry entry: definition, derived dependencies, materialized state."""

    def __init__(self, definition):
        self.id = definition.id
        self.definition = definition
        self.dependencies = []
        if definition.computation is not None:
            self.dependencies = api.dependencies(definition.computation)
        self.dimensions = None
        self.computed = False
        # Backend-owned storage (numpy buffer or native handle)
        self.handle = None

    @property
    def operation(self):
        if self.definition.computation is None:
            return None
        return self.definition.computation.operation

    @property
    def is_inline(self):
        return self.definition.inline_data is not None

    def __repr__(self):
        return f'TensorRecord(id={self.id}, dimensions={self.dimensions}, computed={self.computed})'


class Scope:
    """Registry plus backend for a single calculation.

    Usage:
        with new_scope() as scope:
            response = evaluate(scope, request)
    """

    engine = None

    def __init__(self):
        self._tensors = {}
        self._closed = False

    # ── Registry ─────────────────────────────────────────────────────

    def register_tensors(self, definitions):
        """Add definitions to the registry.

        Stops at the first duplicate or invalid entry; entries before it stay
        registered. Dependencies are only resolved at evaluation time.
        """
        self._check_open()
        for definition in definitions:
            if definition.id in self._tensors:
                raise AlreadyExistsError(f'tensor {definition.id} already registered')
            record = TensorRecord(definition)
            if record.is_inline:
                data = definition.inline_data
                data.validate(definition.id)
                record.dimensions = data.shape
                self._register_inline(record, data)
                record.computed = True
            self._tensors[definition.id] = record
        logger.debug('%s scope: %d tensors registered', self.engine, len(self._tensors))

    def all_tensors(self):
        return list(self._tensors.values())

    def get_tensor(self, tensor_id):
        """Return the record for ``tensor_id``, or None."""
        return self._tensors.get(tensor_id)

    # ── Evaluation ───────────────────────────────────────────────────

    def evaluate(self, want_tensors):
        """Compute every reachable tensor; fail if any wanted id is unreachable."""
        self._check_open()
        order = build_dag(self.all_tensors(), want_tensors)
        pending = [self._tensors[i] for i in order if not self._tensors[i].computed]
        logger.debug('%s scope: evaluating %d of %d tensors', self.engine,
                     len(pending), len(order))
        if pending:
            self._evaluate_order(pending)

    def sources(self, record):
        """Resolve a computed record's operands, in operand order."""
        resolved = []
        for dep in record.dependencies:
            source = self._tensors.get(dep)
            if source is None:
                raise NotFoundError(f'source tensor {dep} not found',
                                    {'tensor': record.id})
            if source.handle is None:
                raise NotFoundError(f'source tensor {dep} has not been computed',
                                    {'tensor': record.id})
            resolved.append(source)
        return resolved

    def fetch_result(self, tensor_id):
        """Copy a materialized tensor out of the scope as an api.Tensor."""
        self._check_open()
        record = self._tensors.get(tensor_id)
        if record is None:
            raise NotFoundError(f'tensor {tensor_id} not found')
        if not record.computed:
            raise InvalidArgumentError(f'tensor {tensor_id} has not been evaluated')
        values = self._read_values(record)
        return api.Tensor(id=tensor_id,
                          inline_data=api.InlineData(list(record.dimensions), values))

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def closed(self):
        return self._closed

    def close(self):
        """Release backend resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._release()
        self._tensors = {}

    def _check_open(self):
        if self._closed:
            raise UnavailableError(f'{self.engine} scope is closed')

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # ── Backend hooks ────────────────────────────────────────────────

    def _register_inline(self, record, data):
        raise NotImplementedError

    def _evaluate_order(self, records):
        """Compute ``records``, which arrive in dependency order."""
        raise NotImplementedError

    def _read_values(self, record):
        """Return an owned flat float32 copy of ``record``'s data."""
        raise NotImplementedError

    def _release(self):
        pass
