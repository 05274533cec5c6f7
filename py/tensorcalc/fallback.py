"""
Reference backend -- numpy kernels over host float32 buffers.

Strictly sequential. Also serves as the oracle the accelerated backend is
checked against.
"""

import math

import numpy as np

from . import api, config, shapes
from .errors import UnimplementedError
from .scope import Scope


# --- Kernels ---

def linear_scale(op, x):
    return x * np.float32(op.scale)


def rms_norm(op, x):
    epsilon = op.epsilon or config.DEFAULT_EPSILON
    x64 = x.astype(np.float64)
    mean_square = float(np.mean(x64 * x64))
    factor = 1.0 / math.sqrt(mean_square + epsilon)
    return x64 * factor


def dot_multiply(op, a, b):
    return a * b


def add(op, a, b):
    return a + b


def matrix_multiply(op, a, b):
    return np.matmul(a.astype(np.float64), b.astype(np.float64))


def silu(op, x):
    x64 = x.astype(np.float64)
    return x64 / (1.0 + np.exp(-x64))


def softmax(op, x):
    x64 = x.astype(np.float64)
    e = np.exp(x64 - np.max(x64))
    return e / np.sum(e)


KERNELS = {
    api.LinearScale: linear_scale,
    api.RMSNorm: rms_norm,
    api.DotMultiply: dot_multiply,
    api.Add: add,
    api.MatrixMultiply: matrix_multiply,
    api.Silu: silu,
    api.Softmax: softmax,
}


class FallbackScope(Scope):
    """Scope evaluated by the reference kernels."""

    engine = 'fallback'

    def _register_inline(self, record, data):
        record.handle = self._freeze(data.values)

    def _evaluate_order(self, records):
        for record in records:
            self._evaluate_tensor(record)

    def _evaluate_tensor(self, record):
        op = record.operation
        kernel = KERNELS.get(type(op))
        if kernel is None:
            raise UnimplementedError(f'unsupported operation: {op!r}', {'tensor': record.id})
        sources = self.sources(record)
        out_shape = shapes.output_shape(op, [s.dimensions for s in sources])
        operands = [s.handle.reshape(s.dimensions) for s in sources]
        out = kernel(op, *operands)
        record.handle = self._freeze(np.asarray(out, dtype=np.float32).reshape(-1))
        record.dimensions = out_shape
        record.computed = True

    def _read_values(self, record):
        return record.handle.copy()

    def _release(self):
        for record in self._tensors.values():
            record.handle = None

    @staticmethod
    def _freeze(values):
        buf = np.array(values, dtype=np.float32, copy=True)
        buf.flags.writeable = False
        return buf
