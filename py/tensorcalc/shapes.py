"""
Operand validation shared by every backend.

Each function takes the operation and the dimensions of its resolved
operands (in operand order) and returns the output dimensions, or raises
InvalidArgumentError naming the offending shapes.
"""

import math

from . import api
from .errors import InvalidArgumentError, UnimplementedError


def _fmt(shape):
    return 'x'.join(str(d) for d in shape) or 'scalar'


def _require_count(op, shapes, n):
    if len(shapes) != n:
        raise InvalidArgumentError(
            f'{op.name} expects exactly {n} operand(s), got {len(shapes)}')


def _require_rank(op, shape, rank):
    if len(shape) != rank:
        raise InvalidArgumentError(
            f'{op.name} expects a {rank}-D operand, got shape {_fmt(shape)}')


def _same_size_1d(op, shapes):
    _require_count(op, shapes, 2)
    a, b = shapes
    _require_rank(op, a, 1)
    _require_rank(op, b, 1)
    if tuple(a) != tuple(b):
        raise InvalidArgumentError(
            f'{op.name} operands have mismatched shapes {_fmt(a)} and {_fmt(b)}')
    return tuple(a)


def _elementwise(op, shapes):
    _require_count(op, shapes, 1)
    return tuple(shapes[0])


def _rms_norm(op, shapes):
    if not math.isfinite(op.epsilon) or op.epsilon < 0:
        raise InvalidArgumentError(
            f'{op.name} epsilon must be a finite non-negative number, got {op.epsilon}')
    return _elementwise(op, shapes)


def _vector(op, shapes):
    _require_count(op, shapes, 1)
    _require_rank(op, shapes[0], 1)
    return tuple(shapes[0])


def _matmul(op, shapes):
    _require_count(op, shapes, 2)
    a, b = shapes
    _require_rank(op, a, 2)
    _require_rank(op, b, 2)
    if a[1] != b[0]:
        raise InvalidArgumentError(
            f'{op.name} inner dimensions do not match: {_fmt(a)} @ {_fmt(b)}')
    return (a[0], b[1])


_RULES = {
    api.LinearScale: _elementwise,
    api.RMSNorm: _rms_norm,
    api.DotMultiply: _same_size_1d,
    api.Add: _same_size_1d,
    api.MatrixMultiply: _matmul,
    api.Silu: _vector,
    api.Softmax: _vector,
}


def output_shape(operation, shapes):
    """Validate operand shapes for ``operation`` and return the output shape."""
    rule = _RULES.get(type(operation))
    if rule is None:
        raise UnimplementedError(f'unsupported operation: {operation!r}')
    return rule(operation, [tuple(s) for s in shapes])
