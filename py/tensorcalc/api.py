"""
Request/response types for the Calculate call.

The transport layer hands us already-decoded structures; these classes are
the decoded form. ``from_dict``/``to_dict`` convert to and from the
snake_case JSON rendering of the same messages.
"""

from dataclasses import dataclass, field

import numpy as np

from .errors import InvalidArgumentError


def _require(d, key, where):
    if not isinstance(d, dict):
        raise InvalidArgumentError(f'{where} must be an object, got {type(d).__name__}')
    if key not in d:
        raise InvalidArgumentError(f'{where} is missing {key!r}')
    return d[key]


def _as_id(value, where):
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f'{where} must be an integer tensor id, got {value!r}')
    return value


# --- Data ---

@dataclass(eq=False)
class InlineData:
    """Materialized tensor data, row-major.

    An empty ``dimensions`` list means a vector of ``len(values)`` elements.
    """
    dimensions: list = field(default_factory=list)
    values: np.ndarray = None

    def __post_init__(self):
        try:
            self.dimensions = [int(d) for d in self.dimensions]
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(f'inline dimensions are not integers: {e}')
        try:
            self.values = np.array(
                [] if self.values is None else self.values, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(f'inline values are not numeric: {e}')

    @property
    def shape(self):
        """Effective dimensions, with the empty-dimensions vector form resolved."""
        if not self.dimensions:
            return (len(self.values),)
        return tuple(self.dimensions)

    def validate(self, tensor_id):
        if len(self.values) == 0:
            raise InvalidArgumentError(f'tensor {tensor_id} has no elements')
        if any(d <= 0 for d in self.dimensions):
            raise InvalidArgumentError(
                f'tensor {tensor_id} has non-positive dimensions {self.dimensions}')
        n = int(np.prod(self.shape))
        if n != len(self.values):
            raise InvalidArgumentError(
                f'tensor {tensor_id} has dimensions {list(self.shape)} '
                f'({n} elements) but {len(self.values)} values')

    def numpy(self):
        return self.values.reshape(self.shape)

    @staticmethod
    def from_dict(d):
        if not isinstance(d, dict):
            raise InvalidArgumentError('inline_data must be an object')
        return InlineData(dimensions=d.get('dimensions', []), values=d.get('values', []))

    def to_dict(self):
        return {'dimensions': list(self.dimensions), 'values': self.values.tolist()}


# --- Operations ---

class _UnaryOp:
    @property
    def sources(self):
        return [self.source]


class _NaryOp:
    pass


@dataclass
class LinearScale(_UnaryOp):
    source: int
    scale: float = 0.0
    name = 'linear_scale'


@dataclass
class RMSNorm(_UnaryOp):
    source: int
    epsilon: float = 0.0
    name = 'rms_norm'


@dataclass
class DotMultiply(_NaryOp):
    sources: list
    name = 'dot_multiply'


@dataclass
class Add(_NaryOp):
    sources: list
    name = 'add'


@dataclass
class MatrixMultiply(_NaryOp):
    sources: list
    name = 'matrix_multiply'


@dataclass
class Silu(_UnaryOp):
    source: int
    name = 'silu'


@dataclass
class Softmax(_UnaryOp):
    source: int
    name = 'softmax'


OPERATIONS = {op.name: op for op in
              (LinearScale, RMSNorm, DotMultiply, Add, MatrixMultiply, Silu, Softmax)}

_FLOAT_FIELDS = {'scale', 'epsilon'}


def _operation_from_dict(name, d):
    cls = OPERATIONS[name]
    where = f'operation {name}'
    if issubclass(cls, _UnaryOp):
        kwargs = {'source': _as_id(_require(d, 'source', where), f'{where} source')}
    else:
        sources = _require(d, 'sources', where)
        if not isinstance(sources, list):
            raise InvalidArgumentError(f'{where} sources must be a list')
        kwargs = {'sources': [_as_id(s, f'{where} source') for s in sources]}
    for key in _FLOAT_FIELDS:
        if key in d and key in cls.__dataclass_fields__:
            try:
                kwargs[key] = float(d[key])
            except (TypeError, ValueError):
                raise InvalidArgumentError(f'{where} {key} must be a number, got {d[key]!r}')
    return cls(**kwargs)


@dataclass
class TensorOperation:
    """Wrapper holding exactly one operation payload."""
    operation: object

    @property
    def dependencies(self):
        return dependencies(self)

    @staticmethod
    def from_dict(d):
        if not isinstance(d, dict) or len(d) != 1:
            raise InvalidArgumentError(
                f'computation must hold exactly one operation, got {d!r}')
        (name, payload), = d.items()
        if name not in OPERATIONS:
            raise InvalidArgumentError(f'unknown operation {name!r}')
        return TensorOperation(_operation_from_dict(name, payload))

    def to_dict(self):
        op = self.operation
        body = {k: getattr(op, k) for k in op.__dataclass_fields__}
        return {op.name: body}


def dependencies(computation):
    """Ids this computation reads, in operand order."""
    operation = computation.operation
    if isinstance(operation, (_UnaryOp, _NaryOp)):
        return list(operation.sources)
    raise InvalidArgumentError(f'unsupported operation: {operation!r}')


# --- Tensors ---

@dataclass(eq=False)
class TensorDefinition:
    """One entry of a request: a leaf with data, or a computed node."""
    id: int
    inline_data: InlineData = None
    computation: TensorOperation = None

    def __post_init__(self):
        _as_id(self.id, 'tensor id')
        if (self.inline_data is None) == (self.computation is None):
            raise InvalidArgumentError(
                f'tensor {self.id} must have exactly one of inline_data or computation')

    @staticmethod
    def from_dict(d):
        tensor_id = _require(d, 'id', 'tensor')
        inline = d.get('inline_data')
        computation = d.get('computation')
        return TensorDefinition(
            id=tensor_id,
            inline_data=InlineData.from_dict(inline) if inline is not None else None,
            computation=TensorOperation.from_dict(computation) if computation is not None else None)

    def to_dict(self):
        d = {'id': self.id}
        if self.inline_data is not None:
            d['inline_data'] = self.inline_data.to_dict()
        else:
            d['computation'] = self.computation.to_dict()
        return d


@dataclass(eq=False)
class Tensor:
    """A result tensor: id plus materialized data."""
    id: int
    inline_data: InlineData = None

    def numpy(self):
        return self.inline_data.numpy()

    def to_dict(self):
        return {'id': self.id, 'inline_data': self.inline_data.to_dict()}


@dataclass(eq=False)
class CalculateRequest:
    tensors: list = field(default_factory=list)
    output_tensor_ids: list = field(default_factory=list)

    @staticmethod
    def from_dict(d):
        if not isinstance(d, dict):
            raise InvalidArgumentError('request must be an object')
        tensors = d.get('tensors', [])
        outputs = d.get('output_tensor_ids', [])
        if not isinstance(tensors, list) or not isinstance(outputs, list):
            raise InvalidArgumentError('tensors and output_tensor_ids must be lists')
        return CalculateRequest(
            tensors=[TensorDefinition.from_dict(t) for t in tensors],
            output_tensor_ids=[_as_id(i, 'output tensor id') for i in outputs])

    def to_dict(self):
        return {'tensors': [t.to_dict() for t in self.tensors],
                'output_tensor_ids': list(self.output_tensor_ids)}


@dataclass(eq=False)
class CalculateResponse:
    results: list = field(default_factory=list)

    def to_dict(self):
        return {'results': [r.to_dict() for r in self.results]}
