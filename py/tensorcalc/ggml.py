"""
Accelerated backend -- delegates kernels to ggml.

Each GgmlScope owns one ggml context (the arena). Inline tensors are copied
into it at registration; computed tensors become ggml graph nodes at
evaluation time and the whole graph is submitted at once. ggml runs the
graph on its own worker pool.
"""

import ctypes
import logging

import numpy as np

from . import _ffi, api, config, shapes
from .errors import (InternalError, InvalidArgumentError, UnavailableError,
                     UnimplementedError)
from .scope import Scope

logger = logging.getLogger(__name__)


def _nbytes(dimensions):
    return 4 * int(np.prod(dimensions))


class GgmlContext:
    """A fixed-size ggml arena. Everything allocated from it dies with it."""

    def __init__(self, mem_size):
        self._lib = _ffi.lib()
        params = _ffi.GgmlInitParams(mem_size=mem_size, mem_buffer=None, no_alloc=False)
        ptr = self._lib.ggml_init(params)
        if not ptr:
            raise UnavailableError('failed to initialize GGML context',
                                   {'mem_size': mem_size})
        self._ptr = ptr
        self.mem_size = mem_size

    @property
    def freed(self):
        return self._ptr is None

    def free(self):
        if self._ptr:
            self._lib.ggml_free(self._ptr)
            self._ptr = None

    def __del__(self):
        if getattr(self, '_ptr', None):
            self.free()

    def _check_live(self):
        if not self._ptr:
            raise UnavailableError('GGML context has been freed')

    def reserve(self, nbytes, n_tensors=1):
        """Fail cleanly instead of letting ggml abort on arena overflow."""
        self._check_live()
        needed = nbytes + n_tensors * self._lib.ggml_tensor_overhead()
        used = self._lib.ggml_used_mem(self._ptr)
        if used + needed > self._lib.ggml_get_mem_size(self._ptr):
            raise UnavailableError('GGML arena exhausted',
                                   {'used': used, 'needed': needed, 'mem_size': self.mem_size})

    def _wrap(self, ptr, dimensions):
        if not ptr:
            raise InternalError('ggml returned a NULL tensor')
        return GgmlTensor(self, ptr, dimensions)

    # --- Tensors ---

    def new_tensor(self, dimensions):
        """Allocate an f32 tensor with row-major ``dimensions``."""
        if not 1 <= len(dimensions) <= _ffi.GGML_MAX_DIMS:
            raise InvalidArgumentError(
                f'ggml supports 1 to {_ffi.GGML_MAX_DIMS} dimensions, got {list(dimensions)}')
        self.reserve(_nbytes(dimensions))
        # ggml's ne[0] is the innermost (fastest varying) dimension
        ne = (ctypes.c_int64 * len(dimensions))(*reversed(dimensions))
        ptr = self._lib.ggml_new_tensor(self._ptr, _ffi.GGML_TYPE_F32, len(dimensions), ne)
        return self._wrap(ptr, dimensions)

    # --- Ops ---

    def scale(self, t, s):
        self.reserve(_nbytes(t.dimensions))
        return self._wrap(self._lib.ggml_scale(self._ptr, t.ptr, s), t.dimensions)

    def rms_norm(self, t, eps):
        # ggml normalizes each row; flatten so the mean covers every element
        if len(t.dimensions) == 1:
            self.reserve(_nbytes(t.dimensions))
            return self._wrap(self._lib.ggml_rms_norm(self._ptr, t.ptr, eps), t.dimensions)
        n = int(np.prod(t.dimensions))
        self.reserve(_nbytes(t.dimensions), n_tensors=3)
        flat = self._wrap(self._lib.ggml_reshape_1d(self._ptr, t.ptr, n), (n,))
        norm = self._wrap(self._lib.ggml_rms_norm(self._ptr, flat.ptr, eps), (n,))
        return self._wrap(self._lib.ggml_reshape(self._ptr, norm.ptr, t.ptr), t.dimensions)

    def mul(self, a, b):
        self.reserve(_nbytes(a.dimensions))
        return self._wrap(self._lib.ggml_mul(self._ptr, a.ptr, b.ptr), a.dimensions)

    def add(self, a, b):
        self.reserve(_nbytes(a.dimensions))
        return self._wrap(self._lib.ggml_add(self._ptr, a.ptr, b.ptr), a.dimensions)

    def matmul(self, a, b):
        """Row-major ``a @ b``.

        ggml_mul_mat(x, y) contracts over ne[0] of both operands, so the right
        operand is transposed into a contiguous copy first.
        """
        rows, cols = a.dimensions[0], b.dimensions[1]
        self.reserve(_nbytes(b.dimensions) + _nbytes((rows, cols)), n_tensors=3)
        bt = self._wrap(self._lib.ggml_transpose(self._ptr, b.ptr),
                        (b.dimensions[1], b.dimensions[0]))
        bt = self._wrap(self._lib.ggml_cont(self._ptr, bt.ptr), bt.dimensions)
        return self._wrap(self._lib.ggml_mul_mat(self._ptr, bt.ptr, a.ptr), (rows, cols))

    def silu(self, t):
        self.reserve(_nbytes(t.dimensions))
        return self._wrap(self._lib.ggml_silu(self._ptr, t.ptr), t.dimensions)

    def soft_max(self, t):
        self.reserve(_nbytes(t.dimensions))
        return self._wrap(self._lib.ggml_soft_max(self._ptr, t.ptr), t.dimensions)

    # --- Graph ---

    def new_graph(self, size):
        size = max(size, _ffi.GGML_DEFAULT_GRAPH_SIZE)
        self.reserve(self._lib.ggml_graph_overhead_custom(size, False), n_tensors=0)
        ptr = self._lib.ggml_new_graph_custom(self._ptr, size, False)
        if not ptr:
            raise InternalError('failed to create GGML graph')
        return GgmlGraph(self, ptr)


class GgmlTensor:
    """Handle to a tensor living in a GgmlContext.

    Dimensions are tracked on the Python side (row-major); data access goes
    through a bounds-checked numpy view of the native buffer.
    """

    def __init__(self, ctx, ptr, dimensions):
        self._ctx = ctx
        self.ptr = ptr
        self.dimensions = tuple(dimensions)

    def __repr__(self):
        return f'GgmlTensor(dimensions={list(self.dimensions)})'

    def numel(self):
        return int(np.prod(self.dimensions))

    def _view(self):
        self._ctx._check_live()
        lib = self._ctx._lib
        if not lib.ggml_is_contiguous(self.ptr):
            raise InternalError('tensor is not contiguous')
        n = lib.ggml_nelements(self.ptr)
        if n != self.numel() or lib.ggml_nbytes(self.ptr) != 4 * n:
            raise InternalError(
                f'native tensor holds {n} elements, expected {self.numel()}')
        data = lib.ggml_get_data(self.ptr)
        if not data:
            raise InternalError('tensor has no data')
        return np.ctypeslib.as_array(ctypes.cast(data, ctypes.POINTER(ctypes.c_float)),
                                     shape=(n,))

    def set_values(self, values):
        values = np.asarray(values, dtype=np.float32).reshape(-1)
        view = self._view()
        if len(values) != len(view):
            raise InvalidArgumentError(
                f'tensor has {len(view)} elements, but {len(values)} values were provided')
        view[:] = values

    def get_values(self):
        """Return an owned copy of the tensor's data."""
        return self._view().copy()


class GgmlGraph:
    def __init__(self, ctx, ptr):
        self._ctx = ctx
        self._ptr = ptr

    def build_forward_expand(self, t):
        self._ctx._lib.ggml_build_forward_expand(self._ptr, t.ptr)

    def work_size(self, n_threads):
        """Bytes of scratch ggml allocates from the arena to run this graph."""
        self._ctx._check_live()
        return self._ctx._lib.graph_plan(self._ptr, n_threads, None).work_size

    def compute(self, n_threads):
        self._ctx._check_live()
        # the work buffer comes out of the arena; ggml aborts if it does not fit
        self._ctx.reserve(self.work_size(n_threads))
        status = self._ctx._lib.compute_with_ctx(self._ctx._ptr, self._ptr, n_threads)
        if status != _ffi.GGML_STATUS_SUCCESS:
            raise InternalError(f'failed to compute graph (status {status})')


class GgmlScope(Scope):
    """Scope whose tensors live in a ggml arena.

    Raises UnavailableError from the constructor if ggml cannot be loaded or
    the arena cannot be allocated.
    """

    engine = 'ggml'

    def __init__(self, arena_bytes=None, n_threads=None):
        super().__init__()
        self._n_threads = n_threads or config.threads()
        self._ctx = GgmlContext(arena_bytes or config.arena_bytes())

    def _register_inline(self, record, data):
        t = self._ctx.new_tensor(record.dimensions)
        t.set_values(data.values)
        record.handle = t

    def _evaluate_order(self, records):
        for record in records:
            if record.handle is None:
                self._add_computed_tensor(record)

        # Node insertion order follows the evaluation order
        graph = self._ctx.new_graph(4 * len(self._tensors))
        for record in records:
            graph.build_forward_expand(record.handle)
        logger.debug('computing ggml graph: %d nodes, %d threads', len(records), self._n_threads)
        graph.compute(self._n_threads)

        for record in records:
            record.computed = True

    def _add_computed_tensor(self, record):
        op = record.operation
        sources = self.sources(record)
        out_shape = shapes.output_shape(op, [s.dimensions for s in sources])
        handles = [s.handle for s in sources]

        if isinstance(op, api.LinearScale):
            t = self._ctx.scale(handles[0], op.scale)
        elif isinstance(op, api.RMSNorm):
            t = self._ctx.rms_norm(handles[0], op.epsilon or config.DEFAULT_EPSILON)
        elif isinstance(op, api.DotMultiply):
            t = self._ctx.mul(*handles)
        elif isinstance(op, api.Add):
            t = self._ctx.add(*handles)
        elif isinstance(op, api.MatrixMultiply):
            t = self._ctx.matmul(*handles)
        elif isinstance(op, api.Silu):
            t = self._ctx.silu(handles[0])
        elif isinstance(op, api.Softmax):
            t = self._ctx.soft_max(handles[0])
        else:
            raise UnimplementedError(f'unsupported operation: {op!r}', {'tensor': record.id})

        if t.dimensions != out_shape:
            raise InternalError(
                f'ggml produced shape {list(t.dimensions)}, expected {list(out_shape)}',
                {'tensor': record.id})
        record.handle = t
        record.dimensions = out_shape

    def _read_values(self, record):
        return record.handle.get_values()

    def _release(self):
        self._ctx.free()
