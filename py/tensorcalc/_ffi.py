"""
ctypes bindings to the ggml shared library -- only the slice of ggml.h /
ggml-cpu.h the accelerated backend uses.

The library is loaded lazily so that the reference backend works on hosts
without ggml installed.
"""

import ctypes
import ctypes.util
import logging
import threading

from . import config
from .errors import UnavailableError

logger = logging.getLogger(__name__)

# --- Opaque pointer type ---
_ptr = ctypes.c_void_p
_i64p = ctypes.POINTER(ctypes.c_int64)

GGML_TYPE_F32 = 0
GGML_MAX_DIMS = 4
GGML_STATUS_SUCCESS = 0
GGML_DEFAULT_GRAPH_SIZE = 2048


class GgmlInitParams(ctypes.Structure):
    _fields_ = [('mem_size', ctypes.c_size_t),
                ('mem_buffer', _ptr),
                ('no_alloc', ctypes.c_bool)]


_lib = None
_load_error = None
_load_lock = threading.Lock()


def _declare(lib):
    # --- Context ---
    lib.ggml_init.restype = _ptr
    lib.ggml_init.argtypes = [GgmlInitParams]

    lib.ggml_free.restype = None
    lib.ggml_free.argtypes = [_ptr]

    lib.ggml_get_mem_size.restype = ctypes.c_size_t
    lib.ggml_get_mem_size.argtypes = [_ptr]

    lib.ggml_used_mem.restype = ctypes.c_size_t
    lib.ggml_used_mem.argtypes = [_ptr]

    lib.ggml_tensor_overhead.restype = ctypes.c_size_t
    lib.ggml_tensor_overhead.argtypes = []

    # --- Tensors ---
    lib.ggml_new_tensor.restype = _ptr
    lib.ggml_new_tensor.argtypes = [_ptr, ctypes.c_int, ctypes.c_int, _i64p]

    lib.ggml_get_data.restype = _ptr
    lib.ggml_get_data.argtypes = [_ptr]

    lib.ggml_nelements.restype = ctypes.c_int64
    lib.ggml_nelements.argtypes = [_ptr]

    lib.ggml_nbytes.restype = ctypes.c_size_t
    lib.ggml_nbytes.argtypes = [_ptr]

    lib.ggml_is_contiguous.restype = ctypes.c_bool
    lib.ggml_is_contiguous.argtypes = [_ptr]

    # --- Ops ---
    for name in ['ggml_silu', 'ggml_soft_max', 'ggml_transpose', 'ggml_cont']:
        fn = getattr(lib, name)
        fn.restype = _ptr
        fn.argtypes = [_ptr, _ptr]

    for name in ['ggml_mul', 'ggml_add', 'ggml_mul_mat', 'ggml_reshape']:
        fn = getattr(lib, name)
        fn.restype = _ptr
        fn.argtypes = [_ptr, _ptr, _ptr]

    for name in ['ggml_scale', 'ggml_rms_norm']:
        fn = getattr(lib, name)
        fn.restype = _ptr
        fn.argtypes = [_ptr, _ptr, ctypes.c_float]

    lib.ggml_reshape_1d.restype = _ptr
    lib.ggml_reshape_1d.argtypes = [_ptr, _ptr, ctypes.c_int64]

    # --- Graph ---
    lib.ggml_new_graph_custom.restype = _ptr
    lib.ggml_new_graph_custom.argtypes = [_ptr, ctypes.c_size_t, ctypes.c_bool]

    lib.ggml_graph_overhead_custom.restype = ctypes.c_size_t
    lib.ggml_graph_overhead_custom.argtypes = [ctypes.c_size_t, ctypes.c_bool]

    lib.ggml_build_forward_expand.restype = None
    lib.ggml_build_forward_expand.argtypes = [_ptr, _ptr]


class GgmlCplan(ctypes.Structure):
    # Only work_size is read; the trailing fields size the by-value return
    _fields_ = [('work_size', ctypes.c_size_t),
                ('work_data', _ptr),
                ('n_threads', ctypes.c_int),
                ('threadpool', _ptr),
                ('abort_callback', _ptr),
                ('abort_callback_data', _ptr)]


def _find_cpu_symbol(lib, name):
    """Look up a CPU-backend symbol; split builds keep these in ggml-cpu."""
    try:
        return getattr(lib, name)
    except AttributeError:
        path = config.ggml_cpu_lib_path() or ctypes.util.find_library('ggml-cpu')
        if path is None:
            raise OSError(f'{name} not exported and ggml-cpu not found')
        return getattr(ctypes.CDLL(path, mode=ctypes.RTLD_GLOBAL), name)


def _declare_cpu(lib):
    compute = _find_cpu_symbol(lib, 'ggml_graph_compute_with_ctx')
    compute.restype = ctypes.c_int
    compute.argtypes = [_ptr, _ptr, ctypes.c_int]
    lib.compute_with_ctx = compute

    plan = _find_cpu_symbol(lib, 'ggml_graph_plan')
    plan.restype = GgmlCplan
    plan.argtypes = [_ptr, ctypes.c_int, _ptr]
    lib.graph_plan = plan


def lib():
    """Return the loaded ggml library, loading it on first use.

    Raises UnavailableError if the library cannot be found or lacks a
    required symbol.
    """
    global _lib, _load_error
    if _lib is not None:
        return _lib
    with _load_lock:
        if _lib is not None:
            return _lib
        if _load_error is not None:
            raise UnavailableError(f'ggml library unavailable: {_load_error}')
        path = config.ggml_lib_path() or ctypes.util.find_library('ggml')
        try:
            if path is None:
                raise OSError('libggml not found (set TENSORCALC_GGML_LIB)')
            loaded = ctypes.CDLL(path, mode=ctypes.RTLD_GLOBAL)
            _declare(loaded)
            _declare_cpu(loaded)
        except (OSError, AttributeError) as e:
            _load_error = str(e)
            logger.info('ggml backend disabled: %s', e)
            raise UnavailableError(f'ggml library unavailable: {e}', {'path': path})
        logger.debug('loaded ggml from %s', path)
        _lib = loaded
        return _lib


def available():
    """True if the ggml library can be loaded in this process."""
    try:
        lib()
    except UnavailableError:
        return False
    return True
