"""Runtime configuration, read from environment variables."""

import os

from .errors import InvalidArgumentError

DEFAULT_ENGINE = 'fallback'
DEFAULT_ARENA_BYTES = 256 * 1024 * 1024
DEFAULT_THREADS = 16
DEFAULT_EPSILON = 1e-5


def _int_env(name, default):
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidArgumentError(f'{name} must be an integer, got {raw!r}')
    if value <= 0:
        raise InvalidArgumentError(f'{name} must be positive, got {value}')
    return value


def engine():
    """Name of the engine used when none is requested explicitly."""
    return os.environ.get('TENSORCALC_ENGINE', DEFAULT_ENGINE)


def ggml_lib_path():
    return os.environ.get('TENSORCALC_GGML_LIB')


def ggml_cpu_lib_path():
    return os.environ.get('TENSORCALC_GGML_CPU_LIB')


def arena_bytes():
    """Capacity of the native arena owned by each accelerated scope."""
    return _int_env('TENSORCALC_ARENA_BYTES', DEFAULT_ARENA_BYTES)


def threads():
    return _int_env('TENSORCALC_THREADS', DEFAULT_THREADS)


def log_level():
    return os.environ.get('TENSORCALC_LOG_LEVEL', 'WARNING').upper()
