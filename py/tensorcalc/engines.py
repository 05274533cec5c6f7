"""Engine registry: maps engine names to scope factories."""

import logging

from . import _ffi, config
from .errors import InvalidArgumentError
from .fallback import FallbackScope
from .ggml import GgmlScope

logger = logging.getLogger(__name__)

ENGINES = {
    'fallback': FallbackScope,
    'ggml': GgmlScope,
}


def available_engines():
    """Names of engines that can create a scope in this process."""
    names = ['fallback']
    if _ffi.available():
        names.append('ggml')
    return names


def new_scope(name=None, **kwargs):
    """Create a fresh scope for ``name`` (default: TENSORCALC_ENGINE).

    Raises InvalidArgumentError for unknown names and UnavailableError if the
    backend cannot be initialized.
    """
    name = name or config.engine()
    factory = ENGINES.get(name)
    if factory is None:
        raise InvalidArgumentError(f'unknown engine {name!r}',
                                   {'known': ', '.join(sorted(ENGINES))})
    return factory(**kwargs)
