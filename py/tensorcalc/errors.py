"""Error hierarchy for tensorcalc.

Every failure surfaced by the engine is a CalculationError subclass whose
``code`` names the status class the caller receives.
"""


class CalculationError(RuntimeError):
    """Base class for all tensorcalc errors.

    Attributes:
        message: Human-readable error message
        context: Optional dict of debugging details, rendered under the message
    """

    code = 'UNKNOWN'

    def __init__(self, message, context=None):
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self):
        lines = [self.message]
        for key, value in self.context.items():
            lines.append(f'  {key}: {value}')
        return '\n'.join(lines)


class AlreadyExistsError(CalculationError):
    """A tensor id was registered twice in one scope."""
    code = 'ALREADY_EXISTS'


class NotFoundError(CalculationError):
    """An id could not be resolved (dependency, output, blob)."""
    code = 'NOT_FOUND'


class InvalidArgumentError(CalculationError):
    """Shape mismatch, unsupported rank or malformed payload."""
    code = 'INVALID_ARGUMENT'


class UnimplementedError(CalculationError):
    """Operation not supported by the active backend."""
    code = 'UNIMPLEMENTED'


class UnavailableError(CalculationError):
    """Backend could not be initialized, or the scope is already closed."""
    code = 'UNAVAILABLE'


class InternalError(CalculationError):
    """Native execution failure."""
    code = 'INTERNAL'


class BlobNotFoundError(NotFoundError):
    """No blob is stored under the requested hash."""
