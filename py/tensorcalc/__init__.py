"""tensorcalc -- evaluates DAGs of tensor operations for an inference server."""

from .api import (Add, CalculateRequest, CalculateResponse, DotMultiply, InlineData,
                  LinearScale, MatrixMultiply, RMSNorm, Silu, Softmax, Tensor,
                  TensorDefinition, TensorOperation)
from .calculator import Calculator
from .engines import available_engines, new_scope
from .errors import (AlreadyExistsError, CalculationError, InternalError,
                     InvalidArgumentError, NotFoundError, UnavailableError,
                     UnimplementedError)
from .evaluate import evaluate

__all__ = [
    'Add', 'CalculateRequest', 'CalculateResponse', 'DotMultiply', 'InlineData',
    'LinearScale', 'MatrixMultiply', 'RMSNorm', 'Silu', 'Softmax', 'Tensor',
    'TensorDefinition', 'TensorOperation',
    'Calculator', 'available_engines', 'new_scope', 'evaluate',
    'AlreadyExistsError', 'CalculationError', 'InternalError', 'InvalidArgumentError',
    'NotFoundError', 'UnavailableError', 'UnimplementedError',
]
__version__ = '0.0.1'
