"""Scenario tests run against every engine."""

import numpy as np
import pytest

from tensorcalc import _ffi
from tensorcalc.api import (Add, CalculateRequest, DotMultiply, InlineData, LinearScale,
                            MatrixMultiply, RMSNorm, Silu, Softmax, TensorDefinition,
                            TensorOperation)
from tensorcalc.engines import new_scope
from tensorcalc.errors import AlreadyExistsError, InvalidArgumentError, NotFoundError
from tensorcalc.evaluate import evaluate


ENGINES = [
    'fallback',
    pytest.param('ggml', marks=pytest.mark.skipif(
        not _ffi.available(), reason='ggml library not available')),
]


# ── Helpers ──

def inline(tensor_id, values, dimensions=None):
    values = np.asarray(values, dtype=np.float32)
    if dimensions is None:
        dimensions = list(values.shape)
    return TensorDefinition(tensor_id, inline_data=InlineData(dimensions, values.reshape(-1)))


def computed(tensor_id, op):
    return TensorDefinition(tensor_id, computation=TensorOperation(op))


def tol(engine):
    return 1e-5 if engine == 'fallback' else 1e-4


def run(engine, tensors, outputs):
    """Evaluate, close the scope twice, then return the results."""
    scope = new_scope(engine)
    try:
        response = evaluate(scope, CalculateRequest(tensors, outputs))
    finally:
        scope.close()
    scope.close()
    return response


# ── Scenarios ──

@pytest.mark.parametrize('engine', ENGINES)
class TestScenarios:
    def test_rms_norm(self, engine):
        response = run(engine, [inline(1, [1, 2, 3]), computed(2, RMSNorm(1))], [2])
        assert len(response.results) == 1
        result = response.results[0]
        assert result.id == 2
        assert result.inline_data.dimensions == [3]
        np.testing.assert_allclose(result.inline_data.values,
                                   [0.46290955, 0.9258191, 1.3887286], atol=tol(engine))

    def test_rms_norm_explicit_epsilon(self, engine):
        response = run(engine, [inline(1, [3, 4]), computed(2, RMSNorm(1, epsilon=0.5))], [2])
        expected = np.array([3, 4]) / np.sqrt((9 + 16) / 2 + 0.5)
        np.testing.assert_allclose(response.results[0].inline_data.values, expected,
                                   atol=tol(engine))

    def test_linear_scale(self, engine):
        response = run(engine, [inline(1, [1, 2, 3]), computed(2, LinearScale(1, 2.5))], [2])
        np.testing.assert_allclose(response.results[0].inline_data.values, [2.5, 5, 7.5],
                                   atol=tol(engine))

    def test_dot_multiply(self, engine):
        response = run(engine, [
            inline(1, [1, 2, 3]),
            inline(2, [4, 5, 6]),
            computed(3, DotMultiply([1, 2])),
        ], [3])
        np.testing.assert_allclose(response.results[0].inline_data.values, [4, 10, 18],
                                   atol=tol(engine))

    def test_add_with_forward_reference(self, engine):
        # tensor 4 reads tensor 5, which is registered after it
        response = run(engine, [
            inline(1, [1, 2, 3]),
            inline(2, [4, 5, 6]),
            computed(3, DotMultiply([1, 2])),
            computed(4, Add([3, 5])),
            inline(5, [7, 8, 9]),
        ], [4])
        np.testing.assert_allclose(response.results[0].inline_data.values, [11, 18, 27],
                                   atol=tol(engine))

    def test_silu(self, engine):
        response = run(engine, [
            inline(1, [-5, -4, -3, -2, -1, 0, 1, 2, 3, 4, 5]),
            computed(3, Silu(1)),
        ], [3])
        expected = [-0.033464253, -0.07194484, -0.14227761, -0.23840584, -0.26894143, 0,
                    0.7310586, 1.7615942, 2.8577223, 3.928055, 4.9665356]
        np.testing.assert_allclose(response.results[0].inline_data.values, expected,
                                   atol=tol(engine))

    def test_softmax(self, engine):
        response = run(engine, [
            inline(1, [-5, -4, -3, -2, -1, 0, 1, 2, 3, 4, 5]),
            computed(3, Softmax(1)),
        ], [3])
        values = response.results[0].inline_data.values
        expected = [2.8698709e-05, 7.801117e-05, 0.00021205637, 0.00057642895, 0.0015668964,
                    0.0042592655, 0.011577884, 0.031471953, 0.08554964, 0.23254804, 0.6321311]
        np.testing.assert_allclose(values, expected, atol=tol(engine))
        assert float(np.sum(values, dtype=np.float64)) == pytest.approx(1.0, abs=1e-5)

    def test_matrix_multiply(self, engine):
        response = run(engine, [
            inline(1, [[1, 2, 3], [4, 5, 6]]),
            inline(2, [[7, 8], [9, 10], [11, 12]]),
            computed(3, MatrixMultiply([1, 2])),
        ], [3])
        result = response.results[0]
        assert result.inline_data.dimensions == [2, 2]
        np.testing.assert_allclose(result.numpy(), [[58, 64], [139, 154]], atol=tol(engine))

    def test_chained_graph(self, engine):
        # softmax(silu(rms_norm(x) * w + b))
        x = [0.5, -1.0, 2.0, 0.25]
        w = [1.5, 0.5, -1.0, 2.0]
        b = [0.1, 0.2, 0.3, 0.4]
        response = run(engine, [
            computed(10, Softmax(9)),
            computed(9, Silu(8)),
            computed(8, Add([7, 3])),
            computed(7, DotMultiply([6, 2])),
            computed(6, RMSNorm(1)),
            inline(1, x),
            inline(2, w),
            inline(3, b),
        ], [10, 6])
        xs = np.array(x, dtype=np.float64)
        norm = xs / np.sqrt(np.mean(xs ** 2) + 1e-5)
        h = norm * np.array(w) + np.array(b)
        h = h / (1 + np.exp(-h))
        expected = np.exp(h - h.max()) / np.exp(h - h.max()).sum()
        assert [r.id for r in response.results] == [10, 6]
        np.testing.assert_allclose(response.results[0].inline_data.values, expected,
                                   atol=tol(engine))
        np.testing.assert_allclose(response.results[1].inline_data.values, norm,
                                   atol=tol(engine))


# ── Contract ──

@pytest.mark.parametrize('engine', ENGINES)
class TestContract:
    def test_results_follow_request_order_with_duplicates(self, engine):
        response = run(engine, [
            inline(1, [1, 2]),
            computed(2, LinearScale(1, 3.0)),
        ], [2, 1, 2])
        assert [r.id for r in response.results] == [2, 1, 2]
        np.testing.assert_allclose(response.results[0].inline_data.values, [3, 6])
        np.testing.assert_allclose(response.results[1].inline_data.values, [1, 2])
        # each duplicate is its own copy
        assert response.results[0].inline_data.values is not response.results[2].inline_data.values

    def test_results_survive_close(self, engine):
        scope = new_scope(engine)
        response = evaluate(scope, CalculateRequest(
            [inline(1, [1, 2, 3]), computed(2, RMSNorm(1))], [2]))
        scope.close()
        scope.close()
        np.testing.assert_allclose(response.results[0].inline_data.values,
                                   [0.46290955, 0.9258191, 1.3887286], atol=tol(engine))

    def test_duplicate_id_fails(self, engine):
        with new_scope(engine) as scope:
            with pytest.raises(AlreadyExistsError):
                evaluate(scope, CalculateRequest(
                    [inline(1, [1, 2]), inline(1, [3, 4])], [1]))

    def test_unregistered_output_fails(self, engine):
        with new_scope(engine) as scope:
            with pytest.raises(NotFoundError, match='tensor 7 could not be computed'):
                evaluate(scope, CalculateRequest([inline(1, [1, 2])], [1, 7]))

    def test_missing_dependency_fails(self, engine):
        with new_scope(engine) as scope:
            with pytest.raises(NotFoundError, match='tensor 2 could not be computed'):
                evaluate(scope, CalculateRequest(
                    [inline(1, [1, 2]), computed(2, Add([1, 99]))], [1, 2]))

    def test_cycle_fails(self, engine):
        with new_scope(engine) as scope:
            with pytest.raises(NotFoundError, match='unreachable'):
                evaluate(scope, CalculateRequest([
                    computed(1, Silu(2)),
                    computed(2, Silu(1)),
                ], [1]))


    def test_empty_tensor_fails(self, engine):
        with new_scope(engine) as scope:
            with pytest.raises(InvalidArgumentError, match='tensor 1 has no elements'):
                evaluate(scope, CalculateRequest([inline(1, []), computed(2, Softmax(1))], [2]))

    @pytest.mark.parametrize('epsilon', [-100.0, float('nan')])
    def test_invalid_epsilon_fails(self, engine, epsilon):
        with new_scope(engine) as scope:
            with pytest.raises(InvalidArgumentError, match='epsilon'):
                evaluate(scope, CalculateRequest(
                    [inline(1, [1, 2, 3]), computed(2, RMSNorm(1, epsilon=epsilon))], [2]))

# ── Cross-backend ──

@pytest.mark.skipif(not _ffi.available(), reason='ggml library not available')
def test_backends_agree():
    rng = np.random.default_rng(0)
    tensors = [
        inline(1, rng.standard_normal((4, 8))),
        inline(2, rng.standard_normal((8, 3))),
        inline(3, rng.standard_normal(16)),
        inline(4, rng.standard_normal(16)),
        computed(5, MatrixMultiply([1, 2])),
        computed(6, RMSNorm(5)),
        computed(7, LinearScale(6, -0.75)),
        computed(8, DotMultiply([3, 4])),
        computed(9, Add([8, 3])),
        computed(10, Silu(9)),
        computed(11, Softmax(10)),
    ]
    outputs = [5, 6, 7, 8, 9, 10, 11]
    reference = run('fallback', tensors, outputs)
    accelerated = run('ggml', tensors, outputs)
    for ref, acc in zip(reference.results, accelerated.results):
        assert ref.id == acc.id
        assert ref.inline_data.dimensions == acc.inline_data.dimensions
        np.testing.assert_allclose(acc.inline_data.values, ref.inline_data.values, atol=1e-4)
