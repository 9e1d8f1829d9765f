"""
Tests for eant2/cmaes/

Tests the CMA-ES optimizer, its termination conditions and restart
policies.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from eant2.cmaes import (
    BIPOP,
    CMAES,
    IPOP,
    CMAESState,
    CMAESTermination,
    LocalRestart,
    NoRestart,
    Restarter,
    RestartStrategy,
    TerminationReason,
    default_population_size,
)
from eant2.cmaes.optimizer import CMAESResult
from eant2.cmaes.restart import RunParameters
from eant2.errors import ConfigurationError, InvalidFitnessError, StepSizeError


def sphere(x: np.ndarray) -> float:
    return float(np.sum(x ** 2))


def fixed_generations(n: int) -> CMAESTermination:
    return CMAESTermination(generations=n, stable_generations=None)


# ==================== Termination Tests ====================

class TestCMAESTermination:
    """Tests for CMAESTermination."""

    def test_defaults(self):
        """Defaults stop after 500 generations or 5 stable ones."""
        t = CMAESTermination()

        assert t.generations == 500
        assert t.stable_generations == 5
        assert t.stable_tolerance == 1e-4
        assert t.fitness is None

    def test_requires_a_bound(self):
        """A fitness threshold alone is rejected."""
        with pytest.raises(ConfigurationError):
            CMAESTermination(fitness=0.0, generations=None, stable_generations=None)

    def test_rejects_zero_limits(self):
        """Limits must be at least one."""
        with pytest.raises(ConfigurationError):
            CMAESTermination(generations=0)
        with pytest.raises(ConfigurationError):
            CMAESTermination(evaluations=0)

    def test_rejects_nan_fitness(self):
        """NaN fitness thresholds are rejected."""
        with pytest.raises(ConfigurationError):
            CMAESTermination(fitness=float("nan"))

    def test_dict_round_trip(self):
        """Termination settings serialize to dictionaries."""
        t = CMAESTermination(fitness=0.1, generations=20, evaluations=400)

        assert CMAESTermination.from_dict(t.to_dict()) == t


# ==================== Optimizer Tests ====================

class TestCMAES:
    """Tests for CMAES."""

    def test_default_population_size(self):
        """lambda = 4 + floor(3 ln n)."""
        assert default_population_size(1) == 4
        assert default_population_size(10) == 10
        assert default_population_size(100) == 17

    def test_sphere_converges(self):
        """CMA-ES minimizes a 5-dimensional sphere."""
        rng = np.random.default_rng(42)
        es = CMAES(
            np.ones(5),
            termination=CMAESTermination(fitness=1e-10, generations=1000, stable_generations=None),
            rng=rng,
        )
        result = es.run(sphere)

        assert result.reason is TerminationReason.FITNESS
        assert result.fitness <= 1e-10
        assert np.allclose(result.point, 0.0, atol=1e-4)

    def test_shifted_optimum_with_scales(self):
        """Per-parameter scales do not change the optimum found."""
        rng = np.random.default_rng(42)
        target = np.array([3.0, -2.0, 0.5])
        es = CMAES(
            np.zeros(3),
            scales=[1.0, 0.5, 0.1],
            termination=CMAESTermination(fitness=1e-12, generations=2000, stable_generations=None),
            rng=rng,
        )
        result = es.run(lambda x: float(np.sum((x - target) ** 2)))

        assert np.allclose(result.point, target, atol=1e-4)

    def test_one_dimensional(self):
        """A single parameter is a normal run."""
        rng = np.random.default_rng(42)
        es = CMAES(
            [2.0],
            termination=CMAESTermination(fitness=1e-8, generations=500, stable_generations=None),
            rng=rng,
        )
        result = es.run(lambda x: float((x[0] - 1.0) ** 2))

        assert result.point[0] == pytest.approx(1.0, abs=1e-3)
        assert result.generations > 0

    def test_zero_dimensional(self):
        """An empty parameter vector is evaluated exactly once."""
        calls = []

        def objective(x):
            calls.append(len(x))
            return 4.0

        result = CMAES([]).run(objective)

        assert calls == [0]
        assert result.reason is TerminationReason.DEGENERATE
        assert result.fitness == 4.0
        assert result.evaluations == 1

    def test_generation_limit(self):
        """Runs stop after the generation limit; the final mean costs one evaluation."""
        rng = np.random.default_rng(42)
        es = CMAES(np.ones(2), termination=fixed_generations(3), rng=rng)
        result = es.run(sphere)

        assert result.reason is TerminationReason.GENERATIONS
        assert result.generations == 3
        assert result.evaluations == 3 * es.state.population_size + 1
        assert len(result.history) == 3

    def test_evaluation_limit(self):
        """Runs stop once the evaluation budget is spent."""
        rng = np.random.default_rng(42)
        es = CMAES(
            np.ones(2),
            termination=CMAESTermination(evaluations=20, generations=None, stable_generations=None),
            rng=rng,
        )
        result = es.run(sphere)

        assert result.reason is TerminationReason.EVALUATIONS

    def test_stabilized(self):
        """A flat objective stops after five stable generations."""
        rng = np.random.default_rng(42)
        es = CMAES(np.ones(3), rng=rng)
        result = es.run(lambda x: 1.0)

        assert result.reason is TerminationReason.STABILIZED
        assert result.generations == 6

    def test_nan_fitness_raises(self):
        """Non-finite objective values abort the run."""
        es = CMAES(np.ones(2), rng=np.random.default_rng(42))

        with pytest.raises(InvalidFitnessError):
            es.run(lambda x: float("nan"))

    def test_infinite_fitness_raises(self):
        """Infinite objective values abort the run."""
        es = CMAES(np.ones(2), rng=np.random.default_rng(42))

        with pytest.raises(InvalidFitnessError):
            es.run(lambda x: float("inf"))

    def test_ask_tell(self):
        """ask returns lambda candidates; tell expects one value each."""
        es = CMAES(np.zeros(4), population_size=6, rng=np.random.default_rng(42))
        candidates = es.ask()

        assert candidates.shape == (6, 4)
        with pytest.raises(ValueError):
            es.tell([1.0, 2.0])

    def test_tell_before_ask_raises(self):
        """tell without a pending ask is an error."""
        es = CMAES(np.zeros(2), rng=np.random.default_rng(42))

        with pytest.raises(RuntimeError):
            es.tell([1.0] * es.state.population_size)

    def test_executor_matches_serial(self):
        """Parallel candidate evaluation gives the same result."""
        serial = CMAES(np.ones(3), termination=fixed_generations(10), rng=np.random.default_rng(7)).run(sphere)

        with ThreadPoolExecutor(max_workers=3) as executor:
            parallel = CMAES(
                np.ones(3), termination=fixed_generations(10), rng=np.random.default_rng(7)
            ).run(sphere, executor)

        assert parallel.fitness == serial.fitness
        np.testing.assert_array_equal(parallel.point, serial.point)

    def test_invalid_scales_raise(self):
        """Scales must be positive and match the dimension."""
        with pytest.raises(ConfigurationError):
            CMAES(np.zeros(2), scales=[1.0])
        with pytest.raises(ConfigurationError):
            CMAES(np.zeros(2), scales=[1.0, 0.0])


class TestCMAESState:
    """Tests for CMAESState."""

    def test_weights_normalized(self):
        """Recombination weights are positive, decreasing and sum to one."""
        state = CMAESState(10)

        assert state.weights.sum() == pytest.approx(1.0)
        assert np.all(np.diff(state.weights) < 0)
        assert state.mu == state.population_size // 2

    def test_small_population_raises(self):
        """At least two samples per generation are needed."""
        with pytest.raises(ConfigurationError):
            CMAESState(3, population_size=1)

    def test_step_size_overflow_raises(self):
        """A step size leaving the representable range raises."""
        state = CMAESState(2, population_size=4)
        state.sigma = 1e-300
        samples = np.ones((4, 2))

        with pytest.raises(StepSizeError):
            state.update(samples, np.arange(4))


# ==================== Restart Tests ====================

class TestRestartStrategies:
    """Tests for restart policies."""

    def _result(self, evaluations: int) -> CMAESResult:
        return CMAESResult(
            point=np.zeros(1),
            fitness=1.0,
            generations=1,
            evaluations=evaluations,
            reason=TerminationReason.GENERATIONS,
            step_size=0.3,
            population_size=6,
        )

    def test_no_restart(self):
        """NoRestart runs exactly once."""
        rng = np.random.default_rng(42)
        strategy = NoRestart()

        assert strategy.next_run(6, 0.3, [], rng) == RunParameters(6, 0.3)
        assert strategy.next_run(6, 0.3, [(RunParameters(6, 0.3), self._result(10))], rng) is None
        with pytest.raises(ConfigurationError):
            NoRestart(runs=2)

    def test_ipop_grows_population(self):
        """IPOP doubles the population on every restart."""
        rng = np.random.default_rng(42)
        strategy = IPOP(runs=3)
        history = []

        sizes = []
        while (params := strategy.next_run(6, 0.3, history, rng)) is not None:
            sizes.append(params.population_size)
            history.append((params, self._result(10)))

        assert sizes == [6, 12, 24]

    def test_bipop_alternates_regimes(self):
        """BIPOP starts large, then spends on small runs while they are cheaper."""
        rng = np.random.default_rng(42)
        strategy = BIPOP(runs=4)

        first = strategy.next_run(6, 0.3, [], rng)
        assert first.regime == "large"
        history = [(first, self._result(100))]

        second = strategy.next_run(6, 0.3, history, rng)
        assert second.regime == "small"
        assert 2 <= second.population_size <= 6
        assert second.step_size <= 0.3
        history.append((second, self._result(200)))

        third = strategy.next_run(6, 0.3, history, rng)
        assert third.regime == "large"
        assert third.population_size == 12

    def test_from_dict(self):
        """Strategies are built from names or dictionaries."""
        assert isinstance(RestartStrategy.from_dict("bipop"), BIPOP)
        ipop = RestartStrategy.from_dict({"type": "ipop", "runs": 3, "increase_factor": 3.0})
        assert ipop.runs == 3 and ipop.increase_factor == 3.0
        assert RestartStrategy.from_dict(LocalRestart(4).to_dict()).runs == 4

    def test_from_dict_unknown_raises(self):
        """Unknown strategies are rejected."""
        with pytest.raises(ConfigurationError):
            RestartStrategy.from_dict("sometimes")
        with pytest.raises(ConfigurationError):
            RestartStrategy.from_dict({"type": "local", "speed": 2})


class TestRestarter:
    """Tests for Restarter."""

    def test_local_restart_accumulates(self):
        """All runs are counted and the best result is kept."""
        rng = np.random.default_rng(42)
        restarter = Restarter(LocalRestart(runs=3), fixed_generations(2))
        result = restarter.run(sphere, np.ones(2), rng=rng)

        runs_cost = 2 * default_population_size(2) + 1
        assert result.runs == 3
        assert result.evaluations == 3 * runs_cost

    def test_stops_at_fitness_threshold(self):
        """No restart happens once the target is reached."""
        restarter = Restarter(
            LocalRestart(runs=3),
            CMAESTermination(fitness=0.0, generations=50),
        )
        result = restarter.run(lambda x: 0.0, np.ones(2), rng=np.random.default_rng(42))

        assert result.runs == 1
        assert result.reason is TerminationReason.FITNESS

    def test_degenerate_runs_once(self):
        """Empty parameter vectors are not restarted."""
        calls = []
        restarter = Restarter(LocalRestart(runs=3))
        result = restarter.run(lambda x: calls.append(1) or 2.0, [])

        assert len(calls) == 1
        assert result.fitness == 2.0
        assert result.runs == 1

    def test_ipop_improves_on_rastrigin(self):
        """IPOP restarts never return a worse result than their first run."""
        def rastrigin(x):
            return float(10 * len(x) + np.sum(x ** 2 - 10 * np.cos(2 * np.pi * x)))

        single = Restarter(NoRestart(), fixed_generations(30)).run(
            rastrigin, np.full(2, 2.0), rng=np.random.default_rng(3)
        )
        restarted = Restarter(IPOP(runs=3), fixed_generations(30)).run(
            rastrigin, np.full(2, 2.0), rng=np.random.default_rng(3)
        )

        assert restarted.fitness <= single.fitness
