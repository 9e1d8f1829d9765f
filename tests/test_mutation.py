"""
Tests for eant2/evolution/mutation.py

Tests mutation weights, individual bookkeeping and structural operators.
"""

import numpy as np
import pytest

from eant2.cge.activation import Activation
from eant2.cge.gene import Bias, ForwardJumper, Input, Neuron, RecurrentJumper
from eant2.cge.network import Network
from eant2.errors import ConfigurationError, InvariantError
from eant2.evolution import mutation
from eant2.evolution.fitness import XorFitness
from eant2.evolution.generation import random_minimal_network
from eant2.evolution.individual import Individual
from eant2.evolution.probabilities import MutationProbabilities, MutationType


def make_individual(genome, inputs: int = 2, outputs: int = 1) -> Individual:
    return Individual(Network(genome, Activation.LINEAR), inputs, outputs, XorFitness())


# ==================== Probability Tests ====================

class TestMutationProbabilities:
    """Tests for MutationProbabilities."""

    def test_defaults_normalized(self):
        """Default weights 3:8:1:3 are normalized to sum to one."""
        p = MutationProbabilities()

        assert sum(p.as_list()) == pytest.approx(1.0)
        assert p.add_connection == pytest.approx(3 / 15)
        assert p.remove_connection == pytest.approx(8 / 15)

    def test_zero_total_raises(self):
        """At least one weight must be positive."""
        with pytest.raises(ConfigurationError):
            MutationProbabilities(0, 0, 0, 0)

    def test_negative_raises(self):
        """Negative weights are rejected."""
        with pytest.raises(ConfigurationError):
            MutationProbabilities(add_bias=-1.0)

    def test_nan_raises(self):
        """NaN weights are rejected."""
        with pytest.raises(ConfigurationError):
            MutationProbabilities(add_neuron=float("nan"))

    def test_from_dict(self):
        """Missing keys keep their defaults; unknown keys are rejected."""
        p = MutationProbabilities.from_dict({"add_neuron": 0.0})

        assert p.add_neuron == 0.0
        assert sum(p.as_list()) == pytest.approx(1.0)
        with pytest.raises(ConfigurationError):
            MutationProbabilities.from_dict({"swap_genes": 1.0})

    def test_sample_respects_zero_weights(self):
        """Categories with zero weight are never drawn."""
        rng = np.random.default_rng(42)
        p = MutationProbabilities(0, 0, 0, 1)

        assert {p.sample(rng) for _ in range(50)} == {MutationType.ADD_BIAS}


# ==================== Individual Tests ====================

class TestIndividual:
    """Tests for Individual."""

    def test_defaults(self):
        """New individuals have age-zero genes and no fitness yet."""
        individual = make_individual([Neuron(0, 2), Input(0), Input(1)])

        assert individual.ages == [0, 0, 0]
        assert individual.fitness == float("inf")
        assert len(individual) == 3

    def test_age_length_mismatch_raises(self):
        """One age per gene is required."""
        with pytest.raises(InvariantError):
            Individual(Network([Neuron(0, 1), Input(0)]), 1, 1, XorFitness(), ages=[0])

    def test_ages_follow_edits(self):
        """Inserted genes get age 0 at their genome position."""
        individual = make_individual([Neuron(0, 2), Input(0), Input(1)])
        individual.increment_ages()
        individual.add_non_neuron(0, Bias())

        assert individual.ages == [1, 0, 1, 1]

        individual.add_subnetwork(0, 1.0, [Input(0)])
        assert individual.ages == [1, 0, 0, 0, 1, 1]

        individual.remove_non_neuron(5)
        assert individual.ages == [1, 0, 0, 0, 1]
        individual.check_alignment()

    def test_gene_deviations(self):
        """Deviation is 1 / (1 + age^2)."""
        individual = make_individual([Neuron(0, 1), Input(0)])
        individual.increment_ages()
        individual.add_non_neuron(0, Bias())

        np.testing.assert_allclose(individual.gene_deviations(), [0.5, 1.0, 0.5])

    def test_copy_is_independent(self):
        """Copies keep fitness and ages but not later edits."""
        individual = make_individual([Neuron(0, 1), Input(0)])
        individual.fitness = 0.5
        clone = individual.copy()
        clone.add_non_neuron(0, Bias())

        assert clone.fitness == 0.5
        assert len(individual) == 2
        assert individual.ages == [0, 0]

    def test_set_optimized(self):
        """Committed weights and fitness replace the old ones."""
        individual = make_individual([Neuron(0, 1), Input(0)])
        individual.set_optimized([0.5, -2.0], 0.125)

        assert individual.fitness == 0.125
        np.testing.assert_array_equal(individual.network.weights(), [0.5, -2.0])


# ==================== Operator Tests ====================

class TestOperators:
    """Tests for the individual mutation operators."""

    def test_add_bias(self):
        """A bias goes to a neuron without one, until every neuron has one."""
        rng = np.random.default_rng(42)
        individual = make_individual([Neuron(0, 1), Input(0)])

        assert mutation.add_bias(individual, rng)
        assert isinstance(individual.network[1], Bias)
        assert not mutation.add_bias(individual, rng)

    def test_add_input_until_full(self):
        """Each neuron reads each network input at most once."""
        rng = np.random.default_rng(42)
        individual = make_individual([Neuron(0, 1), Input(0)])

        assert mutation.add_input(individual, rng)
        assert individual.network[1] == Input(1)
        assert not mutation.add_input(individual, rng)

    def test_add_recurrent_jumper(self):
        """A neuron may read its own previous value once."""
        rng = np.random.default_rng(42)
        individual = make_individual([Neuron(0, 1), Input(0)])

        assert mutation.add_recurrent_jumper(individual, rng)
        assert individual.network[1] == RecurrentJumper(0)
        assert not mutation.add_recurrent_jumper(individual, rng)

    def test_add_forward_jumper(self):
        """Forward jumpers read deeper neurons that are not already children."""
        rng = np.random.default_rng(42)
        individual = make_individual(
            [Neuron(0, 1), Neuron(1, 1), Input(0), Neuron(2, 1), Input(1)],
            outputs=2,
        )

        assert mutation.add_forward_jumper(individual, rng)
        assert individual.network.direct_children(2)[0][1] == ForwardJumper(1)
        assert not mutation.add_forward_jumper(individual, rng)
        individual.network.validate()

    def test_forward_jumper_dead_end(self):
        """A chain of single neurons offers no forward connection."""
        rng = np.random.default_rng(42)
        individual = make_individual([Neuron(0, 1), Neuron(1, 1), Input(0)])

        assert not mutation.add_forward_jumper(individual, rng)

    def test_add_subnetwork(self):
        """A new neuron gets a fresh id, at least one input and age 0 genes."""
        rng = np.random.default_rng(42)
        individual = make_individual([Neuron(0, 2), Input(0), Input(1)])
        individual.increment_ages()

        assert mutation.add_subnetwork(individual, rng)

        network = individual.network
        assert network.has_neuron(1)
        info = network.neuron_info(1)
        assert info.depth == 1
        assert info.end - info.index >= 2
        assert all(age == 0 for age in individual.ages[info.index:info.end])
        network.validate()
        individual.check_alignment()

    def test_remove_keeps_last_input(self):
        """The only gene reading a network input is never removed."""
        rng = np.random.default_rng(42)
        individual = make_individual([Neuron(0, 2), Input(0), Bias()], inputs=1)

        assert mutation.remove_connection(individual, rng)
        assert individual.network.genome == (Neuron(0, 1), Input(0))
        assert not mutation.remove_connection(individual, rng)

    def test_remove_duplicate_input(self):
        """An input read twice may lose one of its readers."""
        rng = np.random.default_rng(42)
        individual = make_individual(
            [Neuron(0, 1), Input(0), Neuron(1, 2), Input(0), Input(1)],
            outputs=2,
        )

        assert mutation.remove_connection(individual, rng)
        assert individual.network.genome == (Neuron(0, 1), Input(0), Neuron(1, 1), Input(1))
        assert not mutation.remove_connection(individual, rng)

    def test_mutate_reports_no_op(self):
        """mutate returns False when the chosen operator has nothing to do."""
        rng = np.random.default_rng(42)
        individual = make_individual([Neuron(0, 1), Bias()], inputs=1)
        only_bias = MutationProbabilities(0, 0, 0, 1)

        assert not mutation.mutate(individual, only_bias, rng)
        assert len(individual) == 2


class TestMutationSequences:
    """Long random mutation sequences keep every invariant."""

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_invariants_hold(self, seed):
        """Genome invariants, age alignment and input coverage survive."""
        rng = np.random.default_rng(seed)
        network = random_minimal_network(3, 2, Activation.TANH, rng)
        individual = Individual(network, 3, 2, XorFitness())

        for _ in range(300):
            mutation.mutate(individual, MutationProbabilities(), rng)
            if rng.random() < 0.1:
                individual.increment_ages()

            individual.network.validate()
            individual.check_alignment()
            assert individual.network.num_outputs == 2
            assert set(individual.network.input_connection_counts()) == {0, 1, 2}

    def test_mutated_network_evaluates(self):
        """Mutated networks produce finite outputs."""
        rng = np.random.default_rng(7)
        individual = Individual(
            random_minimal_network(2, 1, Activation.TANH, rng), 2, 1, XorFitness()
        )
        growth = MutationProbabilities(add_connection=3, remove_connection=1, add_neuron=2, add_bias=1)
        for _ in range(50):
            mutation.mutate(individual, growth, rng)

        outputs = individual.network.evaluate([1.0, 0.0])
        assert len(outputs) == 1
        assert np.isfinite(outputs[0])
