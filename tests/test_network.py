"""
Tests for eant2/cge/

Tests activations, genome invariants, evaluation and structural edits.
"""

import math

import numpy as np
import pytest

from eant2.cge.activation import Activation
from eant2.cge.gene import Bias, ForwardJumper, Input, Neuron, RecurrentJumper
from eant2.cge.network import Network
from eant2.errors import ConfigurationError, InvariantError


def self_recurrent_network() -> Network:
    """One neuron reading input 0 and its own previous value."""
    return Network(
        [Neuron(0, 2), Input(0), RecurrentJumper(0)],
        Activation.LINEAR,
    )


def jumper_network() -> Network:
    """
    Two outputs; output 2 re-reads the hidden neuron 1 through a forward jumper.

        0: N0 (2 inputs)
        1:   N1 (1 input, weight 2)
        2:     I0 (weight 3)
        3:   Bias (weight 0.5)
        4: N2 (1 input)
        5:   F1
    """
    return Network(
        [
            Neuron(0, 2),
            Neuron(1, 1, weight=2.0),
            Input(0, weight=3.0),
            Bias(weight=0.5),
            Neuron(2, 1),
            ForwardJumper(1),
        ],
        Activation.LINEAR,
    )


# ==================== Activation Tests ====================

class TestActivation:
    """Tests for Activation."""

    def test_parse_is_case_insensitive(self):
        """Activation names are parsed case-insensitively."""
        assert Activation.parse("ReLU") is Activation.RELU
        assert Activation.parse(Activation.TANH) is Activation.TANH

    def test_parse_unknown_raises(self):
        """Unknown activation names are rejected."""
        with pytest.raises(ConfigurationError):
            Activation.parse("swish")

    def test_values(self):
        """Activations compute their functions."""
        assert Activation.LINEAR(-2.5) == -2.5
        assert Activation.RELU(-1.0) == 0.0
        assert Activation.UNIT_STEP(0.1) == 1.0
        assert Activation.SIGN(-3.0) == -1.0
        assert Activation.SOFT_SIGN(1.0) == 0.5
        assert Activation.TANH(0.5) == pytest.approx(math.tanh(0.5))

    def test_sigmoid_does_not_overflow(self):
        """Sigmoid handles large magnitudes."""
        assert Activation.SIGMOID(1000.0) == pytest.approx(1.0)
        assert Activation.SIGMOID(-1000.0) == pytest.approx(0.0)
        assert Activation.SIGMOID(0.0) == 0.5


# ==================== Structure Tests ====================

class TestNetworkStructure:
    """Tests for derived neuron info and invariants."""

    def test_subgenome_ranges(self):
        """Every neuron's subgenome is a contiguous range."""
        network = jumper_network()

        assert network.neuron_info(0).subgenome == range(0, 4)
        assert network.neuron_info(1).subgenome == range(1, 3)
        assert network.neuron_info(2).subgenome == range(4, 6)

    def test_depths_and_parents(self):
        """Depth counts enclosing neurons and parents point to them."""
        network = jumper_network()

        assert network.neuron_info(0).depth == 0
        assert network.neuron_info(1).depth == 1
        assert network.parents() == [None, 0, 1, 0, None, 2]
        assert network.num_outputs == 2

    def test_direct_children(self):
        """A child neuron counts as one child."""
        network = jumper_network()
        children = network.direct_children(0)

        assert [index for index, _ in children] == [1, 3]

    def test_valid_forward_sources(self):
        """Forward jumper sources must be deeper than the parent."""
        network = jumper_network()

        assert network.get_valid_forward_jumper_sources(0) == [1]
        assert network.get_valid_forward_jumper_sources(1) == []

    def test_valid_removals(self):
        """Only genes whose parent keeps an input are removable."""
        network = jumper_network()

        assert network.get_valid_removals() == [3]

    def test_validate_accepts_valid_genome(self):
        """validate() passes on a well-formed genome."""
        jumper_network().validate()
        self_recurrent_network().validate()

    def test_missing_input_raises(self):
        """A neuron with too few children is rejected."""
        with pytest.raises(InvariantError):
            Network([Neuron(0, 2), Input(0)])

    def test_duplicate_id_raises(self):
        """Neuron ids must be unique."""
        with pytest.raises(InvariantError):
            Network([Neuron(0, 1), Input(0), Neuron(0, 1), Input(1)])

    def test_orphan_gene_raises(self):
        """Leaf genes need a parent neuron."""
        with pytest.raises(InvariantError):
            Network([Input(0)])

    def test_missing_jumper_source_raises(self):
        """Jumpers must reference existing neurons."""
        with pytest.raises(InvariantError):
            Network([Neuron(0, 1), RecurrentJumper(5)])

    def test_shallow_forward_jumper_raises(self):
        """Forward jumpers may not read a shallower neuron."""
        with pytest.raises(InvariantError):
            Network([Neuron(0, 1), Neuron(1, 1), ForwardJumper(0)])

    def test_zero_input_count_raises(self):
        """Neurons need at least one input."""
        with pytest.raises(InvariantError):
            Network([Neuron(0, 0)])


# ==================== Evaluation Tests ====================

class TestEvaluation:
    """Tests for Network.evaluate."""

    def test_forward_jumper_trace(self):
        """Outputs match a hand-computed trace."""
        network = jumper_network()

        # N1 = 3 * 1 -> pushes 6; N0 = 6 + 0.5; N2 = F1 = 6
        assert network.evaluate([1.0]) == [6.5, 6.0]

    def test_self_recurrent_trace(self):
        """A self-recurrent neuron adds its previous value."""
        network = self_recurrent_network()

        assert network.evaluate([2.0]) == [2.0]
        assert network.evaluate([3.0]) == [5.0]
        assert network.evaluate([1.0]) == [6.0]

    def test_missing_inputs_read_zero(self):
        """Input ids beyond the input vector read as zero."""
        network = Network([Neuron(0, 2), Input(0), Input(3)], Activation.LINEAR)

        assert network.evaluate([2.0]) == [2.0]
        assert network.evaluate([2.0, 0.0, 0.0, 1.0, 9.0]) == [3.0]

    def test_clear_state_resets_recurrence(self):
        """clear_state makes evaluation repeatable."""
        network = self_recurrent_network()
        first = network.evaluate([1.5])
        network.evaluate([4.0])

        network.clear_state()
        network.clear_state()

        assert network.evaluate([1.5]) == first

    def test_deterministic(self):
        """Two copies give identical outputs for identical sequences."""
        a = self_recurrent_network()
        b = a.copy()

        for x in [0.3, -1.0, 2.0]:
            assert a.evaluate([x]) == b.evaluate([x])

    def test_activation_applied(self):
        """The network activation is applied to each neuron sum."""
        network = Network([Neuron(0, 2), Input(0), Bias()], Activation.TANH)

        assert network.evaluate([0.5])[0] == pytest.approx(math.tanh(1.5))


# ==================== State and Weight Tests ====================

class TestStateAndWeights:
    """Tests for recurrent state and weight accessors."""

    def test_set_recurrent_state(self):
        """Stored values feed the next evaluation."""
        network = self_recurrent_network()
        network.set_recurrent_state([5.0])

        assert network.recurrent_state() == [5.0]
        assert network.evaluate([0.0]) == [5.0]

    def test_set_recurrent_state_length_mismatch(self):
        """State vectors must match the number of neurons."""
        with pytest.raises(ValueError):
            self_recurrent_network().set_recurrent_state([1.0, 2.0])

    def test_map_recurrent_state(self):
        """map_recurrent_state rewrites every stored value."""
        network = jumper_network()
        network.evaluate([1.0])
        network.map_recurrent_state(lambda i, v: v * 2)

        assert network.recurrent_state() == [13.0, 6.0, 12.0]
        assert network.recurrent_state_len() == 3

    def test_weights_round_trip(self):
        """set_weights writes one weight per gene in genome order."""
        network = jumper_network()
        weights = np.arange(len(network), dtype=float)
        network.set_weights(weights)

        np.testing.assert_array_equal(network.weights(), weights)

    def test_set_weights_length_mismatch(self):
        """Weight vectors must match the genome length."""
        with pytest.raises(ValueError):
            jumper_network().set_weights([1.0])


# ==================== Edit Tests ====================

class TestStructuralEdits:
    """Tests for structural edits."""

    def test_add_non_neuron(self):
        """A new gene becomes the parent's first child."""
        network = jumper_network()
        index = network.add_non_neuron(1, Bias(0.25))

        assert index == 2
        assert network[1].input_count == 2
        assert network.neuron_info(0).subgenome == range(0, 5)
        network.validate()

    def test_add_subnetwork(self):
        """A subnetwork gets a fresh id and a contiguous range."""
        network = jumper_network()
        new_id = network.add_subnetwork(2, 1.0, [Input(0), Bias()])

        assert new_id == 3
        info = network.neuron_info(new_id)
        assert info.subgenome == range(5, 8)
        assert info.depth == 1
        assert network[4].input_count == 2
        network.validate()

    def test_next_id_survives_copy(self):
        """Copies keep allocating fresh ids."""
        network = jumper_network()
        network.add_subnetwork(0, 1.0, [Input(0)])
        clone = network.copy()

        assert clone.next_neuron_id == network.next_neuron_id == 4

    def test_remove_non_neuron(self):
        """Removing a gene decrements the parent's input count."""
        network = jumper_network()
        gene = network.remove_non_neuron(3)

        assert isinstance(gene, Bias)
        assert network[0].input_count == 1
        network.validate()

    def test_remove_last_input_raises(self):
        """A neuron cannot lose its only input."""
        with pytest.raises(InvariantError):
            jumper_network().remove_non_neuron(2)

    def test_add_invalid_forward_jumper_raises(self):
        """Edits that would break an invariant are rejected."""
        network = jumper_network()
        with pytest.raises(InvariantError):
            network.add_non_neuron(1, ForwardJumper(0))

    def test_copy_is_independent(self):
        """Editing a copy leaves the original untouched."""
        network = jumper_network()
        clone = network.copy()
        clone.set_weights(np.zeros(len(clone)))
        clone.add_non_neuron(0, Input(1))

        assert len(network) == 6
        assert network.weights()[1] == 2.0
