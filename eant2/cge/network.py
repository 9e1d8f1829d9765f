"""
eant2/cge/network.py

A recurrent neural network stored as a linear CGE genome.

The genome is evaluated in a single reverse pass over an explicit value
stack: by the time a neuron is reached, all of its children have pushed
their outputs. Forward jumpers recurse into the (contiguous) subgenome of
their source neuron; recurrent jumpers read the value the source neuron
had at the end of the previous call to ``evaluate``.

Neuron positions (index, depth, subgenome range) and the parent of every
gene are derived from the genome and recomputed after each structural
edit. Indices are therefore never valid across an edit.
"""

from __future__ import annotations

import dataclasses
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from eant2.errors import InvariantError

from .activation import DEFAULT_ACTIVATION, Activation
from .gene import (
    BIAS_VALUE,
    Bias,
    ForwardJumper,
    Gene,
    Input,
    Neuron,
    NeuronInfo,
    NonNeuronGene,
    RecurrentJumper,
)


class Network:
    """
    CGE network: an ordered genome plus the activation used by every neuron.

    The root neurons (depth 0) are the network outputs, in genome order.
    """

    def __init__(
        self,
        genome: Sequence[Gene],
        activation: Activation | str = DEFAULT_ACTIVATION,
    ):
        self._genome: List[Gene] = list(genome)
        self.activation = Activation.parse(activation)
        self._info: Dict[int, NeuronInfo] = {}
        self._parents: List[Optional[int]] = []
        self._roots: List[int] = []
        self._rebuild()
        self._next_id = max(self._info, default=-1) + 1

    # ------------------------------------------------------------------
    # Derived structure
    # ------------------------------------------------------------------

    def _rebuild(self) -> None:
        """Recompute neuron info and parents, checking every invariant."""
        info: Dict[int, NeuronInfo] = {}
        parents: List[Optional[int]] = [None] * len(self._genome)
        roots: List[int] = []
        # Open neurons as [id, index, depth, remaining children]
        open_neurons: List[list] = []

        def close_child(end: int) -> None:
            while open_neurons:
                top = open_neurons[-1]
                top[3] -= 1
                if top[3] > 0:
                    return
                neuron_id, index, depth, _ = open_neurons.pop()
                info[neuron_id] = NeuronInfo(neuron_id, index, depth, end)

        for i, gene in enumerate(self._genome):
            parent = open_neurons[-1][0] if open_neurons else None
            parents[i] = parent

            if isinstance(gene, Neuron):
                if gene.id in info or any(n[0] == gene.id for n in open_neurons):
                    raise InvariantError(f"Duplicate neuron id {gene.id}")
                if gene.input_count < 1:
                    raise InvariantError(
                        f"Neuron {gene.id} has input count {gene.input_count}"
                    )
                if parent is None:
                    roots.append(i)
                open_neurons.append([gene.id, i, len(open_neurons), gene.input_count])
            elif isinstance(gene, (Input, Bias, ForwardJumper, RecurrentJumper)):
                if parent is None:
                    raise InvariantError(f"Gene at index {i} has no parent neuron")
                close_child(i + 1)
            else:
                raise InvariantError(f"Unknown gene type {type(gene).__name__}")

        if open_neurons:
            raise InvariantError(
                f"Neuron {open_neurons[-1][0]} is missing "
                f"{open_neurons[-1][3]} input(s)"
            )

        # Sort by index so iteration follows genome order
        self._info = dict(sorted(info.items(), key=lambda item: item[1].index))
        self._parents = parents
        self._roots = roots

        for i, gene in enumerate(self._genome):
            if isinstance(gene, (ForwardJumper, RecurrentJumper)):
                source = self._info.get(gene.source_id)
                if source is None:
                    raise InvariantError(
                        f"Jumper at index {i} references missing neuron {gene.source_id}"
                    )
                if isinstance(gene, ForwardJumper):
                    parent_depth = self._info[parents[i]].depth
                    if source.depth <= parent_depth:
                        raise InvariantError(
                            f"Forward jumper at index {i} from neuron {gene.source_id} "
                            f"(depth {source.depth}) into depth {parent_depth}"
                        )

    def validate(self) -> None:
        """
        Re-derive subgenome ranges and input counts from scratch.

        Uses the running-sum rule (a neuron contributes ``1 - input_count``,
        every other gene ``1``; a subgenome ends when the sum reaches 1)
        and compares the result against the maintained structure.
        Raises InvariantError on any mismatch.
        """
        for neuron_id, info in self._info.items():
            total = 0
            end = info.index
            while total != 1:
                if end >= len(self._genome):
                    raise InvariantError(f"Subgenome of neuron {neuron_id} is unterminated")
                gene = self._genome[end]
                total += 1 - gene.input_count if isinstance(gene, Neuron) else 1
                end += 1
            if end != info.end:
                raise InvariantError(
                    f"Neuron {neuron_id} range ends at {info.end}, expected {end}"
                )

            children = len(self.direct_children(neuron_id))
            neuron = self._genome[info.index]
            if children != neuron.input_count:
                raise InvariantError(
                    f"Neuron {neuron_id} has {children} children "
                    f"but input count {neuron.input_count}"
                )

        # Root subgenomes must tile the genome exactly
        position = 0
        for index in self._roots:
            if index != position:
                raise InvariantError(f"Root neuron at {index}, expected {position}")
            position = self._info[self._genome[index].id].end
        if position != len(self._genome):
            raise InvariantError("Root subgenomes do not cover the genome")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, inputs: Sequence[float]) -> List[float]:
        """
        Evaluate the network once and return one value per root neuron.

        Missing inputs read as zero and extra inputs are ignored. State is
        carried over from the previous call through recurrent jumpers;
        call ``clear_state`` first when that is not wanted.
        """
        for info in self._info.values():
            neuron = self._genome[info.index]
            neuron.previous_value = neuron.value

        stack = self._evaluate_range(0, len(self._genome), inputs)
        # The last root is evaluated first and sits at the bottom
        stack.reverse()
        return stack

    def _evaluate_range(self, start: int, end: int, inputs: Sequence[float]) -> List[float]:
        stack: List[float] = []
        genome = self._genome
        activation = self.activation

        for i in range(end - 1, start - 1, -1):
            gene = genome[i]

            if isinstance(gene, Input):
                gene.value = float(inputs[gene.id]) if gene.id < len(inputs) else 0.0
                stack.append(gene.weight * gene.value)
            elif isinstance(gene, Neuron):
                count = gene.input_count
                if len(stack) < count:
                    raise InvariantError(f"Stack underflow at neuron {gene.id}")
                total = sum(stack[-count:])
                del stack[-count:]
                gene.value = activation(total)
                stack.append(gene.weight * gene.value)
            elif isinstance(gene, Bias):
                stack.append(gene.weight * BIAS_VALUE)
            elif isinstance(gene, ForwardJumper):
                source = self._info.get(gene.source_id)
                if source is None:
                    raise InvariantError(f"Missing forward jumper source {gene.source_id}")
                result = self._evaluate_range(source.index, source.end, inputs)
                stack.append(gene.weight * result[0])
            elif isinstance(gene, RecurrentJumper):
                source = self._info.get(gene.source_id)
                if source is None:
                    raise InvariantError(f"Missing recurrent jumper source {gene.source_id}")
                stack.append(gene.weight * genome[source.index].previous_value)
            else:
                raise InvariantError(f"Unknown gene type {type(gene).__name__}")

        return stack

    def clear_state(self) -> None:
        """Reset every stored input and neuron value to zero."""
        for gene in self._genome:
            if isinstance(gene, Neuron):
                gene.value = 0.0
                gene.previous_value = 0.0
            elif isinstance(gene, Input):
                gene.value = 0.0

    # ------------------------------------------------------------------
    # Recurrent state
    # ------------------------------------------------------------------

    def recurrent_state_len(self) -> int:
        return len(self._info)

    def recurrent_state(self) -> List[float]:
        """Stored neuron values, in genome order."""
        return [self._genome[info.index].value for info in self._info.values()]

    def set_recurrent_state(self, state: Sequence[float]) -> None:
        if len(state) != len(self._info):
            raise ValueError(
                f"Expected {len(self._info)} state values, got {len(state)}"
            )
        for info, value in zip(self._info.values(), state):
            self._genome[info.index].value = float(value)

    def map_recurrent_state(self, fn: Callable[[int, float], float]) -> None:
        """Replace each stored neuron value with ``fn(position, value)``."""
        for position, info in enumerate(self._info.values()):
            neuron = self._genome[info.index]
            neuron.value = float(fn(position, neuron.value))

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def weights(self) -> np.ndarray:
        return np.array([gene.weight for gene in self._genome], dtype=float)

    def set_weights(self, weights: Sequence[float]) -> None:
        if len(weights) != len(self._genome):
            raise ValueError(
                f"Expected {len(self._genome)} weights, got {len(weights)}"
            )
        for gene, weight in zip(self._genome, weights):
            gene.weight = float(weight)

    # ------------------------------------------------------------------
    # Structural accessors
    # ------------------------------------------------------------------

    @property
    def genome(self) -> Tuple[Gene, ...]:
        return tuple(self._genome)

    @property
    def num_outputs(self) -> int:
        return len(self._roots)

    @property
    def next_neuron_id(self) -> int:
        return self._next_id

    def __len__(self) -> int:
        return len(self._genome)

    def __getitem__(self, index: int) -> Gene:
        return self._genome[index]

    def __iter__(self) -> Iterator[Gene]:
        return iter(self._genome)

    def __repr__(self) -> str:
        return (
            f"Network(genes={len(self._genome)}, neurons={len(self._info)}, "
            f"outputs={self.num_outputs}, activation={self.activation.value})"
        )

    def neuron_ids(self) -> List[int]:
        """Neuron ids in genome order."""
        return list(self._info)

    def neuron_info(self, neuron_id: int) -> NeuronInfo:
        try:
            return self._info[neuron_id]
        except KeyError:
            raise InvariantError(f"No neuron with id {neuron_id}") from None

    def neuron_infos(self) -> List[NeuronInfo]:
        return list(self._info.values())

    def has_neuron(self, neuron_id: int) -> bool:
        return neuron_id in self._info

    def parent_of(self, index: int) -> Optional[int]:
        """Id of the neuron directly containing the gene at ``index``."""
        return self._parents[index]

    def parents(self) -> List[Optional[int]]:
        return list(self._parents)

    def direct_children(self, neuron_id: int) -> List[Tuple[int, Gene]]:
        """(index, gene) pairs of a neuron's direct children."""
        info = self.neuron_info(neuron_id)
        children = []
        i = info.index + 1
        while i < info.end:
            gene = self._genome[i]
            children.append((i, gene))
            i = self._info[gene.id].end if isinstance(gene, Neuron) else i + 1
        return children

    def get_valid_forward_jumper_sources(self, parent_depth: int) -> List[int]:
        """Ids of neurons a forward jumper inside a neuron of ``parent_depth`` may read."""
        return [nid for nid, info in self._info.items() if info.depth > parent_depth]

    def get_valid_removals(self) -> List[int]:
        """Indices of non-neuron genes whose parent keeps at least one input."""
        removals = []
        for i, gene in enumerate(self._genome):
            if isinstance(gene, Neuron):
                continue
            parent = self._genome[self._info[self._parents[i]].index]
            if parent.input_count > 1:
                removals.append(i)
        return removals

    def input_connection_counts(self) -> Dict[int, int]:
        """Number of input genes per network input id."""
        counts: Dict[int, int] = {}
        for gene in self._genome:
            if isinstance(gene, Input):
                counts[gene.id] = counts.get(gene.id, 0) + 1
        return counts

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------

    def _check_source(self, gene: Gene, parent_depth: int) -> None:
        if isinstance(gene, (ForwardJumper, RecurrentJumper)):
            source = self._info.get(gene.source_id)
            if source is None:
                raise InvariantError(f"Jumper source {gene.source_id} does not exist")
            if isinstance(gene, ForwardJumper) and source.depth <= parent_depth:
                raise InvariantError(
                    f"Forward jumper source {gene.source_id} is not deeper than {parent_depth}"
                )

    def add_non_neuron(self, parent_id: int, gene: NonNeuronGene) -> int:
        """Insert ``gene`` as the first child of ``parent_id``; returns its index."""
        if isinstance(gene, Neuron):
            raise InvariantError("Use add_subnetwork to add neurons")
        parent = self.neuron_info(parent_id)
        self._check_source(gene, parent.depth)

        index = parent.index + 1
        self._genome.insert(index, gene)
        self._genome[parent.index].input_count += 1
        self._rebuild()
        return index

    def add_subnetwork(
        self,
        parent_id: int,
        weight: float,
        inputs: Sequence[NonNeuronGene],
    ) -> int:
        """
        Insert a new neuron with ``inputs`` as its children under ``parent_id``.

        The subgenome starts at ``parent index + 1`` and spans
        ``1 + len(inputs)`` genes. Returns the new neuron's id.
        """
        if not inputs:
            raise InvariantError("A subnetwork needs at least one input")
        parent = self.neuron_info(parent_id)
        for gene in inputs:
            if isinstance(gene, Neuron):
                raise InvariantError("Subnetwork inputs cannot be neurons")
            self._check_source(gene, parent.depth + 1)

        new_id = self._next_id
        index = parent.index + 1
        self._genome[index:index] = [Neuron(new_id, len(inputs), weight), *inputs]
        self._genome[parent.index].input_count += 1
        self._next_id += 1
        self._rebuild()
        return new_id

    def remove_non_neuron(self, index: int) -> NonNeuronGene:
        """Remove the non-neuron gene at ``index`` and return it."""
        gene = self._genome[index]
        if isinstance(gene, Neuron):
            raise InvariantError(f"Gene at index {index} is a neuron")
        parent = self._genome[self._info[self._parents[index]].index]
        if parent.input_count <= 1:
            raise InvariantError(f"Removing index {index} would leave neuron {parent.id} without inputs")

        del self._genome[index]
        parent.input_count -= 1
        self._rebuild()
        return gene

    def copy(self) -> Network:
        network = Network([dataclasses.replace(g) for g in self._genome], self.activation)
        network._next_id = self._next_id
        return network
