"""
eant2/cge/gene.py

Gene kinds of the Common Genetic Encoding (CGE).

A genome is a flat list of genes in pre-order. A neuron gene is followed by
its children; a child is either a leaf (input, bias, jumper) or another
neuron together with its own children. The set of kinds is closed:

- Neuron:          sums ``input_count`` children, applies the activation
- Input:           reads one value of the external input vector
- Bias:            constant 1.0
- ForwardJumper:   re-reads the output of a deeper neuron's subnetwork
- RecurrentJumper: reads a neuron's value from the previous evaluation
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

# Weight given to every gene created by initialization or mutation
INITIAL_WEIGHT_VALUE = 1.0

BIAS_VALUE = 1.0


@dataclass
class Neuron:
    """Hidden or output neuron."""

    id: int
    input_count: int
    weight: float = INITIAL_WEIGHT_VALUE
    # Activation output of the current evaluation
    value: float = 0.0
    # Activation output of the previous evaluation, read by recurrent jumpers
    previous_value: float = 0.0


@dataclass
class Input:
    """Connection from a network input."""

    id: int
    weight: float = INITIAL_WEIGHT_VALUE
    value: float = 0.0


@dataclass
class Bias:
    """Constant input."""

    weight: float = INITIAL_WEIGHT_VALUE


@dataclass
class ForwardJumper:
    """Connection from the output of a deeper neuron."""

    source_id: int
    weight: float = INITIAL_WEIGHT_VALUE


@dataclass
class RecurrentJumper:
    """Connection from the previous value of any neuron."""

    source_id: int
    weight: float = INITIAL_WEIGHT_VALUE


Gene = Union[Neuron, Input, Bias, ForwardJumper, RecurrentJumper]
NonNeuronGene = Union[Input, Bias, ForwardJumper, RecurrentJumper]

GENE_KINDS = {
    "neuron": Neuron,
    "input": Input,
    "bias": Bias,
    "forward": ForwardJumper,
    "recurrent": RecurrentJumper,
}
_KIND_NAMES = {cls: name for name, cls in GENE_KINDS.items()}


def gene_kind(gene: Gene) -> str:
    """Name of a gene's kind (``neuron``, ``input``, ...)."""
    return _KIND_NAMES[type(gene)]


def is_neuron(gene: Gene) -> bool:
    return isinstance(gene, Neuron)


@dataclass(frozen=True)
class NeuronInfo:
    """Position of a neuron inside a genome.

    ``subgenome`` is the half-open index range ``[start, end)`` holding the
    neuron gene and all of its descendants.
    """

    id: int
    index: int
    depth: int
    end: int

    @property
    def subgenome(self) -> range:
        return range(self.index, self.end)
