"""
eant2/cge/

Common Genetic Encoding: a recurrent neural network stored as a flat,
order-significant list of genes and evaluated with a value stack.
"""

from .activation import Activation, DEFAULT_ACTIVATION
from .gene import (
    INITIAL_WEIGHT_VALUE,
    Bias,
    ForwardJumper,
    Gene,
    Input,
    Neuron,
    NeuronInfo,
    RecurrentJumper,
)
from .network import Network
from .encoding import from_dict, from_file, from_json, to_dict, to_file, to_json

__all__ = [
    "Activation",
    "DEFAULT_ACTIVATION",
    "INITIAL_WEIGHT_VALUE",
    "Bias",
    "ForwardJumper",
    "Gene",
    "Input",
    "Neuron",
    "NeuronInfo",
    "RecurrentJumper",
    "Network",
    "from_dict",
    "from_file",
    "from_json",
    "to_dict",
    "to_file",
    "to_json",
]
