"""
EANT2: Evolutionary Acquisition of Neural Topologies

Evolves compact recurrent neural networks encoded as a linear genome (CGE).
Structure is explored by mutation and diversity-preserving selection while
the connection weights of every candidate are tuned by CMA-ES.
"""

__version__ = "0.1.0"
