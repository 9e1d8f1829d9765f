"""
eant2/cge/encoding.py

Serialization of networks.

A network is stored as a dictionary (and from there JSON):

    {
        "version": 1,
        "activation": "tanh",
        "metadata": {"description": "..."},
        "genome": [
            {"kind": "neuron", "id": 0, "inputs": 2, "weight": 1.0},
            {"kind": "input", "id": 1, "weight": 0.5},
            ...
        ],
        "recurrent_state": [0.0, ...]      # optional
    }

Weights are written with Python's shortest round-trip float repr, so a
decoded network is bit-for-bit identical to the one that was encoded.
"""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional

from eant2.errors import EncodingError, InvariantError

from .gene import Bias, ForwardJumper, Gene, Input, Neuron, RecurrentJumper, gene_kind
from .network import Network

FORMAT_VERSION = 1


def _encode_gene(gene: Gene) -> Dict[str, Any]:
    data: Dict[str, Any] = {"kind": gene_kind(gene)}
    if isinstance(gene, Neuron):
        data["id"] = gene.id
        data["inputs"] = gene.input_count
    elif isinstance(gene, Input):
        data["id"] = gene.id
    elif isinstance(gene, (ForwardJumper, RecurrentJumper)):
        data["source"] = gene.source_id
    data["weight"] = gene.weight
    return data


def _decode_gene(data: Dict[str, Any]) -> Gene:
    kind = data.get("kind")
    weight = float(data["weight"])
    if not math.isfinite(weight):
        raise EncodingError(f"Non-finite weight {weight}")

    if kind == "neuron":
        return Neuron(int(data["id"]), int(data["inputs"]), weight)
    if kind == "input":
        return Input(int(data["id"]), weight)
    if kind == "bias":
        return Bias(weight)
    if kind == "forward":
        return ForwardJumper(int(data["source"]), weight)
    if kind == "recurrent":
        return RecurrentJumper(int(data["source"]), weight)
    raise EncodingError(f"Unknown gene kind: {kind!r}")


def to_dict(
    network: Network,
    metadata: Optional[Dict[str, Any]] = None,
    with_recurrent_state: bool = False,
) -> Dict[str, Any]:
    """Serialize a network to a JSON-compatible dictionary."""
    data: Dict[str, Any] = {
        "version": FORMAT_VERSION,
        "activation": network.activation.value,
        "metadata": dict(metadata or {}),
        "genome": [_encode_gene(gene) for gene in network],
    }
    if with_recurrent_state:
        data["recurrent_state"] = network.recurrent_state()
    return data


def from_dict(data: Dict[str, Any]) -> Network:
    """Rebuild a network, validating every genome invariant."""
    try:
        version = data.get("version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise EncodingError(f"Unsupported format version {version}")
        genome: List[Gene] = [_decode_gene(g) for g in data["genome"]]
        network = Network(genome, data.get("activation", "tanh"))
        network.validate()
    except EncodingError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise EncodingError(f"Malformed network data: {e}") from e
    except InvariantError as e:
        raise EncodingError(f"Invalid genome: {e}") from e

    state = data.get("recurrent_state")
    if state is not None:
        try:
            network.set_recurrent_state(state)
        except ValueError as e:
            raise EncodingError(str(e)) from e
    return network


def to_json(network: Network, metadata: Optional[Dict[str, Any]] = None,
            with_recurrent_state: bool = False, indent: Optional[int] = None) -> str:
    return json.dumps(
        to_dict(network, metadata, with_recurrent_state),
        indent=indent,
        allow_nan=False,
    )


def from_json(text: str) -> Network:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise EncodingError(f"Invalid JSON: {e}") from e
    return from_dict(data)


def to_file(network: Network, path: str | Path, metadata: Optional[Dict[str, Any]] = None,
            with_recurrent_state: bool = False, overwrite: bool = True) -> Path:
    path = Path(path)
    if path.exists() and not overwrite:
        raise FileExistsError(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_json(network, metadata, with_recurrent_state, indent=2))
    return path


def from_file(path: str | Path) -> Network:
    return from_json(Path(path).read_text())
