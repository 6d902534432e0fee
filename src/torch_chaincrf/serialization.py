r"""Model persistence.

A model is written with :func:`torch.save` as one dictionary:

.. code-block:: python

    {
        "format": "torch_chaincrf",
        "version": 1,
        "order": int,
        "default_label": str,
        "feature_names": list[str],
        "label_names": list[str],
        "states": list[list[str]],        # histories, start state first
        "start_state": int,
        "transitions": LongTensor (E, 3), # source, destination, label index
        "parameters": dict[str, Tensor],  # ParameterStore.state_dict()
    }

and read back with ``torch.load(..., weights_only=True)``, so loading never
executes pickled code. Float64 tensors round-trip bit-exactly.
"""

import logging
import os
import pickle
from typing import BinaryIO, Optional, Union

import torch

from .alphabet import Alphabet
from .constants import MODEL_FORMAT, MODEL_VERSION
from .errors import IncompatibleModel
from .model import ChainCRF
from .parameters import ParameterStore
from .state_graph import StateGraph
from .validation import validate_order

__all__ = ["save_model", "load_model"]

logger = logging.getLogger(__name__)

Target = Union[str, os.PathLike, BinaryIO]

_REQUIRED_KEYS = (
    "format",
    "version",
    "order",
    "default_label",
    "feature_names",
    "label_names",
    "states",
    "start_state",
    "transitions",
    "parameters",
)


def save_model(crf: ChainCRF, target: Target) -> None:
    r"""Write ``crf`` to a path or binary stream.

    Args:
        crf (ChainCRF): Model to write.
        target: File path or writable binary stream.
    """
    topology = crf.graph.topology()
    payload = {
        "format": MODEL_FORMAT,
        "version": MODEL_VERSION,
        "order": crf.order,
        "default_label": crf.default_label,
        "feature_names": crf.feature_alphabet.names(),
        "label_names": crf.label_alphabet.names(),
        "states": topology["states"],
        "start_state": crf.graph.start.index,
        "transitions": topology["transitions"],
        "parameters": {k: v.detach().clone() for k, v in crf.params.state_dict().items()},
    }
    torch.save(payload, target)
    logger.debug(f"Saved {crf!r}")


def load_model(source: Target, order: Optional[int] = None) -> ChainCRF:
    r"""Read a model written by :func:`save_model`.

    Args:
        source: File path or readable binary stream.
        order (int, optional): Markov order the caller is configured for.
            ``None`` accepts whatever order was saved. Default: ``None``

    Returns:
        ChainCRF: The model, with frozen alphabets.

    Raises:
        IncompatibleModel: Wrong format or version, an order different from
            ``order``, or inconsistent alphabets, graph or parameter shapes.
    """
    if order is not None:
        validate_order(order)
    try:
        payload = torch.load(source, map_location="cpu", weights_only=True)
    except (RuntimeError, EOFError, ValueError, pickle.UnpicklingError) as e:
        raise IncompatibleModel(f"could not read model: {e}") from e

    if not isinstance(payload, dict):
        raise IncompatibleModel("model payload is not a dictionary")
    missing = [key for key in _REQUIRED_KEYS if key not in payload]
    if missing:
        raise IncompatibleModel(f"model payload is missing {', '.join(missing)}")
    if payload["format"] != MODEL_FORMAT:
        raise IncompatibleModel(f"unexpected model format {payload['format']!r}")
    if payload["version"] != MODEL_VERSION:
        raise IncompatibleModel(
            f"unsupported model version {payload['version']} (expected {MODEL_VERSION})"
        )
    if order is not None and payload["order"] != order:
        raise IncompatibleModel(
            f"model was trained with order {payload['order']}, loader is configured "
            f"for order {order}"
        )

    features = Alphabet(kind="feature alphabet")
    labels = Alphabet(kind="label alphabet")
    for alphabet, names in ((features, payload["feature_names"]), (labels, payload["label_names"])):
        for name in names:
            alphabet.index_of(name)
        if len(alphabet) != len(names):
            raise IncompatibleModel(f"duplicate names in stored {alphabet.kind}")

    graph = StateGraph.from_topology(
        {
            "order": payload["order"],
            "default_label": payload["default_label"],
            "states": payload["states"],
            "transitions": payload["transitions"],
        },
        labels.frozen(),
    )
    if payload["start_state"] != graph.start.index:
        raise IncompatibleModel(f"unexpected start state {payload['start_state']}")

    params = ParameterStore(len(labels), len(features), graph.num_transitions, graph.num_states)
    try:
        params.load_state_dict(payload["parameters"])
    except (RuntimeError, KeyError) as e:
        raise IncompatibleModel(f"stored parameters do not match the model: {e}") from e

    crf = ChainCRF(features.frozen(), labels.frozen(), graph, params)
    logger.debug(f"Loaded {crf!r}")
    return crf
