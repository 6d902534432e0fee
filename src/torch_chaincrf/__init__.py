r"""Linear-chain conditional random fields over sparse features.

An order-N linear-chain CRF scores a whole label sequence :math:`y` for an
input sequence :math:`x` of sparse feature vectors and normalizes by a single
partition function:

.. math::

    \log p(y \mid x) = \text{score}(x, y) - \log Z(x)

Training maximizes the regularized conditional log-likelihood with L-BFGS
(Gaussian prior, entropy regularization) or proximal gradient (L1); inference
returns the Viterbi path or the log-probability of a candidate path.

Quick start::

    from torch_chaincrf import SequenceTagger

    tagger = SequenceTagger(order=1)
    tagger.configure("l2", variance=100.0, iteration_budget=200)
    tagger.train([([{"w=the": 1.0}, {"w=dog": 1.0}], ["DET", "NOUN"])])
    tagger.predict([["w=the"], ["w=cat"]])

Lower-level pieces (:class:`StateGraph`, :class:`SumLattice`,
:func:`viterbi`, :class:`TrainingObjective`, :class:`CRFTrainer`) are
exported for callers who manage instances and training runs themselves.
"""

from .alphabet import Alphabet, FrozenAlphabet
from .constants import DEFAULT_LABEL, IMPOSSIBLE_WEIGHT, NEG_INF
from .data import parse_blocks, read_instances
from .errors import (
    ChainCRFError,
    IncompatibleModel,
    IndexOutOfRange,
    InvalidConfiguration,
    ModelInTraining,
    NoValidPath,
    TrainingDiverged,
    UnknownSymbol,
)
from .features import FeatureVector, Instance, InstanceEncoder
from .lattice import SumLattice, transition_weights
from .model import ChainCRF
from .objective import (
    EntropyRegularization,
    GaussianPrior,
    L1Prior,
    TrainingObjective,
    make_regularization,
)
from .optim import ProximalGradient
from .parameters import ParameterStore
from .semirings import LogSemiring, MaxSemiring
from .serialization import load_model, save_model
from .state_graph import State, StateGraph, Transition
from .tagger import SequenceTagger
from .trainer import CRFTrainer, TrainerConfig
from .viterbi import ViterbiPath, viterbi

__version__ = "0.1.0"

__all__ = [
    # Facade
    "SequenceTagger",
    # Model
    "ChainCRF",
    "save_model",
    "load_model",
    # Symbols and data
    "Alphabet",
    "FrozenAlphabet",
    "FeatureVector",
    "Instance",
    "InstanceEncoder",
    "parse_blocks",
    "read_instances",
    # Structure and weights
    "State",
    "Transition",
    "StateGraph",
    "ParameterStore",
    # Inference
    "LogSemiring",
    "MaxSemiring",
    "SumLattice",
    "transition_weights",
    "ViterbiPath",
    "viterbi",
    # Training
    "GaussianPrior",
    "L1Prior",
    "EntropyRegularization",
    "make_regularization",
    "TrainingObjective",
    "ProximalGradient",
    "TrainerConfig",
    "CRFTrainer",
    # Errors
    "ChainCRFError",
    "UnknownSymbol",
    "IndexOutOfRange",
    "NoValidPath",
    "TrainingDiverged",
    "IncompatibleModel",
    "InvalidConfiguration",
    "ModelInTraining",
    # Constants
    "NEG_INF",
    "IMPOSSIBLE_WEIGHT",
    "DEFAULT_LABEL",
]
