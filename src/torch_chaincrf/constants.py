r"""Shared constants for the linear-chain CRF.

Attributes:
    NEG_INF (float): Log-space zero. Set to ``-1e9`` rather than
        ``float('-inf')`` so that lattice charts stay finite and
        differentiable.
    IMPOSSIBLE_WEIGHT (float): Initial-state weight of every state other than
        the designated start state.
    DEFAULT_LABEL (str): History padding label; names the start state.
"""

NEG_INF = -1e9
IMPOSSIBLE_WEIGHT = NEG_INF

DEFAULT_LABEL = "label_start"
DEFAULT_ORDER = 1
DEFAULT_VARIANCE = 100.0
DEFAULT_ITERATIONS = 500
DEFAULT_L1_WEIGHT = 1.0
DEFAULT_ENTROPY_WEIGHT = 0.5

MODEL_FORMAT = "torch_chaincrf"
MODEL_VERSION = 1


def is_impossible(score) -> bool:
    """True when ``score`` only carries sentinel mass (no real path)."""
    return float(score) <= NEG_INF / 2
