r"""Exception hierarchy for torch-chaincrf.

Every error derives from :class:`ChainCRFError` and from the builtin it
specializes, so ``except KeyError`` and friends keep working.
"""

from typing import Optional

__all__ = [
    "ChainCRFError",
    "UnknownSymbol",
    "IndexOutOfRange",
    "NoValidPath",
    "TrainingDiverged",
    "IncompatibleModel",
    "InvalidConfiguration",
    "ModelInTraining",
]


class ChainCRFError(Exception):
    """Base class for all torch-chaincrf errors."""


class UnknownSymbol(ChainCRFError, KeyError):
    """Lookup of a name that a frozen alphabet does not contain."""

    def __init__(self, symbol, alphabet: str = "alphabet"):
        self.symbol = symbol
        self.alphabet = alphabet
        super().__init__(f"unknown symbol {symbol!r} in frozen {alphabet}")

    def __str__(self):
        return self.args[0]


class IndexOutOfRange(ChainCRFError, IndexError):
    """Alphabet index outside ``[0, size)``."""

    def __init__(self, index: int, size: int):
        self.index = index
        self.size = size
        super().__init__(f"index {index} out of range for alphabet of size {size}")


class NoValidPath(ChainCRFError):
    """No final state is reachable for the given input."""

    def __init__(self, length: int, detail: str = ""):
        self.length = length
        message = f"no valid label path for input of length {length}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class TrainingDiverged(ChainCRFError, RuntimeError):
    """Objective or gradient became non-finite during training."""

    def __init__(
        self,
        message: str,
        iteration: Optional[int] = None,
        instance_index: Optional[int] = None,
    ):
        self.iteration = iteration
        self.instance_index = instance_index
        context = []
        if iteration is not None:
            context.append(f"iteration={iteration}")
        if instance_index is not None:
            context.append(f"instance={instance_index}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class IncompatibleModel(ChainCRFError, ValueError):
    """Persisted model does not match the loader's format, version or shape."""


class InvalidConfiguration(ChainCRFError, ValueError):
    """Unknown regularization mode or out-of-range training parameter."""


class ModelInTraining(ChainCRFError, RuntimeError):
    """Inference requested on a model that is currently being trained."""
