r"""Reader for block-structured SVM-light style sequence files.

One line per sequence position::

    LABEL feature[:value] feature[:value] ...

A feature without ``:value`` has value ``1.0``. A line whose first token
contains ``:`` has no label; such lines make up unlabeled sequences.
Sequences are separated by blank lines, and lines starting with ``#`` are
comments. Example::

    # two labeled sequences
    B w=the cap:0
    I w=Dog cap:1

    O w=runs
"""

import logging
import os
from collections.abc import Iterable, Iterator
from typing import Optional, Union

__all__ = ["parse_blocks", "read_instances", "Block"]

logger = logging.getLogger(__name__)

# (positions, labels or None); each position maps feature -> value
Block = tuple[list[dict[str, float]], Optional[list[str]]]


def _parse_feature(token: str, line_number: int) -> tuple[str, float]:
    name, sep, value = token.rpartition(":")
    if not sep:
        return token, 1.0
    if not name:
        raise ValueError(f"line {line_number}: empty feature name in {token!r}")
    try:
        return name, float(value)
    except ValueError:
        raise ValueError(f"line {line_number}: bad feature value in {token!r}") from None


def _parse_line(line: str, line_number: int) -> tuple[Optional[str], dict[str, float]]:
    tokens = line.split()
    label = None
    if ":" not in tokens[0]:
        label, tokens = tokens[0], tokens[1:]
    position: dict[str, float] = {}
    for token in tokens:
        name, value = _parse_feature(token, line_number)
        position[name] = position.get(name, 0.0) + value
    return label, position


def parse_blocks(lines: Iterable[str]) -> Iterator[Block]:
    r"""Split lines into sequences.

    Args:
        lines: Text lines, with or without trailing newlines.

    Yields:
        Block: ``(positions, labels)``; ``labels`` is ``None`` for an
        unlabeled sequence.

    Raises:
        ValueError: On a malformed feature token, or a sequence that mixes
            labeled and unlabeled lines (the message names the line).
    """
    positions, labels = [], []
    labeled = None
    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if line.startswith("#"):
            continue
        if not line:
            if positions:
                yield positions, (labels if labeled else None)
            positions, labels, labeled = [], [], None
            continue
        label, position = _parse_line(line, line_number)
        if labeled is None:
            labeled = label is not None
        elif labeled != (label is not None):
            raise ValueError(f"line {line_number}: sequence mixes labeled and unlabeled lines")
        positions.append(position)
        if label is not None:
            labels.append(label)
    if positions:
        yield positions, (labels if labeled else None)


def read_instances(path: Union[str, os.PathLike]) -> list[Block]:
    """Read every sequence of a file (see :func:`parse_blocks`)."""
    with open(path, encoding="utf-8") as f:
        blocks = list(parse_blocks(f))
    n_labeled = sum(1 for _, labels in blocks if labels is not None)
    logger.info(
        f"Read {len(blocks)} sequences from {path} "
        f"({n_labeled} labeled, {len(blocks) - n_labeled} unlabeled)"
    )
    return blocks
