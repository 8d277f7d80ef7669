"""
Fold kernels backing the reduction launches.

Blocks are folded left to right and block partials are combined as a pairwise tree.
Only the associative fold value is guaranteed: the grouping depends on the block
configuration, so floating point results can differ between configurations.
"""

from functools import reduce
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence
    from typing import Any

    from .task import BinaryOp


def fold(op: "BinaryOp", values: "Sequence[Any]") -> "Any":
    """Fold a non-empty run of elements. A single element is returned as is."""
    if isinstance(op, np.ufunc) and isinstance(values, np.ndarray):
        return op.reduce(values)

    return reduce(op, values)


def tree_combine(op: "BinaryOp", partials: "Sequence[Any]") -> "Any":
    level = list(partials)

    while len(level) > 1:
        level = [
            op(level[i], level[i + 1]) if i + 1 < len(level) else level[i]
            for i in range(0, len(level), 2)
        ]

    return level[0]
