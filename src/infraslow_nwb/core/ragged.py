"""
Ragged array encoding.

Variable-length per-entity sequences are stored as one flat data vector plus
one index vector of end offsets, the convention used by NWB indexed columns:

    groups = [[1, 2], [], [3]]
    flat   = [1, 2, 3]
    index  = [2, 2, 3]

Group ``i`` is ``flat[index[i-1]:index[i]]`` with the offset before the first
group taken as 0. Nested ragged arrays ("index of indices") are built by
applying the same encoding level by level; every outer index holds offsets into
the next inner index.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from infraslow_nwb.utils.exceptions import ShapeMismatchError


INDEX_DTYPE = np.int64


@dataclass(frozen=True)
class RaggedArray:
    """
    Flat data plus end-offset index.

    Attributes:
        flat: Concatenated contents of all groups
        index: End offset of every group (one entry per group)
    """
    flat: np.ndarray
    index: np.ndarray

    def __len__(self) -> int:
        return len(self.index)

    def __getitem__(self, i: int) -> np.ndarray:
        n = len(self.index)
        if i < 0:
            i += n
        if not 0 <= i < n:
            raise IndexError(f"group {i} out of range for {n} groups")
        start = int(self.index[i - 1]) if i > 0 else 0
        return self.flat[start:int(self.index[i])]

    def groups(self) -> List[np.ndarray]:
        """Decoded groups."""
        return decode(self.flat, self.index)


def boundaries(lengths: Sequence[int]) -> np.ndarray:
    """End offsets for groups of the given lengths."""
    return np.cumsum(np.asarray(lengths, dtype=INDEX_DTYPE), dtype=INDEX_DTYPE)


def encode(groups: Sequence[Sequence[Any]], dtype: Optional[Any] = None) -> RaggedArray:
    """
    Concatenate groups and record their end offsets.

    Args:
        groups: Sequence of per-entity sequences (may contain empty groups)
        dtype: Optional dtype for the flat vector

    Returns:
        RaggedArray with ``len(index) == len(groups)``

    Example:
        >>> r = encode([[0.1, 0.2], [], [0.3]])
        >>> r.flat.tolist(), r.index.tolist()
        ([0.1, 0.2, 0.3], [2, 2, 3])
    """
    arrays = [np.asarray(g, dtype=dtype).ravel() for g in groups]
    index = boundaries([a.size for a in arrays])

    non_empty = [a for a in arrays if a.size > 0]
    if non_empty:
        flat = np.concatenate(non_empty)
    else:
        flat = np.empty(0, dtype=dtype if dtype is not None else np.float64)
    if dtype is not None:
        flat = flat.astype(dtype, copy=False)

    return RaggedArray(flat=flat, index=index)


def _check_index(index: np.ndarray, n_items: int, level: str = "index") -> np.ndarray:
    index = np.asarray(index)
    if index.ndim != 1:
        raise ShapeMismatchError(
            f"{level} must be one-dimensional, got shape {index.shape}",
            entity=level,
            expected=1,
            actual=index.ndim,
        )
    if index.size == 0:
        if n_items != 0:
            raise ShapeMismatchError(
                f"Empty {level} cannot describe {n_items} elements",
                entity=level,
                expected=0,
                actual=n_items,
            )
        return index.astype(INDEX_DTYPE)

    index = index.astype(INDEX_DTYPE)
    if index[0] < 0 or np.any(np.diff(index) < 0):
        raise ShapeMismatchError(
            f"{level} must be non-negative and non-decreasing",
            entity=level,
        )
    if index[-1] != n_items:
        raise ShapeMismatchError(
            f"Last {level} value {int(index[-1])} does not match data length {n_items}",
            entity=level,
            expected=n_items,
            actual=int(index[-1]),
        )
    return index


def decode(flat: Sequence[Any], index: Sequence[int]) -> List[Any]:
    """
    Split flat data into groups using end offsets.

    Exact inverse of ``encode``. ``flat`` may be a numpy array or a list
    (for instance the groups returned by a previous decode).

    Raises:
        ShapeMismatchError: If the index does not fit ``flat``
    """
    index = _check_index(index, len(flat))
    starts = np.concatenate(([0], index[:-1])) if index.size else index
    return [flat[int(s):int(e)] for s, e in zip(starts, index)]


def encode_nested(
    nested: Sequence[Any],
    depth: int = 2,
    dtype: Optional[Any] = None,
) -> Tuple[np.ndarray, List[np.ndarray]]:
    """
    Encode a ``depth``-level ragged structure.

    For depth 2, ``nested[u][c]`` is the sample vector of channel ``c`` of
    unit ``u``: the flat vector holds all samples, the first index holds one
    end offset per channel row, the second index one end offset per unit into
    the first index.

    Args:
        nested: Nested sequences, ``depth`` levels above the flat elements
        depth: Number of ragged levels (>= 1)
        dtype: Optional dtype for the flat vector

    Returns:
        (flat, indexes) with indexes ordered innermost first
    """
    if depth < 1:
        raise ValueError(f"depth must be >= 1, got {depth}")

    outer: List[np.ndarray] = []
    level: List[Any] = list(nested)
    for _ in range(depth - 1):
        outer.append(boundaries([len(group) for group in level]))
        level = [item for group in level for item in group]

    inner = encode(level, dtype=dtype)
    return inner.flat, [inner.index] + outer[::-1]


def decode_nested(flat: Sequence[Any], indexes: Sequence[Sequence[int]]) -> List[Any]:
    """
    Inverse of ``encode_nested``.

    Args:
        flat: Flat data
        indexes: Index vectors, innermost first

    Raises:
        ShapeMismatchError: If any index level does not fit the level below
    """
    if len(indexes) == 0:
        raise ValueError("At least one index level is required")

    groups: List[Any] = decode(flat, indexes[0])
    for level, index in enumerate(indexes[1:], start=1):
        index = _check_index(index, len(groups), level=f"index level {level}")
        starts = np.concatenate(([0], index[:-1])) if index.size else index
        groups = [groups[int(s):int(e)] for s, e in zip(starts, index)]
    return groups
