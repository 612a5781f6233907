from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

__all__ = ["Axis", "Histogram"]


@dataclass(frozen=True)
class Axis:
    r"""
    Fixed-width binning ``nbins`` bins over ``[low, high)``.

    Bin :math:`k` covers :math:`[\,\text{low} + k\,w,\ \text{low} + (k+1)\,w\,)`
    with :math:`w = (\text{high}-\text{low})/n_\text{bins}`.
    """
    name: str
    nbins: int
    low: float
    high: float

    def __post_init__(self) -> None:
        if int(self.nbins) <= 0:
            raise ValueError(f"axis '{self.name}': nbins must be positive")
        if not float(self.high) > float(self.low):
            raise ValueError(f"axis '{self.name}': high must exceed low")

    @property
    def width(self) -> float:
        return (float(self.high) - float(self.low)) / int(self.nbins)

    @property
    def edges(self) -> np.ndarray:
        return np.linspace(float(self.low), float(self.high), int(self.nbins) + 1)

    @property
    def centers(self) -> np.ndarray:
        e = self.edges
        return 0.5 * (e[:-1] + e[1:])

    def index(self, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Bin index of each value and a mask of values inside the axis range.

        Non-finite values are always outside the range.
        """
        v = np.asarray(values, dtype=np.float64)
        inside = np.isfinite(v) & (v >= self.low) & (v < self.high)
        idx = np.zeros(v.shape, dtype=np.int64)
        idx[inside] = np.floor((v[inside] - self.low) / self.width).astype(np.int64)
        # guard float rounding right below `high`
        np.clip(idx, 0, int(self.nbins) - 1, out=idx)
        return idx, inside


class Histogram:
    r"""
    N-dimensional fixed-binning histogram backed by a NumPy array.

    Fills are accumulated event by event in the style of a running
    ``np.histogram`` sum. Values outside any axis range (or non-finite) are not
    binned but are counted in :attr:`overflow`, so no fill is lost silently.

    Parameters
    ----------
    name : str
        Distribution key.
    axes : sequence of Axis
        One axis per dimension.

    Attributes
    ----------
    counts : ndarray
        Sum of weights per bin, shape ``tuple(a.nbins for a in axes)``.
    entries : int
        Number of fill calls' values (binned or not).
    overflow : float
        Sum of weights of values outside the axes.
    """
    __slots__ = ("name", "axes", "counts", "entries", "overflow")

    def __init__(self, name: str, axes: Sequence[Axis]) -> None:
        if not axes:
            raise ValueError("a histogram needs at least one axis")
        self.name = str(name)
        self.axes: Tuple[Axis, ...] = tuple(axes)
        self.counts = np.zeros(tuple(int(a.nbins) for a in self.axes), dtype=np.float64)
        self.entries = 0
        self.overflow = 0.0

    @property
    def ndim(self) -> int:
        return len(self.axes)

    @property
    def total(self) -> float:
        """Sum of binned weights (overflow excluded)."""
        return float(self.counts.sum())

    def fill(self, *values: float, weight: float = 1.0) -> None:
        """Fill one point (one value per axis)."""
        self.fill_many(*([v] for v in values), weights=[weight])

    def fill_many(self, *arrays: Sequence[float] | np.ndarray, weights: Optional[Sequence[float] | np.ndarray] = None) -> None:
        r"""
        Fill many points at once.

        Parameters
        ----------
        *arrays : array_like
            One 1D array per axis, all of the same length :math:`n`. A scalar
            is broadcast to :math:`n`.
        weights : array_like, optional
            Per-point weights (default 1).
        """
        if len(arrays) != self.ndim:
            raise ValueError(f"{self.name}: expected {self.ndim} arrays, got {len(arrays)}")
        cols = [np.atleast_1d(np.asarray(a, dtype=np.float64)) for a in arrays]
        lengths = {len(c) for c in cols if len(c) != 1}
        if len(lengths) > 1:
            raise ValueError(f"{self.name}: fill arrays have mismatched lengths")
        n = lengths.pop() if lengths else 1
        if n == 0:
            return
        cols = [np.broadcast_to(c, (n,)) if len(c) == 1 else c for c in cols]
        w = np.ones(n, dtype=np.float64) if weights is None else np.broadcast_to(
            np.asarray(weights, dtype=np.float64), (n,)
        )

        inside = np.ones(n, dtype=bool)
        idxs = []
        for axis, col in zip(self.axes, cols):
            idx, ok = axis.index(col)
            idxs.append(idx)
            inside &= ok

        self.entries += n
        self.overflow += float(w[~inside].sum())
        if inside.any():
            np.add.at(self.counts, tuple(i[inside] for i in idxs), w[inside])

    def project(self, axis: int | str) -> np.ndarray:
        """Counts summed over every axis except ``axis`` (index or name)."""
        k = self._axis_index(axis)
        others = tuple(i for i in range(self.ndim) if i != k)
        return self.counts.sum(axis=others) if others else self.counts.copy()

    def _axis_index(self, axis: int | str) -> int:
        if isinstance(axis, str):
            for i, a in enumerate(self.axes):
                if a.name == axis:
                    return i
            raise KeyError(f"{self.name}: no axis named {axis!r}")
        return int(axis)

    def to_frame(self, *, include_empty: bool = False) -> pd.DataFrame:
        r"""
        Long-format table: one column per axis (bin centers) plus ``count``.

        Only non-empty bins are listed unless ``include_empty`` is set.
        """
        if include_empty:
            grids = np.meshgrid(*(np.arange(a.nbins) for a in self.axes), indexing="ij")
            idx = tuple(g.reshape(-1) for g in grids)
        else:
            idx = np.nonzero(self.counts)
        data: Dict[str, np.ndarray] = {}
        for axis, i in zip(self.axes, idx):
            data[axis.name] = axis.centers[i]
        data["count"] = self.counts[idx]
        return pd.DataFrame(data)

    def copy(self) -> "Histogram":
        out = Histogram(self.name, self.axes)
        out.counts = self.counts.copy()
        out.entries = self.entries
        out.overflow = self.overflow
        return out

    def __deepcopy__(self, memo) -> "Histogram":
        return self.copy()

    def __repr__(self) -> str:
        dims = "x".join(str(a.nbins) for a in self.axes)
        return f"Histogram({self.name!r}, {dims}, entries={self.entries})"
