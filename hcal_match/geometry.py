from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

__all__ = [
    "DEFAULT_RAY_LENGTH",
    "as_point",
    "as_points",
    "euclidean_distance",
    "unit",
    "point_segment_distance",
    "point_segments_distance",
    "ray_segment",
]

# Segment length [mm] used when a crossing carries no usable path length
DEFAULT_RAY_LENGTH = 10_000.0


def as_point(a: np.ndarray | Sequence[float]) -> np.ndarray:
    r"""
    Coerce input to a ``(3,)`` ``float64`` position/vector.

    Parameters
    ----------
    a : array_like
        Anything with exactly three components.

    Returns
    -------
    ndarray, shape (3,)

    Raises
    ------
    ValueError
        If ``a`` does not hold exactly three values.
    """
    p = np.asarray(a, dtype=np.float64).reshape(-1)
    if p.shape[0] != 3:
        raise ValueError(f"expected 3 components, got shape {np.shape(a)}")
    return p


def as_points(a: np.ndarray | Sequence[Sequence[float]] | None) -> np.ndarray:
    r"""
    Coerce input to a contiguous ``(N, 3)`` array of ``float64`` XYZ positions.

    ``None`` and empty inputs map to an empty ``(0, 3)`` array so that callers
    can treat "no data" uniformly.
    """
    if a is None:
        return np.empty((0, 3), dtype=np.float64)
    a = np.asarray(a, dtype=np.float64)
    if a.size == 0:
        return np.empty((0, 3), dtype=np.float64)
    return np.ascontiguousarray(a.reshape(-1, 3))


def euclidean_distance(a: np.ndarray | Sequence[float], b: np.ndarray | Sequence[float]) -> float:
    """Euclidean distance :math:`\\|a-b\\|_2` between two 3D points."""
    d = as_point(a) - as_point(b)
    return float(np.sqrt(np.dot(d, d)))


def unit(v: np.ndarray | Sequence[float]) -> np.ndarray:
    r"""
    Unit vector along ``v``.

    A zero-length (or non-finite-length) vector returns the zero vector rather
    than dividing by zero; callers interpret this as "no direction".
    """
    v = as_point(v)
    n = float(np.sqrt(np.dot(v, v)))
    if not np.isfinite(n) or n == 0.0:
        return np.zeros(3, dtype=np.float64)
    return v / n


def point_segment_distance(
    start: np.ndarray | Sequence[float],
    end: np.ndarray | Sequence[float],
    point: np.ndarray | Sequence[float],
) -> float:
    r"""
    Distance from ``point`` to the **closed** segment ``[start, end]``.

    With :math:`v` = ``start``, :math:`w` = ``end`` and :math:`p` = ``point``,
    the point is projected onto the line through the segment and the projection
    parameter is clamped to the segment:

    .. math::

        t^\ast = \operatorname{clip}\!\left(
            \frac{(p - v)\cdot(w - v)}{\|w - v\|_2^2},\ 0,\ 1\right),
        \qquad
        d = \bigl\| p - \bigl(v + t^\ast (w - v)\bigr) \bigr\|_2 .

    Parameters
    ----------
    start, end : array_like, shape (3,)
        Segment end points.
    point : array_like, shape (3,)
        Query point.

    Returns
    -------
    float
        Non-negative distance. For a degenerate segment (``start == end``) this
        is the point-to-point distance :math:`\|p - v\|_2`. NaN inputs
        propagate to a NaN result.
    """
    v = as_point(start)
    w = as_point(end)
    p = as_point(point)

    seg = w - v
    l2 = float(np.dot(seg, seg))
    if l2 == 0.0:
        return euclidean_distance(v, p)

    t = float(np.dot(p - v, seg)) / l2
    # min/max would swallow NaN; np.clip keeps it
    t = float(np.clip(t, 0.0, 1.0))
    closest = v + t * seg
    return euclidean_distance(closest, p)


def point_segments_distance(
    starts: np.ndarray | Sequence[Sequence[float]],
    ends: np.ndarray | Sequence[Sequence[float]],
    point: np.ndarray | Sequence[float],
) -> np.ndarray:
    r"""
    Vectorised :func:`point_segment_distance` for many segments and one point.

    Parameters
    ----------
    starts, ends : array_like, shape (N, 3)
        Segment end points, row-aligned.
    point : array_like, shape (3,)
        Query point.

    Returns
    -------
    ndarray, shape (N,)
        ``d[i] = point_segment_distance(starts[i], ends[i], point)``. Empty
        input gives an empty array.

    Notes
    -----
    Degenerate rows (:math:`\|w_i - v_i\|^2 = 0`) use :math:`t_i = 0`, which
    reduces to the point-to-point distance exactly as in the scalar form.
    """
    V = as_points(starts)
    W = as_points(ends)
    if V.shape != W.shape:
        raise ValueError(f"starts/ends shape mismatch: {V.shape} vs {W.shape}")
    if len(V) == 0:
        return np.empty((0,), dtype=np.float64)
    p = as_point(point)

    seg = W - V
    rel = p[None, :] - V
    l2 = np.einsum("ij,ij->i", seg, seg)
    dot = np.einsum("ij,ij->i", rel, seg)

    degenerate = l2 == 0.0
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.where(degenerate, 0.0, dot / np.where(degenerate, 1.0, l2))
    t = np.clip(t, 0.0, 1.0)

    diff = rel - t[:, None] * seg
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))


def ray_segment(
    position: np.ndarray | Sequence[float],
    momentum: np.ndarray | Sequence[float],
    path_length: float,
    default_length: float = DEFAULT_RAY_LENGTH,
) -> Tuple[np.ndarray, np.ndarray]:
    r"""
    Finite segment representing a trajectory crossing.

    The segment starts at the crossing position and runs along the momentum
    direction :math:`\hat p = p / \|p\|`:

    .. math::

        [\,x_0,\ x_0 + L\,\hat p\,], \qquad
        L = \begin{cases}
            \ell & \ell \text{ finite and } \ell > 0 \\
            L_\text{default} & \text{otherwise}
        \end{cases}

    where :math:`\ell` is the crossing's path length. A zero momentum gives a
    degenerate segment (``end == start``).

    Returns
    -------
    start, end : ndarray, shape (3,)
    """
    start = as_point(position)
    length = float(path_length)
    if not np.isfinite(length) or length <= 0.0:
        length = float(default_length)
    end = start + unit(momentum) * length
    return start, end
