from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from hcal_match.config import MatcherConfig
from hcal_match.errors import InvalidRecordError
from hcal_match.event import CalorimeterHit, Event, Section, TrajectoryCrossing
from hcal_match.geometry import point_segments_distance, ray_segment

logger = logging.getLogger(__name__)

__all__ = ["TIE_TOLERANCE", "HitMatch", "MatchResult", "HitMatcher", "hit_depth", "transverse_position"]

# Distances closer than this to the minimum [mm] count as ties
TIE_TOLERANCE = 1e-9


def transverse_position(position: np.ndarray) -> float:
    r"""Distance of a point from the beam axis along the nearest side, :math:`\max(|x|,|y|)`."""
    return float(max(abs(position[0]), abs(position[1])))


def hit_depth(hit: CalorimeterHit, config: MatcherConfig) -> float:
    r"""
    Depth of a hit into its HCAL section [mm].

    - back: :math:`z - z_\text{back,0}`
    - side: :math:`\max(|x|,|y|) - r_\text{side,0}`

    Hits of any other section have no depth and return ``nan``.
    """
    if hit.section is Section.BACK:
        return float(hit.position[2] - config.back_zero_layer)
    if hit.section is Section.SIDE:
        return transverse_position(hit.position) - config.side_zero_layer
    return math.nan


@dataclass(slots=True)
class HitMatch:
    r"""
    Match outcome for one calorimeter hit.

    Attributes
    ----------
    hit_index : int
        Position of the hit in the input collection.
    hit : CalorimeterHit
        The hit itself (valid for the current event only).
    distance : float
        Minimum hit-to-ray distance over the candidates [mm]; ``inf`` when the
        hit had no candidate or was invalid.
    crossing_index : int or None
        Index into :attr:`MatchResult.crossings` of the best crossing, ``None``
        if unmatched.
    track_id, pdg_id : int or None
        Identity of the matched particle.
    depth : float
        Depth into the section, see :func:`hit_depth`.
    valid : bool
        ``False`` if the hit had non-finite geometry and was excluded.
    """
    hit_index: int
    hit: CalorimeterHit
    distance: float = math.inf
    crossing_index: Optional[int] = None
    track_id: Optional[int] = None
    pdg_id: Optional[int] = None
    depth: float = math.nan
    valid: bool = True

    @property
    def matched(self) -> bool:
        return self.crossing_index is not None

    @property
    def hit_id(self) -> int:
        return self.hit.hit_id

    @property
    def section(self) -> Section:
        return self.hit.section

    @property
    def layer_id(self) -> int:
        return self.hit.layer_id

    @property
    def is_noise(self) -> bool:
        return self.hit.is_noise


@dataclass(slots=True)
class MatchResult:
    r"""
    Per-event mapping from every calorimeter hit to its best trajectory.

    ``matches`` has exactly one entry per input hit, in input order.
    ``crossings`` is the event-scoped lookup table that
    :attr:`HitMatch.crossing_index` refers to.
    """
    matches: Tuple[HitMatch, ...] = ()
    crossings: Tuple[TrajectoryCrossing, ...] = ()
    crossing_sections: Tuple[Section, ...] = ()
    invalid_crossings: int = 0
    invalid_hits: int = 0

    def __len__(self) -> int:
        return len(self.matches)

    def __iter__(self) -> Iterator[HitMatch]:
        return iter(self.matches)

    def __getitem__(self, i: int) -> HitMatch:
        return self.matches[i]

    @property
    def n_matched(self) -> int:
        return sum(1 for m in self.matches if m.matched)

    def crossing_for(self, match: HitMatch) -> Optional[TrajectoryCrossing]:
        """The crossing a hit was matched to, or ``None``."""
        if match.crossing_index is None:
            return None
        return self.crossings[match.crossing_index]

    def valid_crossings(self) -> List[TrajectoryCrossing]:
        return [c for c in self.crossings if c.is_valid]

    def to_frame(self) -> pd.DataFrame:
        r"""
        One row per hit with columns ``hit_index, hit_id, section, layer_id,
        is_noise, valid, matched, track_id, pdg_id, distance, depth``.

        Unmatched ``track_id`` / ``pdg_id`` are ``<NA>`` (nullable ``Int64``).
        """
        cols = {
            "hit_index": [m.hit_index for m in self.matches],
            "hit_id": [m.hit_id for m in self.matches],
            "section": [m.section.value for m in self.matches],
            "layer_id": [m.layer_id for m in self.matches],
            "is_noise": [m.is_noise for m in self.matches],
            "valid": [m.valid for m in self.matches],
            "matched": [m.matched for m in self.matches],
            "track_id": pd.array([m.track_id for m in self.matches], dtype="Int64"),
            "pdg_id": pd.array([m.pdg_id for m in self.matches], dtype="Int64"),
            "distance": np.array([m.distance for m in self.matches], dtype=np.float64),
            "depth": np.array([m.depth for m in self.matches], dtype=np.float64),
        }
        return pd.DataFrame(cols)


@dataclass(slots=True)
class _SectionRays:
    """Ray segments of one section, row-aligned with the crossing table."""
    starts: List[np.ndarray] = field(default_factory=list)
    ends: List[np.ndarray] = field(default_factory=list)
    index: List[int] = field(default_factory=list)

    def arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if not self.index:
            empty = np.empty((0, 3), dtype=np.float64)
            return empty, empty, np.empty((0,), dtype=np.int64)
        return np.vstack(self.starts), np.vstack(self.ends), np.asarray(self.index, dtype=np.int64)


def _select_best(d: np.ndarray) -> Tuple[int, float]:
    r"""
    Index of the best candidate and that candidate's own distance.

    Selection is stable: among all candidates whose distance is within
    :data:`TIE_TOLERANCE` of the minimum, the first in input order wins.
    The returned distance is the winner's, which may exceed the minimum by
    up to the tolerance. NaN distances never win.
    """
    d = np.where(np.isnan(d), np.inf, d)
    dmin = float(d.min())
    if not np.isfinite(dmin):
        return int(np.argmin(d)), dmin
    first = int(np.flatnonzero(d <= dmin + TIE_TOLERANCE)[0])
    return first, float(d[first])


class HitMatcher:
    r"""
    Match calorimeter hits to the simulated particles that produced them.

    For every crossing :math:`c` of a section a finite ray segment
    :math:`[x_c,\ x_c + L_c\,\hat p_c]` is built (see
    :func:`hcal_match.geometry.ray_segment`). Each hit :math:`h` of the same
    section is assigned

    .. math::

        c^\ast(h) = \operatorname*{arg\,min}_c\ d(h, c), \qquad
        d(h, c) = \operatorname{dist}\bigl(x_h,\ [x_c, x_c + L_c \hat p_c]\bigr),

    and is **matched** iff :math:`d(h, c^\ast) < d_\text{max}` (strict).

    Parameters
    ----------
    config : MatcherConfig
        Matching options (maximum distance, zero-layer positions, collections).

    Notes
    -----
    - Records with non-finite geometry are excluded from matching and counted
      on the result (``invalid_crossings`` / ``invalid_hits``); no exception
      escapes for a single bad record.
    - Every hit, noise included, gets exactly one entry.
    - Output depends only on the inputs and their order.
    """

    def __init__(self, config: MatcherConfig) -> None:
        self.config = config

    @property
    def max_match_distance(self) -> float:
        return self.config.max_match_distance

    def section_crossings(self, event: Event) -> Dict[Section, Tuple[TrajectoryCrossing, ...]]:
        """
        Candidate crossings per HCAL section for ``event``.

        Back hits are matched against the HCAL scoring plane, side hits against
        the ECAL scoring plane.

        Raises
        ------
        MissingCollectionError
            If either scoring-plane collection is absent.
        """
        return {
            Section.BACK: event.get_collection(self.config.hcal_scoring_plane),
            Section.SIDE: event.get_collection(self.config.ecal_scoring_plane),
        }

    def match_event(self, event: Event) -> MatchResult:
        """Match the configured HCAL hit collection of ``event``."""
        crossings = self.section_crossings(event)
        hits = event.get_collection(self.config.hcal_hit_collection)
        return self.match(hits, crossings)

    def _build_rays(
        self,
        crossings_by_section: Mapping[Union[Section, str], Sequence[TrajectoryCrossing]],
    ) -> Tuple[Dict[Section, Tuple[np.ndarray, np.ndarray, np.ndarray]], List[TrajectoryCrossing], List[Section], int]:
        table: List[TrajectoryCrossing] = []
        table_sections: List[Section] = []
        rays: Dict[Section, _SectionRays] = {}
        n_invalid = 0

        for key, crossings in crossings_by_section.items():
            section = Section.parse(key)
            bucket = rays.setdefault(section, _SectionRays())
            for c in crossings:
                idx = len(table)
                table.append(c)
                table_sections.append(section)
                if not c.is_valid:
                    n_invalid += 1
                    err = InvalidRecordError(
                        f"crossing #{idx} (track {c.track_id}) has non-finite geometry"
                    )
                    logger.debug("Skipping record: %s", err)
                    continue
                start, end = ray_segment(
                    c.position, c.momentum, c.path_length, self.config.default_ray_length
                )
                bucket.starts.append(start)
                bucket.ends.append(end)
                bucket.index.append(idx)

        return {s: b.arrays() for s, b in rays.items()}, table, table_sections, n_invalid

    def match(
        self,
        hits: Sequence[CalorimeterHit],
        crossings_by_section: Mapping[Union[Section, str], Sequence[TrajectoryCrossing]],
    ) -> MatchResult:
        r"""
        Compute the best trajectory for every hit of one event.

        Parameters
        ----------
        hits : sequence of CalorimeterHit
            HCAL hits of the event, in event-store order.
        crossings_by_section : mapping of Section (or name) to sequence of TrajectoryCrossing
            Candidate crossings for the hits of each section, in event-store
            order. A section without an entry has no candidates.

        Returns
        -------
        MatchResult
            ``len(result) == len(hits)``.
        """
        rays, table, table_sections, n_invalid_crossings = self._build_rays(crossings_by_section)
        max_dist = self.config.max_match_distance

        matches: List[HitMatch] = []
        n_invalid_hits = 0
        for i, hit in enumerate(hits):
            depth = hit_depth(hit, self.config)
            if not hit.is_valid:
                n_invalid_hits += 1
                logger.debug(
                    "Skipping record: %s",
                    InvalidRecordError(f"hit #{i} (id {hit.hit_id}) has non-finite position"),
                )
                matches.append(HitMatch(hit_index=i, hit=hit, depth=depth, valid=False))
                continue

            starts, ends, index = rays.get(hit.section, (None, None, None))
            if index is None or len(index) == 0:
                matches.append(HitMatch(hit_index=i, hit=hit, depth=depth))
                continue

            d = point_segments_distance(starts, ends, hit.position)
            best, dist = _select_best(d)

            if dist < max_dist:
                ci = int(index[best])
                c = table[ci]
                matches.append(HitMatch(
                    hit_index=i,
                    hit=hit,
                    distance=dist,
                    crossing_index=ci,
                    track_id=int(c.track_id),
                    pdg_id=int(c.pdg_id),
                    depth=depth,
                ))
            else:
                matches.append(HitMatch(hit_index=i, hit=hit, distance=dist, depth=depth))

        if n_invalid_crossings or n_invalid_hits:
            logger.debug(
                "Excluded %d crossing(s) and %d hit(s) with non-finite geometry",
                n_invalid_crossings, n_invalid_hits,
            )

        return MatchResult(
            matches=tuple(matches),
            crossings=tuple(table),
            crossing_sections=tuple(table_sections),
            invalid_crossings=n_invalid_crossings,
            invalid_hits=n_invalid_hits,
        )
