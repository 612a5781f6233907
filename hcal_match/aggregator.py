from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from hcal_match.errors import InvalidStateError
from hcal_match.event import CalorimeterHit, Section
from hcal_match.histograms import Axis, Histogram
from hcal_match.matcher import MatchResult, transverse_position
from hcal_match.pdg import ParticleTable, UnknownParticleError

logger = logging.getLogger(__name__)

__all__ = [
    "ENERGY_AXIS",
    "DEFAULT_AXES",
    "RunState",
    "RunStatistics",
    "Aggregator",
    "summed_energy",
]

# First axis of every distribution: non-noise energy summed over the ECAL [MeV]
ENERGY_AXIS = Axis("ecal_summed_energy", 80, 0.0, 8000.0)

_PDG_AXIS = Axis("pdg_id", 6001, -3000.5, 3000.5)
_KINETIC_AXIS = Axis("kinetic_gev", 400, 0.0, 8.0)

DEFAULT_AXES: Dict[str, Tuple[Axis, ...]] = {
    # one entry per event
    "ecal_summed_energy": (ENERGY_AXIS,),
    "num_hcal_hits": (ENERGY_AXIS, Axis("num_hits", 300, 0.0, 300.0)),
    "num_hcal_hits_back": (ENERGY_AXIS, Axis("num_hits", 300, 0.0, 300.0)),
    "num_hcal_hits_side": (ENERGY_AXIS, Axis("num_hits", 300, 0.0, 300.0)),
    "num_particles": (ENERGY_AXIS, Axis("num_particles", 100, 0.0, 100.0)),
    "event_max_pe_all": (ENERGY_AXIS, Axis("max_pe", 500, 0.0, 500.0)),
    "event_max_pe_excluded": (ENERGY_AXIS, Axis("max_pe", 500, 0.0, 500.0)),
    # one entry per valid scoring-plane crossing
    "particle_id": (ENERGY_AXIS, _PDG_AXIS),
    "particle_energy": (ENERGY_AXIS, Axis("energy_gev", 400, 0.0, 8.0)),
    "particle_kinetic": (ENERGY_AXIS, _KINETIC_AXIS),
    # one entry per valid non-noise HCAL hit
    "hcal_hit_depth_back": (ENERGY_AXIS, Axis("depth_mm", 300, 0.0, 3000.0)),
    "hcal_hit_depth_side": (ENERGY_AXIS, Axis("depth_mm", 100, 0.0, 1000.0)),
    "hcal_hit_z_side": (ENERGY_AXIS, Axis("z_from_ecal_front_mm", 100, 0.0, 1000.0)),
    "hcal_hit_zbyr_all": (ENERGY_AXIS, Axis("z_mm", 100, 0.0, 5000.0), Axis("r_mm", 60, 0.0, 3000.0)),
    "hcal_hit_pe_all": (ENERGY_AXIS, Axis("pe", 500, 0.0, 500.0)),
    "hcal_hit_match_distance": (ENERGY_AXIS, Axis("distance_mm", 200, 0.0, 1000.0)),
    # one entry per matched non-noise HCAL hit
    "hcal_hit_id": (ENERGY_AXIS, _PDG_AXIS),
    "hcal_hit_kinetic": (ENERGY_AXIS, _KINETIC_AXIS),
}


def summed_energy(hits: Iterable[CalorimeterHit]) -> float:
    """Sum of ``energy`` over non-noise hits with a finite energy [MeV]."""
    total = 0.0
    for h in hits:
        if h.is_noise:
            continue
        e = float(h.energy)
        if math.isfinite(e):
            total += e
    return total


class RunState(Enum):
    """Lifecycle of the run statistics."""
    UNINITIALIZED = "uninitialized"
    ACCUMULATING = "accumulating"
    FINALIZED = "finalized"


@dataclass
class RunStatistics:
    r"""
    Cumulative statistics over all events of a run.

    Attributes
    ----------
    event_count : int
        Events accumulated (events with no hits included).
    non_noise_hit_count : int
        HCAL hits not flagged as noise.
    matched_hit_count : int
        Non-noise HCAL hits matched to a particle.
    particle_counts : dict[int, int]
        PDG id -> number of matched non-noise hits attributed to it.
    invalid_crossing_count, invalid_hit_count : int
        Records excluded from matching for non-finite geometry.
    unknown_particle_count : int
        Kinetic-energy lookups that failed for lack of a rest mass.
    distributions : dict[str, Histogram]
        Binned distributions, first axis always the ECAL summed energy.
    """
    event_count: int = 0
    non_noise_hit_count: int = 0
    matched_hit_count: int = 0
    particle_counts: Dict[int, int] = field(default_factory=dict)
    invalid_crossing_count: int = 0
    invalid_hit_count: int = 0
    unknown_particle_count: int = 0
    distributions: Dict[str, Histogram] = field(default_factory=dict)

    @property
    def unmatched_hit_count(self) -> int:
        return self.non_noise_hit_count - self.matched_hit_count

    @property
    def match_efficiency(self) -> float:
        """Matched fraction of non-noise hits (``nan`` without hits)."""
        if self.non_noise_hit_count == 0:
            return math.nan
        return self.matched_hit_count / self.non_noise_hit_count

    def snapshot(self) -> "RunStatistics":
        """Independent deep copy, safe to hand to another reader."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Counters as plain JSON-ready values (distributions omitted)."""
        eff = self.match_efficiency
        return {
            "event_count": int(self.event_count),
            "non_noise_hit_count": int(self.non_noise_hit_count),
            "matched_hit_count": int(self.matched_hit_count),
            "unmatched_hit_count": int(self.unmatched_hit_count),
            "match_efficiency": None if math.isnan(eff) else float(eff),
            "particle_counts": {str(k): int(v) for k, v in sorted(self.particle_counts.items())},
            "invalid_crossing_count": int(self.invalid_crossing_count),
            "invalid_hit_count": int(self.invalid_hit_count),
            "unknown_particle_count": int(self.unknown_particle_count),
            "distributions": sorted(self.distributions),
        }

    def particle_frame(self) -> pd.DataFrame:
        """Matched hits per PDG id, most frequent first."""
        df = pd.DataFrame(
            {"pdg_id": list(self.particle_counts), "count": list(self.particle_counts.values())},
            columns=["pdg_id", "count"],
        )
        return df.sort_values(["count", "pdg_id"], ascending=[False, True], kind="mergesort").reset_index(drop=True)


class Aggregator:
    r"""
    Accumulate :class:`RunStatistics` from per-event match results.

    State machine::

        UNINITIALIZED --on_run_start--> ACCUMULATING --on_run_end--> FINALIZED
                                         ^        |
                                         +--------+ accumulate

    Parameters
    ----------
    particle_table : ParticleTable
        Rest-mass lookup for kinetic energies.
    min_depth_layer : float
        Hits with ``layer_id`` below this are left out of
        ``event_max_pe_excluded``.
    ecal_front_z : float
        z of the ECAL front face [mm], origin of ``hcal_hit_z_side``.
    axes : mapping of str to tuple of Axis, optional
        Overrides for :data:`DEFAULT_AXES` (same keys).
    """

    def __init__(
        self,
        particle_table: ParticleTable,
        min_depth_layer: float,
        ecal_front_z: float,
        axes: Optional[Mapping[str, Sequence[Axis]]] = None,
    ) -> None:
        self.particle_table = particle_table
        self.min_depth_layer = float(min_depth_layer)
        self.ecal_front_z = float(ecal_front_z)
        self.axes: Dict[str, Tuple[Axis, ...]] = dict(DEFAULT_AXES)
        if axes:
            for name, ax in axes.items():
                if name not in DEFAULT_AXES:
                    raise KeyError(f"unknown distribution {name!r}")
                self.axes[name] = tuple(ax)
        self._state = RunState.UNINITIALIZED
        self._stats = RunStatistics()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def statistics(self) -> RunStatistics:
        """Read-consistent copy of the current statistics."""
        return self._stats.snapshot()

    def on_run_start(self) -> None:
        if self._state is not RunState.UNINITIALIZED:
            raise InvalidStateError(f"on_run_start called in state {self._state.value}")
        self._stats = RunStatistics(
            distributions={name: Histogram(name, ax) for name, ax in self.axes.items()}
        )
        self._state = RunState.ACCUMULATING

    def on_event_start(self) -> None:
        """Per-event hook; nothing needs resetting between events."""

    def _kinetic(self, pdg_id: int, momentum: np.ndarray) -> Optional[float]:
        try:
            return self.particle_table.kinetic_energy(pdg_id, momentum)
        except UnknownParticleError as e:
            logger.debug("No kinetic energy: %s", e)
            return None

    def accumulate(
        self,
        result: MatchResult,
        summed_upstream_energy: float,
        hit_depths: Optional[Mapping[int, float]] = None,
    ) -> None:
        r"""
        Fold one event into the run statistics.

        Parameters
        ----------
        result : MatchResult
            Matches of the event (one per HCAL hit) and its crossing table.
        summed_upstream_energy : float
            Non-noise ECAL energy of the event [MeV]; first coordinate of every
            distribution filled for this event.
        hit_depths : mapping of int to float, optional
            Hit index -> depth [mm]. Defaults to the depths computed by the
            matcher.

        Raises
        ------
        InvalidStateError
            If the run is not accumulating. Nothing is modified in that case.
        """
        if self._state is not RunState.ACCUMULATING:
            raise InvalidStateError(f"accumulate called in state {self._state.value}")

        E = float(summed_upstream_energy)
        unknown = 0

        non_noise = [m for m in result if not m.is_noise]
        good = [m for m in non_noise if m.valid]
        matched = [m for m in good if m.matched]
        n_back = sum(1 for m in non_noise if m.section is Section.BACK)
        n_side = sum(1 for m in non_noise if m.section is Section.SIDE)

        pe_all = [float(m.hit.pe) for m in good]
        pe_deep = [float(m.hit.pe) for m in good if m.layer_id >= self.min_depth_layer]
        max_pe_all = max(pe_all) if pe_all else 0.0
        max_pe_deep = max(pe_deep) if pe_deep else 0.0

        # scoring-plane particles
        crossings = result.valid_crossings()
        p_ids: List[float] = []
        p_energy: List[float] = []
        p_kinetic: List[float] = []
        for c in crossings:
            p_ids.append(float(c.pdg_id))
            t = self._kinetic(c.pdg_id, c.momentum)
            if t is None:
                unknown += 1
                continue
            m0 = self.particle_table.mass_of(c.pdg_id)
            p_kinetic.append(t)
            p_energy.append(t + m0)
        n_tracks = len({int(c.track_id) for c in crossings})

        # hits
        depth_back: List[float] = []
        depth_side: List[float] = []
        z_side: List[float] = []
        zr_z: List[float] = []
        zr_r: List[float] = []
        dist: List[float] = []
        for m in good:
            depth = m.depth if hit_depths is None else float(hit_depths.get(m.hit_index, m.depth))
            pos = m.hit.position
            if m.section is Section.BACK:
                depth_back.append(depth)
            elif m.section is Section.SIDE:
                depth_side.append(depth)
                z_side.append(float(pos[2]) - self.ecal_front_z)
            zr_z.append(float(pos[2]))
            zr_r.append(transverse_position(pos))
            dist.append(m.distance)

        hit_ids: List[float] = []
        hit_kinetic: List[float] = []
        pdg_increments: Dict[int, int] = {}
        for m in matched:
            pdg = int(m.pdg_id)
            hit_ids.append(float(pdg))
            pdg_increments[pdg] = pdg_increments.get(pdg, 0) + 1
            c = result.crossing_for(m)
            t = self._kinetic(pdg, c.momentum)
            if t is None:
                unknown += 1
            else:
                hit_kinetic.append(t)

        # mutate only after every quantity of the event is known
        s = self._stats
        s.event_count += 1
        s.non_noise_hit_count += len(non_noise)
        s.matched_hit_count += len(matched)
        for pdg, n in pdg_increments.items():
            s.particle_counts[pdg] = s.particle_counts.get(pdg, 0) + n
        s.invalid_crossing_count += int(result.invalid_crossings)
        s.invalid_hit_count += int(result.invalid_hits)
        s.unknown_particle_count += unknown

        d = s.distributions
        d["ecal_summed_energy"].fill(E)
        d["num_hcal_hits"].fill(E, len(non_noise))
        d["num_hcal_hits_back"].fill(E, n_back)
        d["num_hcal_hits_side"].fill(E, n_side)
        d["num_particles"].fill(E, n_tracks)
        d["event_max_pe_all"].fill(E, max_pe_all)
        d["event_max_pe_excluded"].fill(E, max_pe_deep)
        d["particle_id"].fill_many(E, p_ids)
        d["particle_energy"].fill_many(E, p_energy)
        d["particle_kinetic"].fill_many(E, p_kinetic)
        d["hcal_hit_depth_back"].fill_many(E, depth_back)
        d["hcal_hit_depth_side"].fill_many(E, depth_side)
        d["hcal_hit_z_side"].fill_many(E, z_side)
        d["hcal_hit_zbyr_all"].fill_many(E, zr_z, zr_r)
        d["hcal_hit_pe_all"].fill_many(E, pe_all)
        d["hcal_hit_match_distance"].fill_many(E, dist)
        d["hcal_hit_id"].fill_many(E, hit_ids)
        d["hcal_hit_kinetic"].fill_many(E, hit_kinetic)

    def on_run_end(self) -> RunStatistics:
        """
        Finalize the run and return the final statistics.

        Raises
        ------
        InvalidStateError
            If the run is not accumulating.
        """
        if self._state is not RunState.ACCUMULATING:
            raise InvalidStateError(f"on_run_end called in state {self._state.value}")
        self._state = RunState.FINALIZED
        return self._stats.snapshot()
