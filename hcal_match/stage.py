from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from hcal_match.aggregator import Aggregator, RunStatistics, summed_energy
from hcal_match.config import MatcherConfig
from hcal_match.errors import InvalidStateError, MissingCollectionError
from hcal_match.event import Event
from hcal_match.matcher import HitMatcher
from hcal_match.pdg import ParticleTable

logger = logging.getLogger(__name__)

__all__ = ["Stage", "HcalHitMatcherStage", "DriverReport", "StageDriver"]


class Stage(abc.ABC):
    r"""
    Capability interface of one processing stage.

    A stage is configured once, then sees ``on_run_start``, one
    ``process_event`` per event in delivery order, and ``on_run_end``. The
    :class:`StageDriver` calling these knows nothing about what a stage does.
    """

    name: str = "stage"

    @abc.abstractmethod
    def configure(self, parameters: Mapping[str, Any]) -> None:
        """Read options; raise :class:`~hcal_match.errors.ConfigurationError` if unusable."""

    def on_run_start(self) -> None:
        """Called once before the first event."""

    @abc.abstractmethod
    def process_event(self, event: Event) -> None:
        """
        Process one event.

        Raises
        ------
        MissingCollectionError
            If an input collection is absent; the driver decides whether the
            event is skipped or the run aborted.
        """

    def on_run_end(self) -> Any:
        """Called once after the last event; the return value is the stage summary."""
        return None


class HcalHitMatcherStage(Stage):
    r"""
    Match HCAL hits to scoring-plane particles and accumulate run statistics.

    Per event:

    1. fetch the ECAL digis, HCAL digis and both scoring-plane collections
       (a missing one raises before any state changes),
    2. sum the non-noise ECAL energy,
    3. run the :class:`~hcal_match.matcher.HitMatcher`,
    4. fold the result into the :class:`~hcal_match.aggregator.Aggregator`.

    Parameters
    ----------
    name : str, optional
        Stage name used in logs and driver reports.
    particle_table : ParticleTable, optional
        Rest-mass lookup; :meth:`ParticleTable.default` if omitted.
    """

    def __init__(self, name: str = "hcal_hit_matcher", particle_table: Optional[ParticleTable] = None) -> None:
        self.name = name
        self.particle_table = particle_table if particle_table is not None else ParticleTable.default()
        self.config: Optional[MatcherConfig] = None
        self.matcher: Optional[HitMatcher] = None
        self.aggregator: Optional[Aggregator] = None

    def configure(self, parameters: Mapping[str, Any]) -> None:
        self.config = MatcherConfig.from_parameters(parameters)
        self.matcher = HitMatcher(self.config)
        self.aggregator = Aggregator(
            self.particle_table,
            min_depth_layer=self.config.min_depth_event_max_pe,
            ecal_front_z=self.config.ecal_front_z,
        )
        logger.info(
            "%s: max match distance %.1f mm, back zero layer %.1f mm, side zero layer %.1f mm",
            self.name,
            self.config.max_match_distance,
            self.config.back_zero_layer,
            self.config.side_zero_layer,
        )

    def _require_configured(self) -> None:
        if self.aggregator is None or self.matcher is None:
            raise InvalidStateError(f"stage {self.name!r} used before configure()")

    def on_run_start(self) -> None:
        self._require_configured()
        self.aggregator.on_run_start()

    def process_event(self, event: Event) -> None:
        self._require_configured()
        cfg = self.config
        ecal_hits = event.get_collection(cfg.ecal_hit_collection)
        hcal_hits = event.get_collection(cfg.hcal_hit_collection)
        crossings = self.matcher.section_crossings(event)

        self.aggregator.on_event_start()
        energy = summed_energy(ecal_hits)
        result = self.matcher.match(hcal_hits, crossings)
        self.aggregator.accumulate(result, energy)
        logger.debug(
            "Event %d: %d HCAL hits, %d matched, ECAL energy %.1f MeV",
            event.event_number, len(result), result.n_matched, energy,
        )

    def on_run_end(self) -> RunStatistics:
        self._require_configured()
        stats = self.aggregator.on_run_end()
        eff = stats.match_efficiency
        logger.info("%s: events processed: %d", self.name, stats.event_count)
        logger.info("%s: non-noise HCAL hits: %d", self.name, stats.non_noise_hit_count)
        logger.info(
            "%s: matched HCAL hits: %d (%s)",
            self.name,
            stats.matched_hit_count,
            "n/a" if eff != eff else f"{100.0 * eff:.1f}%",
        )
        for pdg, n in sorted(stats.particle_counts.items(), key=lambda kv: (-kv[1], kv[0])):
            logger.info("%s:   PDG %d: %d", self.name, pdg, n)
        if stats.invalid_crossing_count or stats.invalid_hit_count or stats.unknown_particle_count:
            logger.warning(
                "%s: excluded %d crossing(s), %d hit(s); %d unknown particle(s)",
                self.name,
                stats.invalid_crossing_count,
                stats.invalid_hit_count,
                stats.unknown_particle_count,
            )
        return stats


@dataclass
class DriverReport:
    """Outcome of one :meth:`StageDriver.run`."""
    events_seen: int = 0
    events_skipped: Dict[str, int] = field(default_factory=dict)
    summaries: Dict[str, Any] = field(default_factory=dict)


class StageDriver:
    r"""
    Feed events, one at a time and in order, through a list of stages.

    Parameters
    ----------
    stages : sequence of Stage
        Configured stages, invoked in this order for each event.
    fail_on_missing : bool, optional
        If ``True`` a :class:`MissingCollectionError` aborts the run; by
        default the event is skipped for that stage and counted.
    """

    def __init__(self, stages: Sequence[Stage], *, fail_on_missing: bool = False) -> None:
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"stage names must be unique, got {names}")
        self.stages: List[Stage] = list(stages)
        self.fail_on_missing = fail_on_missing

    def run(self, events: Iterable[Event]) -> DriverReport:
        """
        Run ``on_run_start`` / ``process_event`` / ``on_run_end`` over ``events``.

        Returns
        -------
        DriverReport
            Events seen, per-stage skip counts, per-stage summaries.
        """
        report = DriverReport(events_skipped={s.name: 0 for s in self.stages})
        for stage in self.stages:
            stage.on_run_start()

        for event in events:
            report.events_seen += 1
            for stage in self.stages:
                try:
                    stage.process_event(event)
                except MissingCollectionError as e:
                    if self.fail_on_missing:
                        logger.error("%s: %s; aborting run", stage.name, e)
                        raise
                    report.events_skipped[stage.name] += 1
                    logger.warning("%s: skipping event %d: %s", stage.name, event.event_number, e)

        for stage in self.stages:
            report.summaries[stage.name] = stage.on_run_end()

        skipped = sum(report.events_skipped.values())
        logger.info("Processed %d event(s); %d stage-event skip(s)", report.events_seen, skipped)
        return report
