__all__ = [
    "point_segment_distance", "point_segments_distance", "ray_segment",
    "Section", "TrajectoryCrossing", "CalorimeterHit", "Event",
    "load_events", "read_tables", "crossings_from_frame", "hits_from_frame", "hcal_sections",
    "MatcherConfig", "load_config",
    "ParticleTable", "UnknownParticleError",
    "HitMatcher", "HitMatch", "MatchResult",
    "Axis", "Histogram",
    "Aggregator", "RunState", "RunStatistics", "summed_energy",
    "Stage", "HcalHitMatcherStage", "StageDriver", "DriverReport",
    "HcalMatchError", "MissingCollectionError", "InvalidRecordError",
    "ConfigurationError", "InvalidStateError",
]

# Geometry
from .geometry import point_segment_distance, point_segments_distance, ray_segment

# Event data
from .event import Section, TrajectoryCrossing, CalorimeterHit, Event
from .data import load_events, read_tables, crossings_from_frame, hits_from_frame, hcal_sections

# Configuration & particle data
from .config import MatcherConfig, load_config
from .pdg import ParticleTable, UnknownParticleError

# Matching & statistics
from .matcher import HitMatcher, HitMatch, MatchResult
from .histograms import Axis, Histogram
from .aggregator import Aggregator, RunState, RunStatistics, summed_energy

# Stages
from .stage import Stage, HcalHitMatcherStage, StageDriver, DriverReport

# Errors
from .errors import (
    HcalMatchError,
    MissingCollectionError,
    InvalidRecordError,
    ConfigurationError,
    InvalidStateError,
)
