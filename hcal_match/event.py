from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, Mapping, Sequence, Tuple, Union

import numpy as np

from hcal_match.errors import MissingCollectionError
from hcal_match.geometry import as_point

__all__ = ["Section", "TrajectoryCrossing", "CalorimeterHit", "Record", "Event"]


class Section(Enum):
    """Calorimeter section a hit belongs to."""
    BACK = "back"
    SIDE = "side"
    ECAL = "ecal"

    @classmethod
    def parse(cls, value: Union["Section", str]) -> "Section":
        """Accept an enum member or its value/name, case-insensitively."""
        if isinstance(value, cls):
            return value
        s = str(value).strip().lower()
        for member in cls:
            if s in (member.value, member.name.lower()):
                return member
        raise ValueError(f"unknown calorimeter section: {value!r}")


def _vec(values: Sequence[float]) -> np.ndarray:
    v = as_point(values)
    v.setflags(write=False)
    return v


@dataclass(frozen=True, slots=True, eq=False)
class TrajectoryCrossing:
    r"""
    A simulated particle crossing a scoring plane.

    The particle is identified by ``track_id`` (stable within one event) and
    ``pdg_id``; there is no reference to a particle object, the id is resolved
    against tables scoped to the current :class:`Event`.

    Attributes
    ----------
    track_id : int
        Simulated particle identifier.
    pdg_id : int
        PDG Monte Carlo particle code.
    position : ndarray, shape (3,)
        Crossing position [mm].
    momentum : ndarray, shape (3,)
        Momentum at the crossing [GeV].
    edep : float
        Energy deposited at the crossing [GeV].
    time : float
        Crossing time [ns].
    path_length : float
        Path length between the start and end of the step [mm].
    layer_id : int
        Scoring-plane layer identifier.
    """
    track_id: int
    pdg_id: int
    position: np.ndarray
    momentum: np.ndarray
    edep: float = 0.0
    time: float = 0.0
    path_length: float = 0.0
    layer_id: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _vec(self.position))
        object.__setattr__(self, "momentum", _vec(self.momentum))

    @property
    def is_valid(self) -> bool:
        """``True`` if position and momentum are finite."""
        return bool(np.isfinite(self.position).all() and np.isfinite(self.momentum).all())

    @property
    def momentum_magnitude(self) -> float:
        return float(np.sqrt(np.dot(self.momentum, self.momentum)))


@dataclass(frozen=True, slots=True, eq=False)
class CalorimeterHit:
    r"""
    A reconstructed calorimeter hit.

    Attributes
    ----------
    hit_id : int
        Identifier unique within the collection.
    layer_id : int
        Layer index within the section (0 is the zero layer).
    section : Section
        ``BACK`` / ``SIDE`` for HCAL hits, ``ECAL`` for ECAL digis.
    strip : int
        Lateral position (strip index) within the layer.
    pe : float
        Signal amplitude in photo-electrons.
    energy : float
        Energy-equivalent amplitude [MeV].
    position : ndarray, shape (3,)
        Hit position [mm].
    is_noise : bool
        Noise classification supplied by the digitisation.
    """
    hit_id: int
    layer_id: int
    section: Section
    position: np.ndarray
    pe: float = 0.0
    energy: float = 0.0
    strip: int = 0
    is_noise: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "section", Section.parse(self.section))
        object.__setattr__(self, "position", _vec(self.position))

    @property
    def is_valid(self) -> bool:
        return bool(np.isfinite(self.position).all())


Record = Union[TrajectoryCrossing, CalorimeterHit]


@dataclass(slots=True)
class Event:
    r"""
    All collections of one event.

    The event owns its collections for its own lifetime only; everything
    derived from them (match results, rays) is discarded with it.

    Parameters
    ----------
    event_number : int
        Event identifier.
    collections : mapping of str to sequence of records
        Ordered records per collection name. Order is preserved and is the
        order used for tie breaking downstream.
    """
    event_number: int
    collections: Dict[str, Tuple[Record, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.collections = {str(k): tuple(v) for k, v in dict(self.collections).items()}

    def get_collection(self, name: str) -> Tuple[Record, ...]:
        """
        Ordered records of collection ``name``.

        Raises
        ------
        MissingCollectionError
            If the collection is not present in this event.
        """
        try:
            return self.collections[name]
        except KeyError:
            raise MissingCollectionError(name, self.event_number) from None

    def has_collection(self, name: str) -> bool:
        return name in self.collections

    def add_collection(self, name: str, records: Iterable[Record]) -> None:
        self.collections[str(name)] = tuple(records)

    def __iter__(self) -> Iterator[str]:
        return iter(self.collections)

    @classmethod
    def from_mapping(cls, event_number: int, collections: Mapping[str, Iterable[Record]]) -> "Event":
        return cls(event_number=int(event_number), collections={k: tuple(v) for k, v in collections.items()})
