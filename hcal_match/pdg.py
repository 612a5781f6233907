from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping, Sequence

import numpy as np

from hcal_match.errors import HcalMatchError

__all__ = ["DEFAULT_MASSES_GEV", "UnknownParticleError", "ParticleTable"]

# Rest masses in GeV/c^2 keyed by PDG code (particles only; antiparticles
# resolve through |pdg_id|).
DEFAULT_MASSES_GEV: Mapping[int, float] = MappingProxyType({
    # leptons
    11: 0.000510998950,
    12: 0.0,
    13: 0.1056583755,
    14: 0.0,
    15: 1.77686,
    16: 0.0,
    # gauge bosons
    22: 0.0,
    # light mesons
    111: 0.1349768,
    130: 0.497611,
    211: 0.13957039,
    221: 0.547862,
    310: 0.497611,
    311: 0.497611,
    321: 0.493677,
    # baryons
    2112: 0.93956542052,
    2212: 0.93827208816,
    3112: 1.197449,
    3122: 1.115683,
    3212: 1.192642,
    3222: 1.18937,
    # light nuclei (10LZZZAAAI)
    1000010020: 1.87561294257,
    1000010030: 2.80892113298,
    1000020030: 2.80839160743,
    1000020040: 3.72737941,
})


class UnknownParticleError(HcalMatchError, LookupError):
    """The particle table has no entry for the requested PDG code."""

    def __init__(self, pdg_id: int) -> None:
        self.pdg_id = int(pdg_id)
        super().__init__(f"no rest mass known for PDG id {self.pdg_id}")


class ParticleTable(Mapping[int, float]):
    r"""
    Read-only rest-mass lookup service keyed by PDG code.

    The table is injected where it is needed (the aggregator) instead of
    being consulted as process-wide state.

    Parameters
    ----------
    masses : mapping of int to float
        PDG code to rest mass [GeV]. Copied on construction.

    Notes
    -----
    A code not found directly is retried as :math:`|\text{pdg}|`, so
    antiparticles share the mass of their particle.
    """
    __slots__ = ("_masses",)

    def __init__(self, masses: Mapping[int, float]) -> None:
        self._masses = MappingProxyType({int(k): float(v) for k, v in masses.items()})

    @classmethod
    def default(cls) -> "ParticleTable":
        return cls(DEFAULT_MASSES_GEV)

    def mass_of(self, pdg_id: int) -> float:
        """
        Rest mass [GeV] of ``pdg_id``.

        Raises
        ------
        UnknownParticleError
            If neither ``pdg_id`` nor ``abs(pdg_id)`` is in the table.
        """
        key = int(pdg_id)
        if key in self._masses:
            return self._masses[key]
        if abs(key) in self._masses:
            return self._masses[abs(key)]
        raise UnknownParticleError(key)

    def kinetic_energy(self, pdg_id: int, momentum: np.ndarray | Sequence[float]) -> float:
        r"""
        Kinetic energy :math:`T = \sqrt{|\vec p|^2 + m^2} - m` [GeV].

        Raises
        ------
        UnknownParticleError
            Propagated from :meth:`mass_of`.
        """
        m = self.mass_of(pdg_id)
        p = np.asarray(momentum, dtype=np.float64).reshape(-1)
        p2 = float(np.dot(p, p))
        return float(np.sqrt(p2 + m * m) - m)

    def total_energy(self, pdg_id: int, momentum: np.ndarray | Sequence[float]) -> float:
        m = self.mass_of(pdg_id)
        p = np.asarray(momentum, dtype=np.float64).reshape(-1)
        return float(np.sqrt(float(np.dot(p, p)) + m * m))

    def __getitem__(self, pdg_id: int) -> float:
        try:
            return self.mass_of(pdg_id)
        except UnknownParticleError:
            raise KeyError(pdg_id) from None

    def __contains__(self, pdg_id: object) -> bool:  # type: ignore[override]
        try:
            key = int(pdg_id)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False
        return key in self._masses or abs(key) in self._masses

    def __iter__(self) -> Iterator[int]:
        return iter(self._masses)

    def __len__(self) -> int:
        return len(self._masses)
