import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from hcal_match.errors import HcalMatchError
from hcal_match.pdg import ParticleTable, UnknownParticleError


def test_antiparticle_shares_mass():
    table = ParticleTable.default()
    assert table.mass_of(-211) == table.mass_of(211)
    assert -2212 in table
    assert table[-11] == table[11]


def test_kinetic_energy():
    table = ParticleTable({2212: 0.938})
    assert table.kinetic_energy(2212, (0.0, 0.0, 0.0)) == pytest.approx(0.0, abs=1e-12)
    t = table.kinetic_energy(2212, (0.0, 3.0, 4.0))
    assert t == pytest.approx((25.0 + 0.938 ** 2) ** 0.5 - 0.938)
    assert table.total_energy(2212, (0, 3, 4)) == pytest.approx(t + 0.938)


def test_massless_kinetic_is_momentum():
    assert ParticleTable.default().kinetic_energy(22, (0.0, 0.0, 2.5)) == pytest.approx(2.5)


def test_unknown_particle():
    table = ParticleTable.default()
    with pytest.raises(UnknownParticleError) as exc:
        table.kinetic_energy(123456, (0, 0, 1))
    assert exc.value.pdg_id == 123456
    assert isinstance(exc.value, HcalMatchError)
    with pytest.raises(KeyError):
        table[123456]
    assert 123456 not in table
    assert "pion" not in table


def test_table_is_read_only_mapping():
    table = ParticleTable({13: 0.105})
    assert dict(table) == {13: 0.105}
    assert len(table) == 1
