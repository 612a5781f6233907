import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from hcal_match.config import MatcherConfig
from hcal_match.event import CalorimeterHit, Section, TrajectoryCrossing


PARAMETERS = {
    "MinDepthIncludeEventMaxPE": 2,
    "BackZeroLayer": 1000.0,
    "SideZeroLayer": 500.0,
    "EcalFrontZ": 200.0,
}


@pytest.fixture
def parameters():
    return dict(PARAMETERS)


@pytest.fixture
def config():
    return MatcherConfig.from_parameters(PARAMETERS)


def crossing(track_id=1, pdg_id=211, position=(0.0, 0.0, 0.0), momentum=(0.0, 0.0, 1.0), path_length=10.0):
    return TrajectoryCrossing(
        track_id=track_id,
        pdg_id=pdg_id,
        position=position,
        momentum=momentum,
        path_length=path_length,
    )


def hit(hit_id=0, position=(0.0, 0.0, 5.0), section=Section.BACK, layer_id=3, pe=10.0, is_noise=False):
    return CalorimeterHit(
        hit_id=hit_id,
        layer_id=layer_id,
        section=section,
        position=position,
        pe=pe,
        is_noise=is_noise,
    )
