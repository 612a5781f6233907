import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import math

import numpy as np
import pytest

from conftest import crossing, hit
from hcal_match.config import MatcherConfig
from hcal_match.errors import MissingCollectionError
from hcal_match.event import Event, Section
from hcal_match.matcher import HitMatcher, hit_depth


def _match(config, hits, back=(), side=()):
    return HitMatcher(config).match(hits, {Section.BACK: back, Section.SIDE: side})


def test_hit_on_ray_is_matched(config):
    result = _match(config, [hit(position=(0, 0, 5))], back=[crossing(track_id=7, pdg_id=13)])
    m = result[0]
    assert m.matched
    assert m.distance == 0.0
    assert m.track_id == 7
    assert m.pdg_id == 13
    assert result.crossing_for(m).track_id == 7


def test_far_hit_is_unmatched_with_distance(config):
    result = _match(config, [hit(position=(200, 0, 5))], back=[crossing()])
    m = result[0]
    assert not m.matched
    assert m.distance == pytest.approx(200.0)
    assert m.track_id is None
    assert result.crossing_for(m) is None


def test_threshold_is_strict(config):
    result = _match(
        config,
        [hit(hit_id=0, position=(150, 0, 5)), hit(hit_id=1, position=(149.999, 0, 5))],
        back=[crossing()],
    )
    assert result[0].distance == 150.0
    assert not result[0].matched
    assert result[1].matched


def test_tie_goes_to_first_crossing(config):
    # both rays are 10 mm from the hit
    a = crossing(track_id=1, position=(-10, 0, 0))
    b = crossing(track_id=2, position=(10, 0, 0))
    assert _match(config, [hit(position=(0, 0, 5))], back=[a, b])[0].track_id == 1
    assert _match(config, [hit(position=(0, 0, 5))], back=[b, a])[0].track_id == 2


def test_tie_winner_distance_decides_threshold(config):
    # b is closer than a by less than the tie tolerance, so a wins the tie
    a = crossing(track_id=1, position=(150.0, 0, 0))
    b = crossing(track_id=2, position=(-(150.0 - 5e-10), 0, 0))
    m = _match(config, [hit(position=(0, 0, 5))], back=[a, b])[0]
    assert m.distance == 150.0
    assert not m.matched
    assert m.track_id is None


def test_closest_crossing_wins(config):
    far = crossing(track_id=1, position=(50, 0, 0))
    near = crossing(track_id=2, position=(5, 0, 0))
    m = _match(config, [hit(position=(0, 0, 5))], back=[far, near])[0]
    assert m.track_id == 2
    assert m.distance == pytest.approx(5.0)


def test_no_crossings_gives_infinite_distance(config):
    result = _match(config, [hit(), hit(hit_id=1)])
    assert len(result) == 2
    assert all(not m.matched and math.isinf(m.distance) for m in result)


def test_no_hits_gives_empty_result(config):
    result = _match(config, [], back=[crossing()])
    assert len(result) == 0
    assert result.n_matched == 0


def test_one_entry_per_hit_in_order(config):
    hits = [hit(hit_id=i, position=(20.0 * i, 0, 5)) for i in range(12)]
    result = _match(config, hits, back=[crossing()])
    assert len(result) == len(hits)
    assert [m.hit_id for m in result] == list(range(12))
    assert [m.hit_index for m in result] == list(range(12))


def test_matching_is_deterministic(config):
    rng = np.random.default_rng(3)
    crossings = [
        crossing(track_id=i, position=rng.normal(scale=100, size=3), momentum=rng.normal(size=3), path_length=50)
        for i in range(15)
    ]
    hits = [hit(hit_id=i, position=rng.normal(scale=100, size=3)) for i in range(40)]
    first = _match(config, hits, back=crossings).to_frame()
    second = _match(config, hits, back=crossings).to_frame()
    assert first.equals(second)


def test_sections_only_see_their_own_crossings(config):
    back_hit = hit(hit_id=0, position=(0, 0, 5), section=Section.BACK)
    side_hit = hit(hit_id=1, position=(0, 0, 5), section=Section.SIDE)
    result = _match(config, [back_hit, side_hit], side=[crossing(track_id=9)])
    assert not result[0].matched
    assert math.isinf(result[0].distance)
    assert result[1].track_id == 9
    assert result.crossing_sections == (Section.SIDE,)


def test_invalid_crossing_is_skipped_and_counted(config):
    bad = crossing(track_id=1, position=(np.nan, 0, 0))
    good = crossing(track_id=2, position=(30, 0, 0))
    result = _match(config, [hit(position=(0, 0, 5))], back=[bad, good])
    assert result.invalid_crossings == 1
    assert result[0].track_id == 2
    assert len(result.crossings) == 2
    assert len(result.valid_crossings()) == 1


def test_invalid_hit_gets_an_entry(config):
    result = _match(config, [hit(position=(np.inf, 0, 5)), hit(hit_id=1)], back=[crossing()])
    assert result.invalid_hits == 1
    assert len(result) == 2
    assert not result[0].valid
    assert not result[0].matched
    assert result[1].matched


def test_noise_hits_are_matched_too(config):
    result = _match(config, [hit(is_noise=True)], back=[crossing()])
    assert len(result) == 1
    assert result[0].is_noise
    assert result[0].matched


def test_max_distance_option(parameters):
    parameters["MaximumMatchDistance"] = 10.0
    cfg = MatcherConfig.from_parameters(parameters)
    result = HitMatcher(cfg).match([hit(position=(20, 0, 5))], {Section.BACK: [crossing()]})
    assert not result[0].matched
    assert result[0].distance == pytest.approx(20.0)


def test_hit_depth(config):
    assert hit_depth(hit(position=(0, 0, 1250), section=Section.BACK), config) == pytest.approx(250.0)
    assert hit_depth(hit(position=(-700, 300, 0), section=Section.SIDE), config) == pytest.approx(200.0)
    assert math.isnan(hit_depth(hit(section=Section.ECAL), config))


def test_match_event_uses_configured_collections(config):
    event = Event(
        event_number=4,
        collections={
            config.hcal_hit_collection: [hit(position=(0, 0, 5))],
            config.hcal_scoring_plane: [crossing(track_id=3)],
            config.ecal_scoring_plane: [],
        },
    )
    result = HitMatcher(config).match_event(event)
    assert result[0].track_id == 3


def test_match_event_missing_scoring_plane(config):
    event = Event(event_number=5, collections={config.hcal_hit_collection: [hit()]})
    with pytest.raises(MissingCollectionError) as exc:
        HitMatcher(config).match_event(event)
    assert exc.value.event_number == 5


def test_to_frame_columns(config):
    df = _match(config, [hit(), hit(hit_id=1, position=(500, 0, 5))], back=[crossing(pdg_id=22)]).to_frame()
    assert list(df["matched"]) == [True, False]
    assert df["pdg_id"].iloc[0] == 22
    assert df["pdg_id"].isna().iloc[1]
