import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from conftest import crossing, hit
from hcal_match.errors import ConfigurationError, InvalidStateError, MissingCollectionError
from hcal_match.event import CalorimeterHit, Event, Section
from hcal_match.stage import HcalHitMatcherStage, StageDriver


def _stage(parameters):
    stage = HcalHitMatcherStage()
    stage.configure(parameters)
    return stage


def _event(config, number, hcal_hits, back=(), side=(), ecal_hits=()):
    return Event(
        event_number=number,
        collections={
            config.ecal_hit_collection: ecal_hits,
            config.hcal_hit_collection: hcal_hits,
            config.hcal_scoring_plane: back,
            config.ecal_scoring_plane: side,
        },
    )


def test_configure_rejects_missing_option(parameters):
    del parameters["EcalFrontZ"]
    with pytest.raises(ConfigurationError):
        HcalHitMatcherStage().configure(parameters)


def test_unconfigured_stage_raises():
    with pytest.raises(InvalidStateError):
        HcalHitMatcherStage().on_run_start()


def test_driver_end_to_end(parameters, config):
    ecal = [CalorimeterHit(hit_id=0, layer_id=0, section=Section.ECAL, position=(0, 0, 0), energy=1500.0)]
    events = [
        _event(config, 1, [hit(position=(0, 0, 5))], back=[crossing(pdg_id=2112)], ecal_hits=ecal),
        _event(config, 2, [hit(position=(200, 0, 5))], back=[crossing()]),
        _event(config, 3, []),
    ]
    stage = _stage(parameters)
    report = StageDriver([stage]).run(events)

    stats = report.summaries[stage.name]
    assert report.events_seen == 3
    assert report.events_skipped == {stage.name: 0}
    assert stats.event_count == 3
    assert stats.non_noise_hit_count == 2
    assert stats.matched_hit_count == 1
    assert stats.particle_counts == {2112: 1}
    # 100 MeV bins
    assert stats.distributions["ecal_summed_energy"].counts[15] == 1


def test_missing_collection_is_skipped_and_counted(parameters, config):
    broken = Event(event_number=2, collections={config.hcal_hit_collection: [hit()]})
    events = [_event(config, 1, [hit()], back=[crossing()]), broken, _event(config, 3, [])]
    stage = _stage(parameters)
    report = StageDriver([stage]).run(events)
    assert report.events_seen == 3
    assert report.events_skipped[stage.name] == 1
    assert report.summaries[stage.name].event_count == 2


def test_fail_on_missing_aborts(parameters, config):
    broken = Event(event_number=7, collections={})
    with pytest.raises(MissingCollectionError):
        StageDriver([_stage(parameters)], fail_on_missing=True).run([broken])


def test_stage_names_must_be_unique(parameters):
    with pytest.raises(ValueError):
        StageDriver([_stage(parameters), _stage(parameters)])
