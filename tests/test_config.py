import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import orjson
import pytest

from hcal_match.config import OPTION_DEFAULTS, MatcherConfig, load_config
from hcal_match.errors import ConfigurationError
from hcal_match.geometry import DEFAULT_RAY_LENGTH


def test_defaults(parameters):
    cfg = MatcherConfig.from_parameters(parameters)
    assert cfg.max_match_distance == 150.0
    assert cfg.hcal_hit_collection == OPTION_DEFAULTS["HcalHitCollectionName"]
    assert cfg.ecal_scoring_plane == "EcalScoringPlaneHits"
    assert cfg.default_ray_length == DEFAULT_RAY_LENGTH
    assert cfg.back_zero_layer == 1000.0


@pytest.mark.parametrize("name", ["MinDepthIncludeEventMaxPE", "BackZeroLayer", "SideZeroLayer", "EcalFrontZ"])
def test_missing_required_option(parameters, name):
    del parameters[name]
    with pytest.raises(ConfigurationError, match=name):
        MatcherConfig.from_parameters(parameters)


@pytest.mark.parametrize("value", [0.0, -1.0, float("nan"), "far"])
def test_bad_max_distance(parameters, value):
    parameters["MaximumMatchDistance"] = value
    with pytest.raises(ConfigurationError):
        MatcherConfig.from_parameters(parameters)


def test_bad_collection_name(parameters):
    parameters["HcalHitCollectionName"] = ""
    with pytest.raises(ConfigurationError):
        MatcherConfig.from_parameters(parameters)


def test_unknown_options_are_ignored(parameters):
    parameters["SomethingElse"] = 3
    cfg = MatcherConfig.from_parameters(parameters)
    assert "SomethingElse" not in cfg.to_parameters()


def test_parameters_round_trip(parameters):
    parameters["MaximumMatchDistance"] = 75.0
    cfg = MatcherConfig.from_parameters(parameters)
    assert MatcherConfig.from_parameters(cfg.to_parameters()) == cfg


def test_load_config_block(tmp_path, parameters):
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"hcal_hit_matcher": parameters, "other": {"x": 1}}))
    assert load_config(path) == parameters


def test_load_config_flat(tmp_path, parameters):
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps(parameters))
    assert load_config(path) == parameters


def test_load_config_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "absent.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigurationError):
        load_config(bad)
    arr = tmp_path / "list.json"
    arr.write_text("[1, 2]")
    with pytest.raises(ConfigurationError):
        load_config(arr)
