import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import orjson
import pandas as pd
import pytest

from conftest import PARAMETERS
from hcal_match.errors import ConfigurationError
from hcal_match.main import build_parser, main


def _write_inputs(directory: Path) -> None:
    pd.DataFrame({
        "event": [1, 2],
        "hit_id": [0, 0],
        "layer_id": [0, 0],
        "x": [0.0, 0.0],
        "y": [0.0, 0.0],
        "z": [250.0, 250.0],
        "energy": [800.0, 300.0],
    }).to_csv(directory / "ecalDigis.csv", index=False)
    pd.DataFrame({
        "event": [1, 1, 2],
        "hit_id": [0, 1, 0],
        "layer_id": [3, 4, 1],
        "section": ["back", "back", "side"],
        "x": [0.0, 400.0, 600.0],
        "y": [0.0, 0.0, 0.0],
        "z": [1005.0, 1005.0, 400.0],
        "pe": [12.0, 3.0, 8.0],
        "is_noise": [False, False, False],
    }).to_csv(directory / "hcalDigis.csv", index=False)
    crossing = {
        "track_id": [1],
        "pdg_id": [211],
        "x": [0.0],
        "y": [0.0],
        "z": [1000.0],
        "px": [0.0],
        "py": [0.0],
        "pz": [1.5],
        "path_length": [20.0],
    }
    pd.DataFrame({"event": [1], **crossing}).to_csv(directory / "HcalScoringPlaneHits.csv", index=False)
    pd.DataFrame({"event": [2], **crossing}).to_csv(directory / "EcalScoringPlaneHits.csv", index=False)


def test_parser_defaults():
    args = build_parser().parse_args(["-e", "events"])
    assert args.config == "config.json"
    assert args.out is None
    assert not args.plot
    assert not args.fail_on_missing


def test_main_writes_summary(tmp_path):
    events = tmp_path / "events"
    events.mkdir()
    _write_inputs(events)
    cfg = tmp_path / "config.json"
    cfg.write_bytes(orjson.dumps({"hcal_hit_matcher": PARAMETERS}))
    out = tmp_path / "out"

    assert main(["-e", str(events), "-c", str(cfg), "-o", str(out)]) == 0

    summary = orjson.loads((out / "summary.json").read_bytes())
    stats = summary["statistics"]
    assert summary["events_seen"] == 2
    assert summary["events_skipped"] == 0
    assert stats["event_count"] == 2
    assert stats["non_noise_hit_count"] == 3
    assert stats["matched_hit_count"] == 1
    assert stats["particle_counts"] == {"211": 1}
    assert summary["config"]["BackZeroLayer"] == 1000.0

    energy = pd.read_csv(out / "distributions" / "ecal_summed_energy.csv")
    assert energy["count"].sum() == 2


def test_main_rejects_bad_config(tmp_path):
    events = tmp_path / "events"
    events.mkdir()
    cfg = tmp_path / "config.json"
    cfg.write_bytes(orjson.dumps({"BackZeroLayer": 1.0}))
    with pytest.raises(ConfigurationError):
        main(["-e", str(events), "-c", str(cfg)])
