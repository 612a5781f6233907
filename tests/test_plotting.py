import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

from conftest import crossing, hit
from hcal_match.aggregator import ENERGY_AXIS, Aggregator
from hcal_match.event import Section
from hcal_match.histograms import Axis, Histogram
from hcal_match.main import apply_plotting_guard
from hcal_match.matcher import HitMatcher
from hcal_match.pdg import ParticleTable

apply_plotting_guard(False)

import hcal_match.plotting as hm_plot  # noqa: E402


def _stats(config):
    pdg_axis = Axis("pdg_id", 41, -20.5, 20.5)
    agg = Aggregator(
        ParticleTable.default(),
        min_depth_layer=config.min_depth_event_max_pe,
        ecal_front_z=config.ecal_front_z,
        axes={"particle_id": (ENERGY_AXIS, pdg_axis), "hcal_hit_id": (ENERGY_AXIS, pdg_axis)},
    )
    agg.on_run_start()
    result = HitMatcher(config).match(
        [hit(position=(0, 0, 1005)), hit(hit_id=1, position=(600, 0, 405), section=Section.SIDE)],
        {Section.BACK: [crossing(pdg_id=13, position=(0, 0, 1000))], Section.SIDE: []},
    )
    agg.accumulate(result, 1200.0)
    return agg.on_run_end()


def test_plot_run_summary_writes_pngs(tmp_path, config):
    stats = _stats(config)
    written = hm_plot.plot_run_summary(stats, tmp_path / "plots")

    assert "ecal_summed_energy" in written
    assert "hcal_hit_zbyr_all" in written
    assert "matched_particles" in written
    assert "hcal_hit_kinetic" in written
    assert "hcal_hit_depth_back" in written
    for path in written.values():
        assert path.is_file()
        assert path.stat().st_size > 0
    assert len(written) == len(stats.distributions) + 1


def test_plot_distribution_skips_empty(tmp_path):
    h = Histogram("empty", [Axis("x", 4, 0.0, 4.0)])
    hm_plot.plot_distribution(h, show=False, save_path=tmp_path / "empty.png")
    assert not (tmp_path / "empty.png").exists()
