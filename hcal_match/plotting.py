import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from matplotlib.colors import LogNorm

from hcal_match.aggregator import RunStatistics
from hcal_match.histograms import Histogram


def _show_and_close(fig, *, do_show: bool = True, save_path: Optional[Path] = None) -> None:
    r"""
    Optionally save and show a Matplotlib figure, then always close it.

    Closing every figure keeps batch runs over many distributions from
    accumulating open figures. ``plt.show()`` may be a no-op in headless mode.
    """
    try:
        fig.tight_layout()
    except Exception:
        pass
    if save_path is not None:
        fig.savefig(save_path, dpi=120)
    if do_show:
        plt.show()
    plt.close(fig)


def plot_distribution(
    hist: Histogram,
    *,
    show: bool = True,
    save_path: Optional[Path] = None,
    log: bool = True,
) -> None:
    r"""
    Draw one binned distribution.

    - 1D: step histogram.
    - 2D: colour map of counts, summed-energy on x.
    - 3D: the last two axes, summed over the first (the summed energy).

    Parameters
    ----------
    hist : Histogram
        Distribution to draw. Empty distributions are skipped.
    show : bool, optional
        Call ``plt.show()`` after drawing.
    save_path : pathlib.Path, optional
        Write the figure to this file.
    log : bool, optional
        Logarithmic count scale.
    """
    if hist.total <= 0.0:
        logging.debug("Skipping empty distribution %s", hist.name)
        return

    if hist.ndim == 1:
        ax_def = hist.axes[0]
        fig, ax = plt.subplots(figsize=(6, 4))
        ax.stairs(hist.counts, ax_def.edges)
        ax.set_xlabel(ax_def.name)
        ax.set_ylabel("events")
        if log:
            ax.set_yscale("log")
    else:
        if hist.ndim == 2:
            counts = hist.counts
            x_ax, y_ax = hist.axes
        else:
            counts = hist.counts.sum(axis=tuple(range(hist.ndim - 2)))
            x_ax, y_ax = hist.axes[-2:]
        fig, ax = plt.subplots(figsize=(6, 5))
        masked = np.ma.masked_less_equal(counts.T, 0.0)
        vmin = max(float(masked.min()), 1e-12)
        # a single filled level still needs a non-empty colour range
        vmax = max(float(masked.max()), 10.0 * vmin)
        norm = LogNorm(vmin=vmin, vmax=vmax) if log else None
        mesh = ax.pcolormesh(x_ax.edges, y_ax.edges, masked, norm=norm, shading="flat")
        fig.colorbar(mesh, ax=ax, label="entries")
        ax.set_xlabel(x_ax.name)
        ax.set_ylabel(y_ax.name)

    ax.set_title(hist.name)
    _show_and_close(fig, do_show=show, save_path=save_path)


def plot_particle_counts(stats: RunStatistics, *, top: int = 15, show: bool = True, save_path: Optional[Path] = None) -> None:
    """Horizontal bar chart of matched hits per PDG id."""
    df: pd.DataFrame = stats.particle_frame().head(top)
    if df.empty:
        return
    fig, ax = plt.subplots(figsize=(6, 0.35 * len(df) + 1.5))
    labels = [str(p) for p in df["pdg_id"]][::-1]
    ax.barh(labels, df["count"].to_numpy()[::-1])
    ax.set_xlabel("matched hits")
    ax.set_ylabel("PDG id")
    ax.set_title("Matched particles")
    _show_and_close(fig, do_show=show, save_path=save_path)


def plot_run_summary(stats: RunStatistics, out_dir: Path, *, show: bool = False) -> Dict[str, Path]:
    r"""
    Save one PNG per non-empty distribution plus the particle bar chart.

    Returns
    -------
    dict
        Distribution name -> written file.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: Dict[str, Path] = {}
    skipped: List[str] = []
    for name, hist in sorted(stats.distributions.items()):
        if hist.total <= 0.0:
            skipped.append(name)
            continue
        path = out_dir / f"{name}.png"
        plot_distribution(hist, show=show, save_path=path)
        written[name] = path
    if stats.particle_counts:
        path = out_dir / "matched_particles.png"
        plot_particle_counts(stats, show=show, save_path=path)
        written["matched_particles"] = path
    logging.info("Wrote %d plot(s) to %s", len(written), out_dir)
    if skipped:
        logging.debug("Empty distributions not plotted: %s", ", ".join(skipped))
    return written
