#!/usr/bin/env python3
r"""
HCAL hit matching runner.

Reads one table per collection from an event directory, runs the
:class:`~hcal_match.stage.HcalHitMatcherStage` over every event, and writes
the run summary and binned distributions.

Matching convention
-------------------
For each HCAL hit at :math:`x_h` and each scoring-plane crossing :math:`c`
of the hit's section, the crossing defines a segment
:math:`[x_c,\ x_c + L_c\,\hat p_c]`. The hit is attributed to the crossing of
minimum distance :math:`d` if :math:`d < d_\text{max}`
(``MaximumMatchDistance``, default 150 mm).

CLI overview
------------
See :func:`build_parser` for all options. Typical usage:

.. code-block:: bash

   hcal-match -e events/ -c config.json -o out/
   hcal-match -e events/ -c config.json -o out/ --plot -v
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import Optional, Sequence

import orjson

from hcal_match.aggregator import RunStatistics
from hcal_match.config import MatcherConfig, load_config
from hcal_match.data import load_events, read_tables
from hcal_match.stage import HcalHitMatcherStage, StageDriver


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface.

    Returns
    -------
    argparse.ArgumentParser
        Parser with options for input tables, configuration, output and
        plotting.
    """
    p = argparse.ArgumentParser(description="Match HCAL hits to simulated particles and summarise the run.")
    p.add_argument("-e", "--events", type=str, required=True,
                   help="Directory with one <collection>.csv or .parquet table per collection.")
    p.add_argument("-c", "--config", type=str, default="config.json",
                   help="Path to JSON job options (default: config.json).")
    p.add_argument("-o", "--out", type=str, default=None,
                   help="If set, write summary.json and one CSV per distribution here.")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Write a PNG per distribution into --out (default: False).")
    p.add_argument("--show", action="store_true", default=False,
                   help="Also display the plots interactively.")
    p.add_argument("--fail-on-missing", action="store_true", default=False,
                   help="Abort the run when an event lacks an input collection.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG``; otherwise ``INFO``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_plotting_guard(interactive: bool) -> None:
    r"""
    Select a non-interactive Matplotlib backend unless plots are to be shown.

    Must be called **before** :mod:`hcal_match.plotting` is imported.
    """
    if interactive:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)


def write_outputs(stats: RunStatistics, out_dir: Path, *, config: MatcherConfig, extra: Optional[dict] = None) -> None:
    r"""
    Write ``summary.json`` and ``distributions/<name>.csv``.

    The summary holds the counters of :meth:`RunStatistics.to_dict`, the job
    options used, and anything in ``extra``.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    summary = {"statistics": stats.to_dict(), "config": config.to_parameters()}
    if extra:
        summary.update(extra)
    (out_dir / "summary.json").write_bytes(orjson.dumps(summary, option=orjson.OPT_INDENT_2))

    dist_dir = out_dir / "distributions"
    dist_dir.mkdir(exist_ok=True)
    for name, hist in stats.distributions.items():
        hist.to_frame().to_csv(dist_dir / f"{name}.csv", index=False)
    logging.info("Wrote summary and %d distribution(s) to %s", len(stats.distributions), out_dir)


def main(argv: Optional[Sequence[str]] = None) -> int:
    r"""
    End-to-end run: **config -> tables -> events -> match/accumulate -> outputs**.

    Returns
    -------
    int
        Process exit status (``0`` on success).
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    cfg_path = Path(args.config)
    logging.info("Reading config from %s", cfg_path)
    parameters = load_config(cfg_path)

    stage = HcalHitMatcherStage()
    stage.configure(parameters)
    config = stage.config

    names = (
        config.ecal_hit_collection,
        config.hcal_hit_collection,
        config.ecal_scoring_plane,
        config.hcal_scoring_plane,
    )
    tables = read_tables(args.events, names)

    driver = StageDriver([stage], fail_on_missing=args.fail_on_missing)
    t0 = time.time()
    report = driver.run(load_events(tables, config))
    t1 = time.time()
    logging.info("Run took %.2f s", t1 - t0)

    stats: RunStatistics = report.summaries[stage.name]
    if args.out:
        out_dir = Path(args.out)
        write_outputs(
            stats,
            out_dir,
            config=config,
            extra={"events_seen": report.events_seen, "events_skipped": report.events_skipped[stage.name]},
        )
        if args.plot:
            apply_plotting_guard(args.show)
            import hcal_match.plotting as hm_plot  # noqa: WPS433
            hm_plot.plot_run_summary(stats, out_dir / "plots", show=args.show)
    elif args.plot:
        logging.warning("--plot needs --out; no plots written.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
