from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from hcal_match.config import MatcherConfig
from hcal_match.event import CalorimeterHit, Event, Record, Section, TrajectoryCrossing

__all__ = [
    "EVENT_COLUMN",
    "CROSSING_COLUMNS",
    "HIT_COLUMNS",
    "crossings_from_frame",
    "hits_from_frame",
    "hcal_sections",
    "records_from_frame",
    "load_events",
    "read_tables",
]

EVENT_COLUMN = "event"
CROSSING_COLUMNS: Tuple[str, ...] = ("track_id", "pdg_id", "x", "y", "z", "px", "py", "pz")
HIT_COLUMNS: Tuple[str, ...] = ("hit_id", "layer_id", "x", "y", "z")

_TABLE_SUFFIXES = (".parquet", ".csv")


def _require(df: pd.DataFrame, columns: Sequence[str], what: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise KeyError(f"{what} table is missing column(s): {', '.join(missing)}")


def _column(df: pd.DataFrame, name: str, default, dtype) -> np.ndarray:
    if name in df.columns:
        col = df[name]
        if dtype is bool:
            # NaN is truthy
            col = col.fillna(default)
        return col.to_numpy(dtype=dtype)
    return np.full(len(df), default, dtype=dtype)


def crossings_from_frame(df: pd.DataFrame) -> List[TrajectoryCrossing]:
    r"""
    Convert a scoring-plane table into :class:`TrajectoryCrossing` records.

    Parameters
    ----------
    df : pandas.DataFrame
        Required columns ``track_id, pdg_id, x, y, z, px, py, pz``; optional
        ``edep, time, path_length, layer_id`` (default ``0``). Units: mm, GeV,
        ns.

    Returns
    -------
    list of TrajectoryCrossing
        One record per row, in row order. Non-finite values are passed through
        untouched; the matcher excludes such records later.

    Raises
    ------
    KeyError
        If a required column is missing.
    """
    _require(df, CROSSING_COLUMNS, "crossing")
    pos = df[["x", "y", "z"]].to_numpy(dtype=np.float64)
    mom = df[["px", "py", "pz"]].to_numpy(dtype=np.float64)
    track = df["track_id"].to_numpy(dtype=np.int64)
    pdg = df["pdg_id"].to_numpy(dtype=np.int64)
    edep = _column(df, "edep", 0.0, np.float64)
    time = _column(df, "time", 0.0, np.float64)
    path = _column(df, "path_length", 0.0, np.float64)
    layer = _column(df, "layer_id", 0, np.int64)
    return [
        TrajectoryCrossing(
            track_id=int(track[i]),
            pdg_id=int(pdg[i]),
            position=pos[i],
            momentum=mom[i],
            edep=float(edep[i]),
            time=float(time[i]),
            path_length=float(path[i]),
            layer_id=int(layer[i]),
        )
        for i in range(len(df))
    ]


def hcal_sections(z: np.ndarray, back_zero_layer: float) -> List[Section]:
    r"""
    Section of HCAL hits from their z position [mm].

    Hits at or behind the zeroth back layer (:math:`z \ge z_\text{back,0}`)
    are ``BACK``, everything upstream of it is ``SIDE``. A non-finite z gives
    ``SIDE``; such hits are excluded from matching anyway.
    """
    z = np.asarray(z, dtype=np.float64)
    back = np.isfinite(z) & (z >= float(back_zero_layer))
    return [Section.BACK if b else Section.SIDE for b in back]


def hits_from_frame(
    df: pd.DataFrame,
    *,
    default_section: Section | str = Section.ECAL,
    back_zero_layer: Optional[float] = None,
) -> List[CalorimeterHit]:
    r"""
    Convert a digi table into :class:`CalorimeterHit` records.

    Parameters
    ----------
    df : pandas.DataFrame
        Required columns ``hit_id, layer_id, x, y, z``; optional ``section``
        (``"back"``/``"side"``/``"ecal"``), ``pe``, ``energy``, ``strip``,
        ``is_noise`` (blank cells read as ``False``).
    default_section : Section or str, optional
        Section of rows without a ``section`` column. Default ``ECAL``.
    back_zero_layer : float, optional
        If given and the table has no ``section`` column, the rows are HCAL
        hits and their section comes from :func:`hcal_sections` instead of
        ``default_section``.

    Returns
    -------
    list of CalorimeterHit
        One record per row, in row order.
    """
    _require(df, HIT_COLUMNS, "hit")
    pos = df[["x", "y", "z"]].to_numpy(dtype=np.float64)
    hit_id = df["hit_id"].to_numpy(dtype=np.int64)
    layer = df["layer_id"].to_numpy(dtype=np.int64)
    if "section" in df.columns:
        sections = [Section.parse(s) for s in df["section"].tolist()]
    elif back_zero_layer is not None:
        sections = hcal_sections(pos[:, 2], back_zero_layer)
    else:
        sections = [Section.parse(default_section)] * len(df)
    pe = _column(df, "pe", 0.0, np.float64)
    energy = _column(df, "energy", 0.0, np.float64)
    strip = _column(df, "strip", 0, np.int64)
    noise = _column(df, "is_noise", False, bool)
    return [
        CalorimeterHit(
            hit_id=int(hit_id[i]),
            layer_id=int(layer[i]),
            section=sections[i],
            position=pos[i],
            pe=float(pe[i]),
            energy=float(energy[i]),
            strip=int(strip[i]),
            is_noise=bool(noise[i]),
        )
        for i in range(len(df))
    ]


def records_from_frame(df: pd.DataFrame) -> List[Record]:
    """Crossings if the table carries momentum columns, hits otherwise."""
    if {"px", "py", "pz"}.issubset(df.columns):
        return list(crossings_from_frame(df))
    return list(hits_from_frame(df))


def _collection_readers(config: Optional[MatcherConfig]) -> Dict[str, Callable[[pd.DataFrame], List[Record]]]:
    if config is None:
        return {}
    return {
        config.ecal_hit_collection: lambda g: list(hits_from_frame(g, default_section=Section.ECAL)),
        config.hcal_hit_collection: lambda g: list(hits_from_frame(g, back_zero_layer=config.back_zero_layer)),
        config.ecal_scoring_plane: lambda g: list(crossings_from_frame(g)),
        config.hcal_scoring_plane: lambda g: list(crossings_from_frame(g)),
    }


def load_events(tables: Mapping[str, pd.DataFrame], config: Optional[MatcherConfig] = None) -> Iterator[Event]:
    r"""
    Split per-collection tables into :class:`Event` objects.

    Parameters
    ----------
    tables : mapping of str to pandas.DataFrame
        Collection name -> table with an ``event`` column.
    config : MatcherConfig, optional
        Tells which table holds which collection. The HCAL digis then get
        their section from z when the table has no ``section`` column, and
        the scoring planes must carry momentum columns. Tables not named by
        ``config`` (or every table, without it) are read with
        :func:`records_from_frame`.

    Yields
    ------
    Event
        In ascending event number. An event with no rows in a provided table
        gets an empty collection; a collection not in ``tables`` is absent
        from every event.

    Notes
    -----
    Rows keep their table order inside each event (stable grouping), which
    is the order used downstream for tie breaking.
    """
    readers = _collection_readers(config)
    per_collection: Dict[str, Dict[int, pd.DataFrame]] = {}
    event_numbers: set = set()
    for name, df in tables.items():
        _require(df, (EVENT_COLUMN,), name)
        if name not in readers and "section" not in df.columns and not {"px", "py", "pz"}.issubset(df.columns):
            logging.warning("Hit table %r has no 'section' column; its hits are read as ECAL hits", name)
        groups = {int(ev): g for ev, g in df.groupby(EVENT_COLUMN, sort=True)}
        per_collection[name] = groups
        event_numbers.update(groups)

    for ev in sorted(event_numbers):
        collections = {}
        for name, groups in per_collection.items():
            g = groups.get(ev)
            read = readers.get(name, records_from_frame)
            collections[name] = () if g is None else read(g)
        yield Event(event_number=ev, collections=collections)


def _read_table(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path)


def read_tables(directory: Path | str, names: Sequence[str]) -> Dict[str, pd.DataFrame]:
    r"""
    Read ``<name>.parquet`` or ``<name>.csv`` for each collection name.

    Parameters
    ----------
    directory : pathlib.Path or str
        Directory holding one table per collection.
    names : sequence of str
        Collection names to look for.

    Returns
    -------
    dict
        Name -> table for every collection found. Collections with no file
        are left out (and will be reported missing per event).
    """
    base = Path(directory)
    if not base.is_dir():
        raise FileNotFoundError(f"event directory not found: {base}")
    out: Dict[str, pd.DataFrame] = {}
    for name in names:
        path: Optional[Path] = next(
            (base / f"{name}{suf}" for suf in _TABLE_SUFFIXES if (base / f"{name}{suf}").is_file()),
            None,
        )
        if path is None:
            logging.warning("No table for collection %r in %s", name, base)
            continue
        df = _read_table(path)
        logging.info("Loaded %d rows for %s from %s", len(df), name, path.name)
        out[name] = df
    return out
