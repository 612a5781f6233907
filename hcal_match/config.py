from __future__ import annotations

import logging
import math
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import orjson

from hcal_match.errors import ConfigurationError
from hcal_match.geometry import DEFAULT_RAY_LENGTH

logger = logging.getLogger(__name__)

__all__ = ["MatcherConfig", "OPTION_DEFAULTS", "REQUIRED_OPTIONS", "CONFIG_BLOCK", "load_config"]

# Option name -> default. Options with no default are listed in REQUIRED_OPTIONS.
OPTION_DEFAULTS: Dict[str, Any] = {
    "EcalHitCollectionName": "ecalDigis",
    "HcalHitCollectionName": "hcalDigis",
    "EcalScoringPlaneHitsName": "EcalScoringPlaneHits",
    "HcalScoringPlaneHitsName": "HcalScoringPlaneHits",
    "MaximumMatchDistance": 150.0,
}

REQUIRED_OPTIONS = (
    "MinDepthIncludeEventMaxPE",
    "BackZeroLayer",
    "SideZeroLayer",
    "EcalFrontZ",
)

# Name of the block holding the matcher options inside a larger JSON file
CONFIG_BLOCK = "hcal_hit_matcher"


def _as_float(name: str, value: Any) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"option '{name}' must be a number, got {value!r}") from e
    if not math.isfinite(out):
        raise ConfigurationError(f"option '{name}' must be finite, got {value!r}")
    return out


def _as_name(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"option '{name}' must be a non-empty string, got {value!r}")
    return value


@dataclass(frozen=True)
class MatcherConfig:
    r"""
    Options of the HCAL hit matching stage, read once at stage start.

    Attributes
    ----------
    ecal_hit_collection : str
        ECAL digis, summed (non-noise) to give the per-event upstream energy.
    hcal_hit_collection : str
        HCAL digis to be matched.
    ecal_scoring_plane : str
        Crossings used as candidates for **side** HCAL hits.
    hcal_scoring_plane : str
        Crossings used as candidates for **back** HCAL hits.
    max_match_distance : float
        A hit is matched only if its minimum distance is strictly below this [mm].
    min_depth_event_max_pe : float
        Minimum layer index of a hit to enter the "excluded" event max PE.
    back_zero_layer : float
        z of the zeroth back HCAL layer [mm].
    side_zero_layer : float
        Transverse position of the zeroth side HCAL layer [mm].
    ecal_front_z : float
        z of the ECAL front face [mm].
    default_ray_length : float
        Segment length for crossings without a usable path length [mm].
    """
    back_zero_layer: float
    side_zero_layer: float
    ecal_front_z: float
    min_depth_event_max_pe: float
    ecal_hit_collection: str = OPTION_DEFAULTS["EcalHitCollectionName"]
    hcal_hit_collection: str = OPTION_DEFAULTS["HcalHitCollectionName"]
    ecal_scoring_plane: str = OPTION_DEFAULTS["EcalScoringPlaneHitsName"]
    hcal_scoring_plane: str = OPTION_DEFAULTS["HcalScoringPlaneHitsName"]
    max_match_distance: float = OPTION_DEFAULTS["MaximumMatchDistance"]
    default_ray_length: float = DEFAULT_RAY_LENGTH

    def __post_init__(self) -> None:
        if not self.max_match_distance > 0.0:
            raise ConfigurationError(
                f"MaximumMatchDistance must be positive, got {self.max_match_distance!r}"
            )
        if not self.default_ray_length > 0.0:
            raise ConfigurationError(
                f"default ray length must be positive, got {self.default_ray_length!r}"
            )

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, Any]) -> "MatcherConfig":
        r"""
        Build a configuration from a job-option mapping.

        Parameters
        ----------
        parameters : mapping
            Option name to value, using the job-option names
            (``"MaximumMatchDistance"``, ``"BackZeroLayer"``, ...). Unknown
            names are ignored with a debug message.

        Returns
        -------
        MatcherConfig

        Raises
        ------
        ConfigurationError
            If a required option (no default) is absent or any value has the
            wrong type.
        """
        missing = [k for k in REQUIRED_OPTIONS if k not in parameters]
        if missing:
            raise ConfigurationError(
                f"missing required option(s): {', '.join(missing)}"
            )
        known = set(OPTION_DEFAULTS) | set(REQUIRED_OPTIONS) | {"DefaultRayLength"}
        for k in parameters:
            if k not in known:
                logger.debug("Ignoring unknown option %r", k)

        opts = dict(OPTION_DEFAULTS)
        opts.update({k: v for k, v in parameters.items() if k in known})

        return cls(
            ecal_hit_collection=_as_name("EcalHitCollectionName", opts["EcalHitCollectionName"]),
            hcal_hit_collection=_as_name("HcalHitCollectionName", opts["HcalHitCollectionName"]),
            ecal_scoring_plane=_as_name("EcalScoringPlaneHitsName", opts["EcalScoringPlaneHitsName"]),
            hcal_scoring_plane=_as_name("HcalScoringPlaneHitsName", opts["HcalScoringPlaneHitsName"]),
            max_match_distance=_as_float("MaximumMatchDistance", opts["MaximumMatchDistance"]),
            min_depth_event_max_pe=_as_float("MinDepthIncludeEventMaxPE", opts["MinDepthIncludeEventMaxPE"]),
            back_zero_layer=_as_float("BackZeroLayer", opts["BackZeroLayer"]),
            side_zero_layer=_as_float("SideZeroLayer", opts["SideZeroLayer"]),
            ecal_front_z=_as_float("EcalFrontZ", opts["EcalFrontZ"]),
            default_ray_length=_as_float("DefaultRayLength", opts.get("DefaultRayLength", DEFAULT_RAY_LENGTH)),
        )

    def to_parameters(self) -> Dict[str, Any]:
        """Inverse of :meth:`from_parameters` (job-option names)."""
        return {
            "EcalHitCollectionName": self.ecal_hit_collection,
            "HcalHitCollectionName": self.hcal_hit_collection,
            "EcalScoringPlaneHitsName": self.ecal_scoring_plane,
            "HcalScoringPlaneHitsName": self.hcal_scoring_plane,
            "MaximumMatchDistance": self.max_match_distance,
            "MinDepthIncludeEventMaxPE": self.min_depth_event_max_pe,
            "BackZeroLayer": self.back_zero_layer,
            "SideZeroLayer": self.side_zero_layer,
            "EcalFrontZ": self.ecal_front_z,
            "DefaultRayLength": self.default_ray_length,
        }

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_path: Path | str, block: Optional[str] = CONFIG_BLOCK) -> Dict[str, Any]:
    r"""
    Load job options from a JSON file.

    Parameters
    ----------
    config_path : pathlib.Path or str
        Path to the JSON file.
    block : str or None, optional
        If the file holds a top-level object with this key, return that block;
        otherwise return the whole object.

    Returns
    -------
    dict
        Option mapping suitable for :meth:`MatcherConfig.from_parameters`.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or parsed, or is not a JSON object.
    """
    path = Path(config_path)
    try:
        data = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object, got {type(data).__name__}")
    if block is not None and isinstance(data.get(block), dict):
        return dict(data[block])
    return data
