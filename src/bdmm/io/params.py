"""
JSON parameter files.

A parameter file gives either direct rates::

    {
      "n_types": 2,
      "birth_rate": [1.0, 1.5],
      "death_rate": 0.5,
      "sampling_rate": {"values": [[0.1, 0.1], [0.3, 0.3]], "change_times": [2.0]},
      "migration_rate": [[0.0, 0.1], [0.2, 0.0]],
      "root_frequencies": [0.5, 0.5]
    }

or the epidemiological form (``reproductive_number``,
``become_uninfectious_rate``, ``sampling_proportion``). Optional keys are
``removal_probability``, ``rho`` (``{"values", "times", "reverse_time"}``),
``origin`` (``{"time": 5.0, "events": [[4.2, 1]]}``, events as
``[height, type]`` pairs), ``type_labels``, ``condition_on_survival`` and
``use_scaled_numbers``.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json

from .trees import MigrationEvent, OriginBranch
from ..models.rates import (
    BirthDeathMigrationParameters,
    EpidemiologicalParameters,
    PiecewiseSchedule,
    RhoSampling,
)

RATE_KEYS = ("birth_rate", "death_rate", "sampling_rate")
EPI_KEYS = ("reproductive_number", "become_uninfectious_rate", "sampling_proportion")


@dataclass
class LikelihoodConfig:
    """
    Settings read from a parameter file.

    Attributes
    ----------
    parameters : BirthDeathMigrationParameters or EpidemiologicalParameters
        Model parameters
    origin_branch : Optional[OriginBranch]
        Origin and the type changes above the root, if given
    condition_on_survival : bool
        Condition on survival of the horizon lineage
    use_scaled_numbers : bool
        Use scaled numbers for densities
    type_labels : Optional[list[str]]
        Names of the types, used to read tree annotations
    """

    parameters: Union[BirthDeathMigrationParameters, EpidemiologicalParameters]
    origin_branch: Optional[OriginBranch] = None
    condition_on_survival: bool = True
    use_scaled_numbers: bool = False
    type_labels: Optional[list] = field(default=None)


def _schedule(spec: Any) -> Optional[PiecewiseSchedule]:
    if spec is None:
        return None
    if isinstance(spec, dict):
        unknown = set(spec) - {"values", "change_times", "reverse_time"}
        if unknown:
            raise ValueError(f"Unknown schedule keys: {', '.join(sorted(unknown))}")
        if "values" not in spec:
            raise ValueError("Schedule needs 'values'")
        return PiecewiseSchedule(
            spec["values"],
            spec.get("change_times", []),
            bool(spec.get("reverse_time", False)),
        )
    return PiecewiseSchedule(spec)


def _rho(spec: Any) -> Optional[RhoSampling]:
    if spec is None:
        return None
    if isinstance(spec, dict):
        return RhoSampling(
            spec["values"], spec.get("times"), bool(spec.get("reverse_time", False))
        )
    return RhoSampling(spec)


def _type_index(value: Any, type_labels: Optional[list]) -> int:
    if isinstance(value, str) and type_labels is not None:
        if value not in type_labels:
            raise ValueError(f"Unknown type label '{value}'")
        return type_labels.index(value)
    return int(value)


def _origin(spec: Any, type_labels: Optional[list]) -> Optional[OriginBranch]:
    if spec is None:
        return None
    if not isinstance(spec, dict):
        return OriginBranch(origin=float(spec))
    events = []
    for event in spec.get("events", []):
        if isinstance(event, dict):
            time, type_ = event["time"], event["type"]
        else:
            time, type_ = event
        events.append(MigrationEvent(time=float(time), type=_type_index(type_, type_labels)))
    return OriginBranch(origin=float(spec["time"]), events=events)


def parse_config(data: Dict[str, Any]) -> LikelihoodConfig:
    """
    Build a configuration from an already-decoded JSON object.

    Parameters
    ----------
    data : dict
        Decoded parameter file

    Returns
    -------
    LikelihoodConfig
        Parameters and evaluation settings

    Raises
    ------
    ValueError
        If required keys are missing or both parameterisations are mixed
    """
    has_rates = any(key in data for key in RATE_KEYS)
    has_epi = any(key in data for key in EPI_KEYS)
    if has_rates and has_epi:
        raise ValueError("Give either birth/death/sampling rates or epidemiological parameters, not both")
    keys = EPI_KEYS if has_epi else RATE_KEYS
    missing = [key for key in keys + ("root_frequencies",) if key not in data]
    if missing:
        raise ValueError(f"Missing parameter(s): {', '.join(missing)}")

    n_types = int(data.get("n_types", len(data["root_frequencies"])))
    type_labels = data.get("type_labels")
    if type_labels is not None and len(type_labels) != n_types:
        raise ValueError(f"Expected {n_types} type labels, got {len(type_labels)}")

    common = dict(
        n_types=n_types,
        root_frequencies=data["root_frequencies"],
        migration_rate=_schedule(data.get("migration_rate")),
        removal_probability=_schedule(data.get("removal_probability")),
        rho=_rho(data.get("rho")),
    )
    if has_epi:
        parameters = EpidemiologicalParameters(
            reproductive_number=_schedule(data["reproductive_number"]),
            become_uninfectious_rate=_schedule(data["become_uninfectious_rate"]),
            sampling_proportion=_schedule(data["sampling_proportion"]),
            **common,
        )
    else:
        parameters = BirthDeathMigrationParameters(
            birth_rate=_schedule(data["birth_rate"]),
            death_rate=_schedule(data["death_rate"]),
            sampling_rate=_schedule(data["sampling_rate"]),
            **common,
        )

    return LikelihoodConfig(
        parameters=parameters,
        origin_branch=_origin(data.get("origin"), type_labels),
        condition_on_survival=bool(data.get("condition_on_survival", True)),
        use_scaled_numbers=bool(data.get("use_scaled_numbers", False)),
        type_labels=type_labels,
    )


def load_config(path: Union[str, Path]) -> LikelihoodConfig:
    """
    Read a JSON parameter file.

    Parameters
    ----------
    path : str or Path
        Path to the parameter file

    Returns
    -------
    LikelihoodConfig
        Parameters and evaluation settings
    """
    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"Parameter file {path} must contain a JSON object")
    return parse_config(data)
