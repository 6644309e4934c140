"""
EASIX Landmark Predictor - Observations
=======================================
Patient biomarker observations and the pre-landmark filter applied before
the mixed model sees them.
"""

from dataclasses import dataclass, asdict
from typing import Iterable, List, Mapping, Sequence, Tuple, Union
import logging
import math

import pandas as pd

from .errors import InsufficientObservations

logger = logging.getLogger(__name__)


MIN_OBSERVATIONS = 2


@dataclass(frozen=True)
class Observation:
    """A single log2 EASIX measurement at a post-transplant day."""
    day: float
    value: float

    def to_dict(self) -> dict:
        return asdict(self)


ObservationLike = Union[Observation, Tuple[float, float], Mapping[str, float]]


def to_observation(item: ObservationLike) -> Observation:
    """Normalise an Observation, (day, value) pair or {'day', 'value'} mapping"""
    if isinstance(item, Observation):
        return item
    if isinstance(item, Mapping):
        return Observation(day=float(item["day"]), value=float(item["value"]))
    day, value = item
    return Observation(day=float(day), value=float(value))


def is_valid(obs: Observation, landmark_time: float) -> bool:
    """True if the observation may enter the landmark model."""
    return (
        math.isfinite(obs.day)
        and obs.day >= 0
        and obs.day <= landmark_time
        and math.isfinite(obs.value)
    )


def prepare_observations(
    observations: Iterable[ObservationLike],
    landmark_time: float
) -> List[Observation]:
    """
    Filter raw observations down to those usable at the landmark.

    Keeps observations with a finite, non-negative day on or before
    `landmark_time` and a finite value, ordered by day.

    Args:
        observations: Raw observations in any accepted form
        landmark_time: Landmark day (inclusive upper bound)

    Returns:
        Qualifying observations sorted by day

    Raises:
        InsufficientObservations: If fewer than 2 observations qualify
    """
    raw = [to_observation(item) for item in observations]
    kept = sorted((obs for obs in raw if is_valid(obs, landmark_time)), key=lambda o: o.day)

    dropped = len(raw) - len(kept)
    if dropped:
        logger.debug(f"Dropped {dropped} of {len(raw)} observations outside landmark window")

    if len(kept) < MIN_OBSERVATIONS:
        raise InsufficientObservations(len(kept), landmark_time)

    return kept


def observations_from_frame(
    df: pd.DataFrame,
    day_col: str = "day",
    value_col: str = "value"
) -> List[Observation]:
    """Convert a two-column DataFrame into observations (no filtering)."""
    missing = [c for c in (day_col, value_col) if c not in df.columns]
    if missing:
        raise KeyError(f"Missing columns: {missing}")
    return [
        Observation(day=float(day), value=float(value))
        for day, value in zip(df[day_col], df[value_col])
    ]


def observations_to_frame(observations: Sequence[Observation]) -> pd.DataFrame:
    return pd.DataFrame([obs.to_dict() for obs in observations], columns=["day", "value"])
