"""
EASIX Landmark Predictor - Landmark Projection
==============================================
Patient trajectory evaluated at the landmark day: the predicted log2 EASIX
value and its instantaneous slope, the two longitudinal covariates of the
Cox model.
"""

from dataclasses import dataclass
import logging

from .config import ModelParameters, SlopeScale
from .lme_model import RandomEffects

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LandmarkFeatures:
    value_at_landmark: float
    slope_at_landmark: float


def project_to_landmark(
    effects: RandomEffects,
    risk: int,
    params: ModelParameters
) -> LandmarkFeatures:
    """
    Combine fixed and random effects at the landmark day.

    The slope is reported on the scale declared by params.slope_scale, which
    must be the scale the Cox coefficients were fit on.
    """
    fe = params.fixed_effects
    landmark_std = params.time_standardization.standardize(params.landmark_time)

    value = (
        fe.intercept
        + fe.time_slope * landmark_std
        + fe.risk_coefficient * risk
        + effects.intercept
        + effects.slope * landmark_std
    )

    slope = fe.time_slope + effects.slope
    if params.slope_scale is SlopeScale.ORIGINAL:
        slope = slope / params.time_standardization.sd

    logger.debug(f"Landmark day {params.landmark_time:g}: value={value:.4f} slope={slope:.4f}")
    return LandmarkFeatures(value_at_landmark=value, slope_at_landmark=slope)
