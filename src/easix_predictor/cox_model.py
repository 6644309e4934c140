"""
EASIX Landmark Predictor - Cox Survival Evaluator
=================================================

Turns the landmark features into a survival probability at the prediction
horizon.

Theoretical Background
----------------------
The landmark Cox model gives the cumulative hazard for a patient alive at
the landmark as

    H(t | x) = H0(t) x exp(LP),   LP = b_dri * DRI + b_val * log2EASIX(L) + b_slope * slope(L)

so that

    S(t | x) = exp(-H0(t) x exp(LP))

H0 is the Breslow baseline cumulative hazard exported from R as a step table.
Between recorded times it is interpolated linearly; outside the table it is
held flat at the first / last recorded value. Holding it flat past the last
event time is conservative: it never extrapolates hazard the data does not
support.
"""

from typing import Sequence
import logging

import numpy as np

from .config import ModelParameters, CoxCoefficients, BaselineHazard
from .landmark import LandmarkFeatures

logger = logging.getLogger(__name__)


def linear_predictor(cox: CoxCoefficients, risk: int, features: LandmarkFeatures) -> float:
    return (
        cox.risk * risk
        + cox.value_at_landmark * features.value_at_landmark
        + cox.slope_at_landmark * features.slope_at_landmark
    )


def interpolate_baseline_hazard(table: BaselineHazard, target_time: float) -> float:
    """
    Baseline cumulative hazard at `target_time`.

    Flat before the first and after the last recorded time, linear between
    the two bracketing points otherwise.
    """
    times, hazards = table.times, table.hazards

    if target_time <= times[0]:
        return hazards[0]
    if target_time >= times[-1]:
        return hazards[-1]

    # First index whose time is >= target; target lies in (times[i-1], times[i]]
    i = int(np.searchsorted(times, target_time, side='left'))
    t1, t2 = times[i - 1], times[i]
    h1, h2 = hazards[i - 1], hazards[i]

    return h1 + (h2 - h1) * (target_time - t1) / (t2 - t1)


def survival_probability(cumulative_hazard: float, lp: float) -> float:
    """S = exp(-H0 x exp(LP))"""
    return float(np.exp(-cumulative_hazard * np.exp(lp)))


class CoxSurvivalEvaluator:
    """
    Landmark Cox model evaluated at a fixed prediction horizon.

    The baseline hazard at the horizon does not depend on the patient, so it
    is interpolated once at construction.
    """

    def __init__(self, params: ModelParameters):
        self.params = params
        self.horizon = params.prediction_horizon
        self.baseline_at_horizon = interpolate_baseline_hazard(params.baseline_hazard, self.horizon)

        logger.debug(f"H0({self.horizon:g}) = {self.baseline_at_horizon:.6f}")

    def linear_predictor(self, risk: int, features: LandmarkFeatures) -> float:
        return linear_predictor(self.params.cox, risk, features)

    def survival(self, lp: float) -> float:
        """Probability of being event-free at the prediction horizon."""
        return survival_probability(self.baseline_at_horizon, lp)

    def survival_curve(self, lp: float, times: Sequence[float]) -> np.ndarray:
        """
        S(t | LP) on a grid of times, for plotting.

        Returns:
            Array of survival probabilities aligned with `times`
        """
        H0 = np.array(
            [interpolate_baseline_hazard(self.params.baseline_hazard, t) for t in times],
            dtype=float
        )
        return np.exp(-H0 * np.exp(lp))


def event_rate_percent(survival: float) -> float:
    return (1.0 - survival) * 100.0
