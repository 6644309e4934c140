"""
EASIX Landmark Predictor - Prediction Pipeline
==============================================

Ties the pieces together into the per-patient prediction:

    observations + DRI
        -> prepare_observations      (landmark window, finite values)
        -> estimate_random_effects   (BLUP of intercept / slope)
        -> project_to_landmark       (log2 EASIX and slope at landmark)
        -> CoxSurvivalEvaluator      (LP, H0 at horizon, survival)
        -> PredictionResult

A LandmarkPredictor holds only the immutable ModelParameters, so one
instance can serve any number of threads.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Mapping, Optional, Union
import logging

import numpy as np
import pandas as pd

from .config import ModelParameters, SlopeScale, load_model_parameters, classify_risk
from .cox_model import CoxSurvivalEvaluator, event_rate_percent
from .errors import PredictionError, InsufficientObservations, SingularMatrix
from .landmark import project_to_landmark
from .lme_model import estimate_random_effects
from .observations import ObservationLike, prepare_observations, observations_from_frame

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class PredictionResult:
    """
    Output of one landmark prediction.

    Attributes:
        value_at_landmark: Predicted log2 EASIX at the landmark day
        slope_at_landmark: Trajectory slope at the landmark (model's time scale)
        linear_predictor: Cox linear predictor
        survival_probability: P(event-free at horizon), in [0, 1]
        event_rate_percent: (1 - survival_probability) x 100
        random_intercept: BLUP b0
        random_slope: BLUP b1 (standardised time)
        n_observations: Observations that entered the model
    """
    value_at_landmark: float
    slope_at_landmark: float
    linear_predictor: float
    survival_probability: float
    event_rate_percent: float
    random_intercept: float = 0.0
    random_slope: float = 0.0
    n_observations: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PredictionOutcome:
    """Either a result or the per-call error that prevented one."""
    result: Optional[PredictionResult] = None
    error: Optional[PredictionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> str:
        if self.error is None:
            return "ok"
        if isinstance(self.error, InsufficientObservations):
            return "insufficient_observations"
        if isinstance(self.error, SingularMatrix):
            return "singular_matrix"
        return "error"

    def unwrap(self) -> PredictionResult:
        """Return the result or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.result


RESULT_COLUMNS = [
    'value_at_landmark', 'slope_at_landmark', 'linear_predictor',
    'survival_probability', 'event_rate_percent',
    'random_intercept', 'random_slope', 'n_observations',
]


# =============================================================================
# PREDICTOR
# =============================================================================

class LandmarkPredictor:
    """
    Dynamic EASIX-DRI landmark predictor.

    Estimates 2-year post-transplant event probability from log2 EASIX
    measurements taken up to the landmark day, plus the DRI indicator.

    The model is NOT fitted here: all coefficients come from the supplied
    ModelParameters.
    """

    def __init__(self, params: ModelParameters):
        self.params = params
        self.cox = CoxSurvivalEvaluator(params)

        logger.info(
            f"LandmarkPredictor initialised with model v{params.version} "
            f"({params.blup_strategy.value} BLUP)"
        )

    @classmethod
    def from_file(cls, path=None) -> "LandmarkPredictor":
        """Load parameters from an artifact (bundled default if None)."""
        return cls(load_model_parameters(path))

    def predict(self, observations: Iterable[ObservationLike], risk_indicator: Union[int, bool]) -> PredictionResult:
        """
        Predict the horizon event rate for one patient.

        Args:
            observations: (day, log2 EASIX) observations; anything after the
                landmark or non-finite is ignored
            risk_indicator: DRI indicator, 0 (low/intermediate) or 1
                (high/very high)

        Returns:
            PredictionResult

        Raises:
            InsufficientObservations: Fewer than 2 usable observations
            SingularMatrix: Marginal covariance could not be inverted
        """
        risk = _check_risk(risk_indicator)
        params = self.params

        # Step 1: Landmark window
        kept = prepare_observations(observations, params.landmark_time)

        # Step 2: Patient deviation from the population trend
        effects = estimate_random_effects(kept, risk, params)

        # Step 3: Trajectory at the landmark
        features = project_to_landmark(effects, risk, params)

        # Step 4: Cox model at the horizon
        lp = self.cox.linear_predictor(risk, features)
        survival = self.cox.survival(lp)

        logger.debug(f"LP={lp:.4f} S({params.prediction_horizon:g})={survival:.4f}")

        return PredictionResult(
            value_at_landmark=features.value_at_landmark,
            slope_at_landmark=features.slope_at_landmark,
            linear_predictor=lp,
            survival_probability=survival,
            event_rate_percent=event_rate_percent(survival),
            random_intercept=effects.intercept,
            random_slope=effects.slope,
            n_observations=len(kept),
        )

    def evaluate(self, observations: Iterable[ObservationLike], risk_indicator: Union[int, bool]) -> PredictionOutcome:
        """Like predict(), but returns prediction errors instead of raising."""
        try:
            return PredictionOutcome(result=self.predict(observations, risk_indicator))
        except PredictionError as e:
            logger.warning(f"Prediction failed: {e}")
            return PredictionOutcome(error=e)

    def predict_cohort(
        self,
        observations: pd.DataFrame,
        risk_indicators: Optional[Union[Mapping, pd.Series]] = None,
        id_col: str = "patient_id",
        day_col: str = "day",
        value_col: str = "value",
        risk_col: str = "risk_indicator"
    ) -> pd.DataFrame:
        """
        Predict for every patient in a long-format table.

        Args:
            observations: One row per measurement with id, day and value columns
            risk_indicators: patient id -> 0/1. If None, the first value of
                `risk_col` per patient is used. Patients with a missing or
                invalid indicator get status "invalid_risk".

        Returns:
            DataFrame with one row per patient: id, status, error and the
            PredictionResult fields (NaN where the prediction failed)
        """
        required = [id_col, day_col, value_col]
        if risk_indicators is None:
            required.append(risk_col)
        missing = [c for c in required if c not in observations.columns]
        if missing:
            raise KeyError(f"Missing columns: {missing}")

        rows: List[Dict] = []
        for patient_id, group in observations.groupby(id_col, sort=True):
            if risk_indicators is None:
                risk = group[risk_col].iloc[0]
            else:
                risk = risk_indicators.get(patient_id)

            try:
                risk = _check_risk(risk)
            except ValueError as e:
                logger.warning(f"Patient {patient_id}: {e}")
                rows.append(_cohort_row(id_col, patient_id, 'invalid_risk', str(e)))
                continue

            outcome = self.evaluate(observations_from_frame(group, day_col, value_col), risk)
            rows.append(_cohort_row(
                id_col, patient_id, outcome.status,
                None if outcome.ok else str(outcome.error), outcome.result
            ))

        n_ok = sum(1 for r in rows if r['status'] == 'ok')
        logger.info(f"Cohort prediction: {n_ok}/{len(rows)} patients predicted")

        return pd.DataFrame(rows, columns=[id_col, 'status', 'error'] + RESULT_COLUMNS)

    def explain_prediction(self, result: PredictionResult) -> str:
        """
        Plain-language summary of a prediction, suitable for a report.
        """
        p = self.params
        band = classify_risk(result.event_rate_percent)
        slope_unit = "per SD of days" if p.slope_scale is SlopeScale.STANDARDIZED else "per day"

        lines = []
        lines.append(f"DYNAMIC EASIX LANDMARK PREDICTION")
        lines.append(f"=" * 40)
        lines.append(f"")
        lines.append(f"Observations used (day <= {p.landmark_time:g}): {result.n_observations}")
        lines.append(f"")
        lines.append(f"AT LANDMARK (day {p.landmark_time:g}):")
        lines.append(f"  • log2 EASIX: {result.value_at_landmark:.3f}")
        lines.append(f"  • Slope: {result.slope_at_landmark:+.3f} {slope_unit}")
        lines.append(f"")
        lines.append(f"HORIZON (day {p.prediction_horizon:g}):")
        lines.append(f"  • Event-free probability: {result.survival_probability:.1%}")
        lines.append(f"  • Event rate: {result.event_rate_percent:.1f}%  ({band.value} risk)")
        lines.append(f"")
        lines.append(f"Cox linear predictor: {result.linear_predictor:.3f}")
        lines.append(f"Model version: {p.version}")

        return "\n".join(lines)


def _check_risk(risk_indicator) -> int:
    if isinstance(risk_indicator, (bool, np.bool_)):
        return int(risk_indicator)
    try:
        valid = risk_indicator in (0, 1)
    except TypeError:
        # pd.NA has no truth value
        valid = False
    if valid:
        return int(risk_indicator)
    raise ValueError(f"risk_indicator must be 0 or 1, got {risk_indicator!r}")


def _cohort_row(id_col: str, patient_id, status: str, error: Optional[str],
                result: Optional[PredictionResult] = None) -> Dict:
    row = {id_col: patient_id, 'status': status, 'error': error}
    if result is not None:
        row.update(result.to_dict())
    else:
        row.update({col: np.nan for col in RESULT_COLUMNS})
    return row


def predict(
    observations: Iterable[ObservationLike],
    risk_indicator: Union[int, bool],
    params: ModelParameters
) -> PredictionResult:
    """Functional form of LandmarkPredictor.predict."""
    return LandmarkPredictor(params).predict(observations, risk_indicator)


# =============================================================================
# EXAMPLE USAGE
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    predictor = LandmarkPredictor.from_file()

    print("\n" + "=" * 60)
    print("EXAMPLE: DRI high, two EASIX values before day 120")
    print("=" * 60)

    result = predictor.predict([(60, 1.0), (90, 1.4)], risk_indicator=1)
    print(predictor.explain_prediction(result))
