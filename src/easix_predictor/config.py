"""
EASIX Landmark Predictor - Configuration & Domain Types
=======================================================

This module defines the model parameter store for the dynamic EASIX landmark
model and the small set of domain enums used around it.

Model Parameters
----------------
The landmark model is fit offline (R, lme4 + survival) and shipped as a
structured document with three sections:

- lme_model: fixed effects, random-effects covariance G, residual variance
  and the constants used to standardise sampling days
- cox_model: Cox coefficients and the baseline cumulative hazard table
- metadata: landmark day, prediction horizon and provenance

The document is parsed once at startup into frozen dataclasses. Any missing or
numerically invalid field raises InvalidConfiguration naming that field, so a
malformed artifact never reaches the prediction path.

Slope Convention
----------------
The Cox model was trained with slope_at_landmark measured either on the
standardised time scale (per SD of days) or the original scale (per day).
Supplying coefficients fit on one scale while the store declares the other
silently produces wrong survival estimates. The reference model uses the
standardised scale, which is the default here.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Tuple, Any, Union
from pathlib import Path
import logging
import math

import numpy as np
import yaml

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)


DEFAULT_MODEL_PATH = Path(__file__).parent / "model_coefficients.yaml"


# =============================================================================
# DOMAIN ENUMS
# =============================================================================

class DiseaseRiskIndex(Enum):
    """
    Refined Disease Risk Index categories.

    The landmark model uses a binary indicator: Low/Intermediate are pooled as
    the reference group (0), High/Very High as the exposed group (1).
    """
    LOW = "Low"
    INTERMEDIATE = "Intermediate"
    HIGH = "High"
    VERY_HIGH = "Very High"


DRI_INDICATOR_MAP: Dict[DiseaseRiskIndex, int] = {
    DiseaseRiskIndex.LOW: 0,
    DiseaseRiskIndex.INTERMEDIATE: 0,
    DiseaseRiskIndex.HIGH: 1,
    DiseaseRiskIndex.VERY_HIGH: 1,
}


class RiskBand(Enum):
    """
    Presentation bands for the 2-year event rate.

    - LOW: < 20%
    - MODERATE: 20-40%
    - HIGH: >= 40%
    """
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


class BlupStrategy(Enum):
    """
    How the patient-specific random effects are estimated.

    EXACT_GLS solves b = G Z' V^-1 r with the full marginal covariance and is
    the variant matched against the R reference. SHRINKAGE is a first-order
    approximation that shrinks OLS estimates coordinate-wise and ignores the
    intercept-slope covariance.
    """
    EXACT_GLS = "exact_gls"
    SHRINKAGE = "shrinkage"


class SlopeScale(Enum):
    """Time scale of slope_at_landmark expected by the Cox coefficients."""
    STANDARDIZED = "standardized"
    ORIGINAL = "original"


# =============================================================================
# MODEL PARAMETER STORE
# =============================================================================

@dataclass(frozen=True)
class FixedEffects:
    """LME population trend: intercept + time_slope * t_std + risk_coefficient * DRI."""
    intercept: float
    time_slope: float
    risk_coefficient: float


@dataclass(frozen=True)
class RandomEffectsCovariance:
    """Covariance G of the random intercept and random slope."""
    var_intercept: float
    var_slope: float
    covariance: float = 0.0

    def as_matrix(self) -> np.ndarray:
        return np.array([
            [self.var_intercept, self.covariance],
            [self.covariance, self.var_slope],
        ])


@dataclass(frozen=True)
class TimeStandardization:
    """Centre and scale applied to raw days before any linear algebra."""
    mean: float
    sd: float

    def standardize(self, day: float) -> float:
        return (day - self.mean) / self.sd


@dataclass(frozen=True)
class CoxCoefficients:
    """Log hazard ratios of the landmark Cox model."""
    risk: float
    value_at_landmark: float
    slope_at_landmark: float


@dataclass(frozen=True)
class BaselineHazard:
    """
    Baseline cumulative hazard step table.

    Times are strictly increasing and hazards non-decreasing; both are
    stored as tuples so the table stays immutable.
    """
    times: Tuple[float, ...]
    hazards: Tuple[float, ...]

    @property
    def points(self) -> List[Tuple[float, float]]:
        return list(zip(self.times, self.hazards))

    def __len__(self) -> int:
        return len(self.times)


@dataclass(frozen=True)
class ModelMetadata:
    model_version: str = "unknown"
    created_date: str = ""
    description: str = ""


@dataclass(frozen=True)
class ModelParameters:
    """
    Immutable landmark model parameters.

    Constructed once (usually via load_model_parameters) and passed explicitly
    to LandmarkPredictor. Safe to share across threads.
    """
    fixed_effects: FixedEffects
    random_effects: RandomEffectsCovariance
    residual_variance: float
    time_standardization: TimeStandardization
    cox: CoxCoefficients
    baseline_hazard: BaselineHazard
    landmark_time: float
    prediction_horizon: float
    blup_strategy: BlupStrategy = BlupStrategy.EXACT_GLS
    slope_scale: SlopeScale = SlopeScale.STANDARDIZED
    metadata: ModelMetadata = field(default_factory=ModelMetadata)

    def __post_init__(self):
        validate_model_parameters(self)

    @property
    def version(self) -> str:
        return self.metadata.model_version

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelParameters":
        """
        Build parameters from the fitted-model document.

        Args:
            data: Parsed artifact with metadata / lme_model / cox_model
                sections (see model_coefficients.yaml)

        Returns:
            Validated ModelParameters

        Raises:
            InvalidConfiguration: On any missing or invalid field
        """
        if not isinstance(data, dict):
            raise InvalidConfiguration("model document must be a mapping")

        metadata = _section(data, "metadata")
        lme = _section(data, "lme_model")
        cox = _section(data, "cox_model")
        options = data.get("configuration") or {}

        fe = _section(lme, "fixed_effects", "lme_model.fixed_effects")
        re = _section(lme, "random_effects", "lme_model.random_effects")
        ts = _section(lme, "time_standardization", "lme_model.time_standardization")
        coef = _section(cox, "coefficients", "cox_model.coefficients")

        if ts.get("enabled") is False:
            raise InvalidConfiguration(
                "time standardization must be enabled", "lme_model.time_standardization"
            )

        return cls(
            fixed_effects=FixedEffects(
                intercept=_number(fe, "intercept", "lme_model.fixed_effects"),
                time_slope=_number(fe, "time_slope", "lme_model.fixed_effects"),
                risk_coefficient=_number(fe, "dri_coefficient", "lme_model.fixed_effects"),
            ),
            random_effects=RandomEffectsCovariance(
                var_intercept=_number(re, "variance_intercept", "lme_model.random_effects"),
                var_slope=_number(re, "variance_slope", "lme_model.random_effects"),
                covariance=_number(
                    re, "covariance_intercept_slope", "lme_model.random_effects", default=0.0
                ),
            ),
            residual_variance=_number(lme, "residual_variance", "lme_model"),
            time_standardization=TimeStandardization(
                mean=_number(ts, "mean", "lme_model.time_standardization"),
                sd=_number(ts, "sd", "lme_model.time_standardization"),
            ),
            cox=CoxCoefficients(
                risk=_number(coef, "dri", "cox_model.coefficients"),
                value_at_landmark=_number(coef, "log2easix_at_landmark", "cox_model.coefficients"),
                slope_at_landmark=_number(coef, "slope_at_landmark", "cox_model.coefficients"),
            ),
            baseline_hazard=_parse_baseline_hazard(cox.get("baseline_hazard")),
            landmark_time=_number(metadata, "landmark_time_days", "metadata"),
            prediction_horizon=_number(metadata, "prediction_horizon_days", "metadata"),
            blup_strategy=_option(options, "blup_strategy", BlupStrategy, BlupStrategy.EXACT_GLS),
            slope_scale=_option(options, "slope_scale", SlopeScale, SlopeScale.STANDARDIZED),
            metadata=ModelMetadata(
                model_version=str(metadata.get("model_version", "unknown")),
                created_date=str(metadata.get("created_date", "")),
                description=str(metadata.get("description", "")),
            ),
        )


# =============================================================================
# LOADING & VALIDATION
# =============================================================================

def load_model_parameters(path: Optional[Union[str, Path]] = None) -> ModelParameters:
    """
    Load model parameters from a YAML (or JSON) artifact.

    Args:
        path: Path to the artifact. If None, uses the bundled default.

    Returns:
        Validated ModelParameters

    Raises:
        InvalidConfiguration: If the file is unreadable or invalid
    """
    if path is None:
        path = DEFAULT_MODEL_PATH
    path = Path(path)

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise InvalidConfiguration(f"cannot read model artifact {path}: {e}") from e
    except yaml.YAMLError as e:
        raise InvalidConfiguration(f"cannot parse model artifact {path}: {e}") from e

    params = ModelParameters.from_dict(data)
    logger.info(
        f"Loaded landmark model v{params.version} from {path} "
        f"(landmark day {params.landmark_time:g}, horizon day {params.prediction_horizon:g}, "
        f"{params.blup_strategy.value}, {params.slope_scale.value} slope)"
    )
    return params


def validate_model_parameters(params: ModelParameters) -> None:
    """Numeric sanity checks; raises InvalidConfiguration on the first failure."""
    for name in ("intercept", "time_slope", "risk_coefficient"):
        _require_finite(getattr(params.fixed_effects, name), f"fixed_effects.{name}")
    for name in ("risk", "value_at_landmark", "slope_at_landmark"):
        _require_finite(getattr(params.cox, name), f"cox.{name}")

    ts = params.time_standardization
    _require_finite(ts.mean, "time_standardization.mean")
    _require_finite(ts.sd, "time_standardization.sd")
    if ts.sd == 0:
        raise InvalidConfiguration("sd must be non-zero", "time_standardization.sd")

    re = params.random_effects
    for name in ("var_intercept", "var_slope", "covariance"):
        _require_finite(getattr(re, name), f"random_effects.{name}")
    if re.var_intercept < 0 or re.var_slope < 0:
        raise InvalidConfiguration("variances must be non-negative", "random_effects")
    # PSD check for a symmetric 2x2 matrix, with a little room for rounding
    if re.covariance ** 2 > re.var_intercept * re.var_slope * (1 + 1e-9) + 1e-15:
        raise InvalidConfiguration(
            "covariance matrix G is not positive semi-definite", "random_effects.covariance"
        )

    _require_finite(params.residual_variance, "residual_variance")
    if params.residual_variance < 0:
        raise InvalidConfiguration("must be >= 0", "residual_variance")

    _require_finite(params.landmark_time, "landmark_time")
    _require_finite(params.prediction_horizon, "prediction_horizon")
    if params.prediction_horizon <= params.landmark_time:
        raise InvalidConfiguration(
            f"must be after landmark_time ({params.landmark_time:g})", "prediction_horizon"
        )

    _validate_baseline_hazard(params.baseline_hazard)

    if not isinstance(params.blup_strategy, BlupStrategy):
        raise InvalidConfiguration("unknown strategy", "blup_strategy")
    if not isinstance(params.slope_scale, SlopeScale):
        raise InvalidConfiguration("unknown scale", "slope_scale")


def _validate_baseline_hazard(table: BaselineHazard) -> None:
    if len(table.times) == 0 or len(table.times) != len(table.hazards):
        raise InvalidConfiguration("table must be non-empty", "baseline_hazard")
    for t, h in zip(table.times, table.hazards):
        _require_finite(t, "baseline_hazard.time")
        _require_finite(h, "baseline_hazard.hazard")
        if h < 0:
            raise InvalidConfiguration("hazards must be non-negative", "baseline_hazard")
    for i in range(1, len(table.times)):
        if table.times[i] <= table.times[i - 1]:
            raise InvalidConfiguration(
                f"times must be strictly increasing (index {i})", "baseline_hazard"
            )
        if table.hazards[i] < table.hazards[i - 1]:
            raise InvalidConfiguration(
                f"cumulative hazard must be non-decreasing (index {i})", "baseline_hazard"
            )


def _parse_baseline_hazard(raw) -> BaselineHazard:
    if not isinstance(raw, list) or not raw:
        raise InvalidConfiguration("missing or empty", "cox_model.baseline_hazard")
    times, hazards = [], []
    for i, point in enumerate(raw):
        where = f"cox_model.baseline_hazard[{i}]"
        if not isinstance(point, dict):
            raise InvalidConfiguration("point must be a mapping with time/hazard", where)
        times.append(_number(point, "time", where))
        hazards.append(_number(point, "hazard", where))
    return BaselineHazard(times=tuple(times), hazards=tuple(hazards))


def _section(data: Dict[str, Any], key: str, where: Optional[str] = None) -> Dict[str, Any]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise InvalidConfiguration("missing section", where or key)
    return value


def _number(data: Dict[str, Any], key: str, where: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    if value is None:
        raise InvalidConfiguration("required value is missing", f"{where}.{key}")
    if isinstance(value, bool):
        raise InvalidConfiguration(f"expected a number, got {value!r}", f"{where}.{key}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidConfiguration(f"expected a number, got {value!r}", f"{where}.{key}") from e
    _require_finite(number, f"{where}.{key}")
    return number


def _option(options: Dict[str, Any], key: str, enum_cls, default):
    value = options.get(key)
    if value is None:
        return default
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidConfiguration(
            f"unknown value {value!r} (expected one of {allowed})", f"configuration.{key}"
        ) from e


def _require_finite(value: float, name: str) -> None:
    try:
        finite = value is not None and math.isfinite(value)
    except TypeError:
        finite = False
    if not finite:
        raise InvalidConfiguration(f"must be a finite number, got {value!r}", name)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def encode_dri(dri: Union[DiseaseRiskIndex, str]) -> int:
    """Map a DRI category (enum or its label) to the model's 0/1 indicator."""
    if not isinstance(dri, DiseaseRiskIndex):
        dri = DiseaseRiskIndex(dri)
    return DRI_INDICATOR_MAP[dri]


def classify_risk(event_rate_percent: float) -> RiskBand:
    """Bucket a 2-year event rate into a presentation band"""
    if event_rate_percent < 20:
        return RiskBand.LOW
    elif event_rate_percent < 40:
        return RiskBand.MODERATE
    else:
        return RiskBand.HIGH
