"""
EASIX Landmark Predictor
========================
Predict 2-year post-transplant event rate from longitudinal log2 EASIX
using a landmark mixed model feeding a Cox model.
"""

from .config import (
    ModelParameters,
    FixedEffects,
    RandomEffectsCovariance,
    TimeStandardization,
    CoxCoefficients,
    BaselineHazard,
    ModelMetadata,
    BlupStrategy,
    SlopeScale,
    DiseaseRiskIndex,
    RiskBand,
    load_model_parameters,
    encode_dri,
    classify_risk
)

from .errors import (
    EasixModelError,
    PredictionError,
    InsufficientObservations,
    SingularMatrix,
    InvalidConfiguration
)

from .observations import Observation, prepare_observations

from .predictor import (
    LandmarkPredictor,
    PredictionResult,
    PredictionOutcome,
    predict
)

__version__ = "0.1.0"
