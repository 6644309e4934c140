"""
Shared fixtures: the worked-example landmark model.
"""

import pytest

from easix_predictor import LandmarkPredictor, ModelParameters


def make_model_document() -> dict:
    """Fresh copy of the worked-example parameter document."""
    return {
        'metadata': {
            'model_version': 'test-1',
            'created_date': '2025-01-01',
            'landmark_time_days': 120,
            'prediction_horizon_days': 730,
            'description': 'fixture',
        },
        'lme_model': {
            'fixed_effects': {'intercept': 1.0, 'time_slope': 0.5, 'dri_coefficient': 0.8},
            'random_effects': {
                'variance_intercept': 0.04,
                'variance_slope': 0.01,
                'covariance_intercept_slope': 0.0,
            },
            'residual_variance': 0.09,
            'time_standardization': {'enabled': True, 'mean': 70, 'sd': 30},
        },
        'cox_model': {
            'coefficients': {'dri': 0.5, 'log2easix_at_landmark': 0.3, 'slope_at_landmark': 2.0},
            'baseline_hazard': [
                {'time': 0, 'hazard': 0.0},
                {'time': 365, 'hazard': 0.1},
                {'time': 730, 'hazard': 0.25},
            ],
        },
    }


@pytest.fixture
def model_document() -> dict:
    return make_model_document()


@pytest.fixture
def params(model_document) -> ModelParameters:
    return ModelParameters.from_dict(model_document)


@pytest.fixture
def predictor(params) -> LandmarkPredictor:
    return LandmarkPredictor(params)


@pytest.fixture
def worked_observations():
    return [(60, 1.0), (90, 1.4)]
