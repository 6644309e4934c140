"""
EASIX Landmark Predictor - Mixed-Model Predictor
================================================

Estimates a patient's random intercept and slope from their pre-landmark
log2 EASIX values, given the population LME fit.

Model
-----
On standardised time t = (day - mean) / sd:

    y_i = (b0_pop + b0) + (b1_pop + b1) * t_i + beta_dri * DRI + e_i

    (b0, b1) ~ N(0, G),   e_i ~ N(0, sigma^2)

Exact GLS (BLUP)
----------------
With residuals r = y - X beta and random-effects design Z (rows [1, t_i]):

    V = Z G Z' + sigma^2 I
    b = G Z' V^-1 r

This is the empirical-Bayes estimator lme4 reports via ranef() and holds for
any G, including correlated intercept and slope.

Shrinkage approximation
-----------------------
Fit OLS of r on t, then shrink each coordinate toward zero:

    b0 = b0_ols * var_b0 / (var_b0 + sigma^2 / n)
    b1 = b1_ols * var_b1 / (var_b1 + sigma^2 / (n * mean(t^2)))

Cheaper, ignores the intercept-slope covariance, and only first-order
accurate for small n.
"""

from dataclasses import dataclass
from typing import Sequence
import logging

import numpy as np

from . import matrix
from .config import ModelParameters, BlupStrategy
from .errors import SingularMatrix, InsufficientObservations
from .observations import Observation, MIN_OBSERVATIONS

logger = logging.getLogger(__name__)


# Below this the OLS design has no spread in time
OLS_DEGENERACY_EPS = 1e-12


@dataclass(frozen=True)
class RandomEffects:
    """Patient-specific deviation from the population trend (standardised time)."""
    intercept: float
    slope: float


def standardized_times(observations: Sequence[Observation], params: ModelParameters) -> np.ndarray:
    ts = params.time_standardization
    return np.array([ts.standardize(obs.day) for obs in observations], dtype=float)


def fixed_effect_residuals(
    observations: Sequence[Observation],
    risk: int,
    params: ModelParameters
) -> np.ndarray:
    """r_i = y_i - (intercept + time_slope * t_i + risk_coefficient * risk)"""
    fe = params.fixed_effects
    t = standardized_times(observations, params)
    y = np.array([obs.value for obs in observations], dtype=float)
    expected = fe.intercept + fe.time_slope * t + fe.risk_coefficient * risk
    return y - expected


def blup_exact(t: np.ndarray, residuals: np.ndarray, params: ModelParameters) -> RandomEffects:
    """
    Exact GLS BLUP of the random effects.

    Args:
        t: Standardised observation times (n,)
        residuals: Residuals from the fixed effects (n,)
        params: Model parameters (G and sigma^2)

    Returns:
        RandomEffects (b0, b1)

    Raises:
        SingularMatrix: If V = Z G Z' + sigma^2 I cannot be inverted
    """
    n = len(t)
    G = params.random_effects.as_matrix()

    Z = np.column_stack([np.ones(n), t])            # n x 2
    Zt = matrix.transpose(Z)                        # 2 x n
    r = np.asarray(residuals, dtype=float).reshape(n, 1)

    ZGZt = matrix.multiply(matrix.multiply(Z, G), Zt)
    V = matrix.add(ZGZt, matrix.scalar_multiply(params.residual_variance, matrix.identity(n)))

    V_inv = matrix.inverse(V)
    b_hat = matrix.multiply(matrix.multiply(matrix.multiply(G, Zt), V_inv), r)

    return RandomEffects(intercept=float(b_hat[0, 0]), slope=float(b_hat[1, 0]))


def blup_shrinkage(t: np.ndarray, residuals: np.ndarray, params: ModelParameters) -> RandomEffects:
    """
    Coordinate-wise shrinkage of the OLS fit of residuals on time.

    Raises:
        SingularMatrix: If all observation times coincide
    """
    n = len(t)
    t = np.asarray(t, dtype=float)
    r = np.asarray(residuals, dtype=float)

    t_mean = t.mean()
    r_mean = r.mean()
    sxx = float(np.sum((t - t_mean) ** 2))
    if sxx < OLS_DEGENERACY_EPS:
        raise SingularMatrix("Cannot compute slope: all observations share the same day")

    b1_ols = float(np.sum((t - t_mean) * (r - r_mean))) / sxx
    b0_ols = r_mean - b1_ols * t_mean

    re = params.random_effects
    sigma2 = params.residual_variance
    mean_t2 = float(np.mean(t ** 2))

    shrink_intercept = _shrink_ratio(re.var_intercept, sigma2 / n)
    shrink_slope = _shrink_ratio(re.var_slope, sigma2 / (n * mean_t2))

    logger.debug(
        f"OLS b0={b0_ols:.4f} b1={b1_ols:.4f}, "
        f"shrinkage intercept={shrink_intercept:.4f} slope={shrink_slope:.4f}"
    )
    return RandomEffects(intercept=b0_ols * shrink_intercept, slope=b1_ols * shrink_slope)


def _shrink_ratio(signal: float, noise: float) -> float:
    total = signal + noise
    # signal == noise == 0: nothing to shrink toward or away from
    if total == 0:
        return 1.0
    return signal / total


def estimate_random_effects(
    observations: Sequence[Observation],
    risk: int,
    params: ModelParameters
) -> RandomEffects:
    """
    Random intercept and slope for one patient using the configured strategy.

    Args:
        observations: Pre-filtered observations (see prepare_observations)
        risk: DRI indicator (0 or 1)
        params: Model parameters

    Returns:
        RandomEffects on the standardised time scale
    """
    if len(observations) < MIN_OBSERVATIONS:
        raise InsufficientObservations(len(observations), params.landmark_time)

    t = standardized_times(observations, params)
    residuals = fixed_effect_residuals(observations, risk, params)

    if params.blup_strategy is BlupStrategy.SHRINKAGE:
        effects = blup_shrinkage(t, residuals, params)
    else:
        effects = blup_exact(t, residuals, params)

    logger.debug(
        f"{params.blup_strategy.value} BLUP from {len(observations)} observations: "
        f"b0={effects.intercept:.4f} b1={effects.slope:.4f}"
    )
    return effects
