"""
Landmark Prediction Pipeline - Unit Tests
"""

import dataclasses
import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

from easix_predictor import (
    LandmarkPredictor, PredictionResult, BlupStrategy, SlopeScale,
    InsufficientObservations, SingularMatrix, predict
)


class TestWorkedScenario:
    """Worked example: DRI high, days 60 and 90"""

    def test_expected_values(self, predictor, worked_observations):
        result = predictor.predict(worked_observations, risk_indicator=1)
        assert result.value_at_landmark == pytest.approx(2.28, abs=0.02)
        assert result.slope_at_landmark == pytest.approx(0.48, abs=0.02)
        assert result.linear_predictor == pytest.approx(2.15, abs=0.05)
        assert result.survival_probability == pytest.approx(0.117, abs=0.01)
        assert result.event_rate_percent == pytest.approx(88.3, abs=1.0)

    def test_precise_values(self, predictor, worked_observations):
        result = predictor.predict(worked_observations, risk_indicator=1)
        assert result.value_at_landmark == pytest.approx(2.283333, abs=1e-5)
        assert result.slope_at_landmark == pytest.approx(0.482099, abs=1e-5)
        assert result.linear_predictor == pytest.approx(2.149198, abs=1e-5)
        assert result.survival_probability == pytest.approx(0.117127, abs=5e-5)
        assert result.n_observations == 2

    def test_functional_form(self, params, worked_observations):
        assert predict(worked_observations, 1, params) == \
            LandmarkPredictor(params).predict(worked_observations, 1)

    def test_bundled_model(self, worked_observations):
        result = LandmarkPredictor.from_file().predict(worked_observations, 1)
        assert result.event_rate_percent == pytest.approx(88.3, abs=1.0)


class TestProperties:

    @pytest.mark.parametrize("observations, risk", [
        ([(60, 1.0), (90, 1.4)], 1),
        ([(20, -1.0), (50, -0.5), (110, 0.2)], 0),
        ([(25, 4.0), (119, 6.5)], 1),
        ([(30, 0.5), (75, 1.1), (115, 1.9)], 0),
    ])
    def test_probability_consistency(self, predictor, observations, risk):
        result = predictor.predict(observations, risk)
        assert 0.0 <= result.survival_probability <= 1.0
        assert 0.0 <= result.event_rate_percent <= 100.0
        assert result.survival_probability == pytest.approx(
            1 - result.event_rate_percent / 100, abs=1e-9
        )

    def test_deterministic(self, predictor, worked_observations):
        first = predictor.predict(worked_observations, 1)
        second = predictor.predict(list(worked_observations), 1)
        assert first == second

    def test_order_of_observations_irrelevant(self, predictor):
        a = predictor.predict([(30, 0.5), (75, 1.1), (115, 1.9)], 0)
        b = predictor.predict([(115, 1.9), (30, 0.5), (75, 1.1)], 0)
        assert a == b

    def test_post_landmark_observation_ignored(self, predictor, worked_observations):
        base = predictor.predict(worked_observations, 1)
        extended = predictor.predict(worked_observations + [(121, 9.0), (400, 9.0)], 1)
        assert base == extended

    def test_landmark_boundary(self, predictor):
        included = predictor.predict([(60, 1.0), (90, 1.4), (120, 2.0)], 1)
        excluded = predictor.predict([(60, 1.0), (90, 1.4), (120 + 1e-9, 2.0)], 1)
        assert included.n_observations == 3
        assert excluded.n_observations == 2

    def test_higher_biomarker_means_lower_survival(self, predictor):
        low = predictor.predict([(60, 1.0), (90, 1.4)], 1)
        high = predictor.predict([(60, 2.0), (90, 2.4)], 1)
        assert high.linear_predictor > low.linear_predictor
        assert high.survival_probability < low.survival_probability

    def test_thread_safe(self, predictor):
        cases = [[(30 + i, 0.5 + 0.1 * i), (90, 1.4)] for i in range(20)]
        expected = [predictor.predict(c, 1) for c in cases]
        with ThreadPoolExecutor(max_workers=4) as pool:
            actual = list(pool.map(lambda c: predictor.predict(c, 1), cases))
        assert actual == expected


class TestConfiguration:

    def test_shrinkage_strategy(self, params, worked_observations):
        shrink = LandmarkPredictor(dataclasses.replace(params, blup_strategy=BlupStrategy.SHRINKAGE))
        result = shrink.predict(worked_observations, 1)
        assert result.value_at_landmark == pytest.approx(2.309918, abs=1e-5)

    def test_original_slope_scale(self, params, worked_observations):
        standardized = LandmarkPredictor(params).predict(worked_observations, 1)
        original = LandmarkPredictor(
            dataclasses.replace(params, slope_scale=SlopeScale.ORIGINAL)
        ).predict(worked_observations, 1)
        assert original.slope_at_landmark == pytest.approx(standardized.slope_at_landmark / 30)
        assert original.value_at_landmark == pytest.approx(standardized.value_at_landmark)


class TestFailures:

    def test_insufficient_observations(self, predictor):
        with pytest.raises(InsufficientObservations):
            predictor.predict([(60, 1.0), (130, 1.4)], 1)

    def test_nan_values_do_not_count(self, predictor):
        with pytest.raises(InsufficientObservations):
            predictor.predict([(60, 1.0), (90, math.nan)], 1)

    def test_singular_covariance(self, params):
        noiseless = LandmarkPredictor(dataclasses.replace(params, residual_variance=0.0))
        with pytest.raises(SingularMatrix):
            noiseless.predict([(60, 1.0), (60, 1.4)], 1)

    @pytest.mark.parametrize("risk", [2, -1, 0.5, "1", None])
    def test_invalid_risk_indicator(self, predictor, worked_observations, risk):
        with pytest.raises(ValueError):
            predictor.predict(worked_observations, risk)

    def test_boolean_risk_indicator(self, predictor, worked_observations):
        assert predictor.predict(worked_observations, True) == predictor.predict(worked_observations, 1)


class TestEvaluate:
    """Explicit result type"""

    def test_ok(self, predictor, worked_observations):
        outcome = predictor.evaluate(worked_observations, 1)
        assert outcome.ok
        assert outcome.status == "ok"
        assert isinstance(outcome.unwrap(), PredictionResult)

    def test_insufficient(self, predictor):
        outcome = predictor.evaluate([(60, 1.0)], 1)
        assert not outcome.ok
        assert outcome.result is None
        assert outcome.status == "insufficient_observations"
        with pytest.raises(InsufficientObservations):
            outcome.unwrap()

    def test_singular(self, params):
        noiseless = LandmarkPredictor(dataclasses.replace(params, residual_variance=0.0))
        outcome = noiseless.evaluate([(60, 1.0), (60, 1.4)], 0)
        assert outcome.status == "singular_matrix"


class TestCohort:
    """Batch prediction over a long-format table"""

    @pytest.fixture
    def cohort(self):
        return pd.DataFrame({
            'patient_id': ['A', 'A', 'B', 'C', 'C', 'C', 'C'],
            'day': [60, 90, 45, 30, 75, 115, 150],
            'value': [1.0, 1.4, 2.0, 0.5, 1.1, 1.9, 3.0],
            'risk_indicator': [1, 1, 0, 0, 0, 0, 0],
        })

    def test_predict_cohort(self, predictor, cohort):
        out = predictor.predict_cohort(cohort)
        assert out['patient_id'].tolist() == ['A', 'B', 'C']
        assert out['status'].tolist() == ['ok', 'insufficient_observations', 'ok']

        a = out.set_index('patient_id').loc['A']
        assert a['event_rate_percent'] == pytest.approx(88.287, abs=0.01)
        assert np.isnan(out.set_index('patient_id').loc['B', 'survival_probability'])
        assert out.set_index('patient_id').loc['C', 'n_observations'] == 3

    def test_explicit_risk_mapping(self, predictor, cohort):
        out = predictor.predict_cohort(cohort.drop(columns='risk_indicator'), {'A': 0, 'B': 0, 'C': 1})
        by_id = out.set_index('patient_id')
        single = predictor.predict([(60, 1.0), (90, 1.4)], 0)
        assert by_id.loc['A', 'linear_predictor'] == pytest.approx(single.linear_predictor)

    def test_missing_risk_value_is_per_patient(self, predictor):
        """A patient without a DRI value does not stop the batch"""
        cohort = pd.DataFrame({
            'patient_id': ['A', 'A', 'B', 'B'],
            'day': [60, 90, 60, 90],
            'value': [1.0, 1.4, 1.0, 1.4],
            'risk_indicator': [1, 1, np.nan, np.nan],
        })
        by_id = predictor.predict_cohort(cohort).set_index('patient_id')
        assert by_id.loc['A', 'status'] == 'ok'
        assert by_id.loc['A', 'event_rate_percent'] == pytest.approx(88.287, abs=0.01)
        assert by_id.loc['B', 'status'] == 'invalid_risk'
        assert "risk_indicator" in by_id.loc['B', 'error']
        assert np.isnan(by_id.loc['B', 'event_rate_percent'])

    def test_partial_risk_mapping(self, predictor, cohort):
        out = predictor.predict_cohort(cohort.drop(columns='risk_indicator'), {'A': 1})
        assert out['status'].tolist() == ['ok', 'invalid_risk', 'invalid_risk']
        assert out['linear_predictor'].isna().tolist() == [False, True, True]

    def test_missing_columns(self, predictor):
        with pytest.raises(KeyError):
            predictor.predict_cohort(pd.DataFrame({'patient_id': ['A'], 'day': [1]}))


class TestExplain:

    def test_report(self, predictor, worked_observations):
        result = predictor.predict(worked_observations, 1)
        text = predictor.explain_prediction(result)
        assert "88.3%" in text
        assert "High risk" in text
        assert "day 120" in text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
