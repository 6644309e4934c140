"""
EASIX Landmark Predictor - Reference Validation
===============================================
Chain-of-Verification against predictions exported from the R reference
model (validation_cases list of patient observations with expected outputs).
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union
import argparse
import json
import logging
import sys

import yaml

from .errors import PredictionError
from .observations import Observation, to_observation
from .predictor import LandmarkPredictor, PredictionResult

logger = logging.getLogger(__name__)


DEFAULT_CASES_PATH = Path(__file__).parent / "reference_cases.yaml"

# Clinically meaningful agreement thresholds per metric
DEFAULT_TOLERANCES: Dict[str, float] = {
    'value_at_landmark': 0.05,
    'slope_at_landmark': 0.001,
    'linear_predictor': 0.05,
    'survival_probability': 0.005,
    'event_rate_percent': 0.5,
}

# Reference exports use the original R column names
_EXPECTED_KEY_ALIASES = {
    'log2easix_at_landmark': 'value_at_landmark',
    'survival_2yr': 'survival_probability',
    'event_rate_2yr_percent': 'event_rate_percent',
}


class ValidationSeverity(Enum):
    PASS = "✅ PASS"
    WARNING = "⚠️ WARNING"
    FAIL = "❌ FAIL"
    INFO = "ℹ️ INFO"


@dataclass
class ValidationResult:
    name: str
    severity: ValidationSeverity
    message: str
    expected: Optional[str] = None
    actual: Optional[str] = None


@dataclass
class ReferenceCase:
    patient_id: str
    risk_indicator: int
    observations: List[Observation]
    expected: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ReferenceCase":
        expected = {
            _EXPECTED_KEY_ALIASES.get(k, k): float(v)
            for k, v in (data.get('expected_predictions') or {}).items()
        }
        observations = [
            to_observation({'day': o['day'], 'value': o.get('value', o.get('log2easix'))})
            for o in data.get('observations', [])
        ]
        risk = data.get('risk_indicator', data.get('dri'))
        if risk is None:
            raise ValueError(f"Reference case {data.get('patient_id')!r} has no risk_indicator (dri)")
        return cls(
            patient_id=str(data['patient_id']),
            risk_indicator=int(risk),
            observations=observations,
            expected=expected,
        )

    def to_dict(self) -> dict:
        return {
            'patient_id': self.patient_id,
            'risk_indicator': self.risk_indicator,
            'observations': [o.to_dict() for o in self.observations],
            'expected_predictions': dict(self.expected),
        }


def load_reference_cases(path: Optional[Union[str, Path]] = None) -> List[ReferenceCase]:
    """Load reference cases from YAML or JSON (bundled set if path is None)."""
    path = Path(path) if path is not None else DEFAULT_CASES_PATH
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    cases = [ReferenceCase.from_dict(c) for c in data.get('validation_cases', [])]
    logger.info(f"Loaded {len(cases)} reference cases from {path}")
    return cases


class ReferenceCaseValidator:
    """Compare engine predictions with reference predictions, metric by metric"""

    def __init__(self, predictor: LandmarkPredictor, tolerances: Optional[Dict[str, float]] = None):
        self.predictor = predictor
        self.tolerances = dict(DEFAULT_TOLERANCES)
        if tolerances:
            self.tolerances.update(tolerances)
        self.results: List[ValidationResult] = []

    def validate_all(self, cases: List[ReferenceCase]) -> List[ValidationResult]:
        self.results = []
        for case in cases:
            self._validate_case(case)
        return self.results

    def _validate_case(self, case: ReferenceCase):
        try:
            result = self.predictor.predict(case.observations, case.risk_indicator)
        except (PredictionError, ValueError) as e:
            self.results.append(ValidationResult(
                name=f"Case {case.patient_id}: prediction",
                severity=ValidationSeverity.FAIL,
                message=f"{type(e).__name__}: {e}"
            ))
            return

        for metric, tol in self.tolerances.items():
            if metric not in case.expected:
                self.results.append(ValidationResult(
                    name=f"Case {case.patient_id}: {metric}",
                    severity=ValidationSeverity.WARNING,
                    message="No reference value"
                ))
                continue

            actual = getattr(result, metric)
            expected = case.expected[metric]
            diff = abs(actual - expected)

            self.results.append(ValidationResult(
                name=f"Case {case.patient_id}: {metric}",
                severity=ValidationSeverity.PASS if diff < tol else ValidationSeverity.FAIL,
                message=f"diff={diff:.2e} (tol={tol})",
                expected=f"{expected:.6f}",
                actual=f"{actual:.6f}"
            ))

    def get_summary(self) -> Dict:
        return {
            'total': len(self.results),
            'passed': sum(1 for r in self.results if r.severity == ValidationSeverity.PASS),
            'warnings': sum(1 for r in self.results if r.severity == ValidationSeverity.WARNING),
            'failed': sum(1 for r in self.results if r.severity == ValidationSeverity.FAIL)
        }


def regenerate_reference_cases(
    predictor: LandmarkPredictor,
    cases: List[ReferenceCase],
    out_path: Union[str, Path]
) -> List[ReferenceCase]:
    """
    Overwrite expected predictions with the current engine's output.

    Only for re-baselining after a deliberate model update; the written file
    no longer reflects the R reference.
    """
    updated = []
    for case in cases:
        result: PredictionResult = predictor.predict(case.observations, case.risk_indicator)
        expected = {metric: getattr(result, metric) for metric in DEFAULT_TOLERANCES}
        updated.append(ReferenceCase(case.patient_id, case.risk_indicator, case.observations, expected))

    out_path = Path(out_path)
    payload = {'validation_cases': [c.to_dict() for c in updated]}
    with open(out_path, 'w') as f:
        if out_path.suffix == '.json':
            json.dump(payload, f, indent=2)
        else:
            yaml.safe_dump(payload, f, sort_keys=False)

    logger.info(f"Wrote {len(updated)} reference cases to {out_path}")
    return updated


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Validate the landmark prediction engine against reference cases"
    )
    parser.add_argument(
        "cases_path",
        nargs="?",
        default=None,
        help="Reference cases (YAML or JSON). Defaults to the bundled set."
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model parameter file. Defaults to the bundled model."
    )
    args = parser.parse_args(argv)

    predictor = LandmarkPredictor.from_file(args.model)
    validator = ReferenceCaseValidator(predictor)
    results = validator.validate_all(load_reference_cases(args.cases_path))

    print("=" * 60)
    print("Validating landmark prediction engine")
    print("=" * 60)
    for r in results:
        detail = f" engine={r.actual} reference={r.expected}" if r.expected is not None else ""
        print(f"  {r.severity.value} {r.name}: {r.message}{detail}")

    summary = validator.get_summary()
    print("=" * 60)
    print(f"{summary['passed']}/{summary['total']} checks passed, "
          f"{summary['warnings']} warnings, {summary['failed']} failed")

    return 0 if summary['failed'] == 0 else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
