"""
Heuristic disease risk estimator.

Each category combines a few form inputs into a weighted sum, clamps it to
[0.1, 0.9] and rounds to two decimals. This is a screening aid for the demo
workflow, not a diagnostic model.
"""

import math
from collections.abc import Callable, Mapping
from typing import Any

from medpredict.models.models import DiseaseCategory, EstimateResult, parse_category

MIN_PROBABILITY = 0.1
MAX_PROBABILITY = 0.9
RISK_THRESHOLD = 0.5


def _number(parameters: Mapping[str, Any], name: str) -> float:
    """Read a numeric input, treating missing or non-numeric values as 0."""
    value = parameters.get(name)
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return 0.0
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _heart(p: Mapping[str, Any]) -> float:
    return (
        _number(p, "age") / 100 * 0.3
        + _number(p, "cholesterol") / 300 * 0.4
        + _number(p, "bloodPressure") / 180 * 0.3
    )


def _diabetes(p: Mapping[str, Any]) -> float:
    return _number(p, "glucose") / 200 * 0.6 + _number(p, "bmi") / 40 * 0.4


def _liver(p: Mapping[str, Any]) -> float:
    return (
        _number(p, "bilirubinTotal") / 20 * 0.5
        + (1 - _number(p, "albumin") / 5) * 0.5
    )


def _kidney(p: Mapping[str, Any]) -> float:
    return _number(p, "creatinine") / 10 * 0.6 + _number(p, "urea") / 100 * 0.4


SCORERS: dict[DiseaseCategory, Callable[[Mapping[str, Any]], float]] = {
    DiseaseCategory.HEART: _heart,
    DiseaseCategory.DIABETES: _diabetes,
    DiseaseCategory.LIVER: _liver,
    DiseaseCategory.KIDNEY: _kidney,
}


def _round2(value: float) -> float:
    # Half-up rounding to hundredths; inputs here are always positive.
    return math.floor(value * 100 + 0.5) / 100


def estimate(category: DiseaseCategory | str, parameters: Mapping[str, Any]) -> EstimateResult:
    """
    Estimate disease risk from form inputs.

    Args:
        category: Disease category to score.
        parameters: Form inputs keyed by field name.

    Returns:
        The at-risk flag and a probability in [0.1, 0.9].

    Raises:
        InvalidCategoryError: If the category is unknown.
    """
    scorer = SCORERS[parse_category(category)]
    raw = scorer(parameters)
    probability = min(max(raw, MIN_PROBABILITY), MAX_PROBABILITY)
    probability = _round2(probability)
    return EstimateResult(at_risk=probability > RISK_THRESHOLD, probability=probability)
