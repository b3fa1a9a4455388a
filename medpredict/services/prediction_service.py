"""
Prediction workflow service.

Runs the estimate-then-record round trip for a submitted form and builds
the read-side views (trend series and summary) from the history store.
"""

import asyncio
import time
from collections.abc import Mapping
from statistics import fmean
from typing import Any

from medpredict.config.logging_config import get_logger
from medpredict.exceptions import PersistenceWriteError
from medpredict.models.models import (
    CategorySummary,
    DiseaseCategory,
    HistorySummary,
    PredictionOutcome,
    TrendSeries,
    parse_category,
)
from medpredict.services.estimator import estimate
from medpredict.services.history_store import HistoryStore

logger = get_logger(__name__)

PERSISTENCE_WARNING = (
    "The prediction was recorded for this session but could not be saved; "
    "it may be missing after a restart."
)


class PredictionService:
    """
    Service combining the estimator with the history store.

    Attributes:
        store: History store the outcomes are recorded in.
        latency_ms: Simulated estimator latency.
        trend_limit: Default number of points in a trend series.
    """

    def __init__(self, store: HistoryStore, latency_ms: int = 0, trend_limit: int = 10):
        self.store = store
        self.latency_ms = latency_ms
        self.trend_limit = trend_limit

    async def predict(
        self,
        category: DiseaseCategory | str,
        parameters: Mapping[str, Any],
    ) -> PredictionOutcome:
        """
        Estimate risk for the submitted inputs and record the outcome.

        Args:
            category: Disease category of the form.
            parameters: Form inputs keyed by field name.

        Returns:
            The created record, flagged as not persisted when the snapshot
            write failed.

        Raises:
            InvalidCategoryError: If the category is unknown.
        """
        start_time = time.perf_counter()
        disease = parse_category(category)

        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)

        result = estimate(disease, parameters)

        try:
            record = await asyncio.to_thread(
                self.store.add,
                disease,
                result.at_risk,
                result.probability,
                parameters,
            )
            outcome = PredictionOutcome(record=record)
        except PersistenceWriteError as e:
            if e.record is None:
                raise
            logger.warning(
                "Prediction kept in memory only",
                record_id=str(e.record.id),
                error=str(e),
            )
            outcome = PredictionOutcome(
                record=e.record,
                persisted=False,
                warning=PERSISTENCE_WARNING,
            )

        logger.info(
            "Prediction completed",
            category=disease.value,
            at_risk=result.at_risk,
            probability=result.probability,
            persisted=outcome.persisted,
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return outcome

    def trend(self, category: DiseaseCategory | str, limit: int | None = None) -> TrendSeries:
        """
        Risk trend of the most recent predictions of a category.

        Args:
            category: Disease category.
            limit: Number of most recent records to include.

        Returns:
            Points in chronological order with probabilities in percent.
        """
        disease = parse_category(category)
        limit = self.trend_limit if limit is None else limit
        recent = list(self.store.get_by_category(disease)[:limit])
        recent.reverse()
        return TrendSeries(
            category=disease,
            title=f"{disease.display_name} Risk Trend",
            labels=[f"Prediction {i}" for i in range(1, len(recent) + 1)],
            values=[round(record.probability * 100, 2) for record in recent],
        )

    def summary(self) -> HistorySummary:
        """Per-category counts and averages over the whole history."""
        history = self.store.history
        categories = []
        for disease in DiseaseCategory:
            records = [record for record in history if record.category == disease]
            categories.append(
                CategorySummary(
                    category=disease,
                    count=len(records),
                    at_risk_count=sum(1 for record in records if record.at_risk),
                    mean_probability=(
                        round(fmean(r.probability for r in records), 4) if records else None
                    ),
                    latest_at=records[0].created_at if records else None,
                )
            )
        return HistorySummary(total=len(history), categories=categories)
