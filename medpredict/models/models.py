"""
Pydantic models for prediction records, history snapshots and the API.

All models are explicit, documented, and enforce strict validation.
Invalid inputs fail closed with descriptive error messages.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from medpredict.exceptions import InvalidCategoryError


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class DiseaseCategory(str, Enum):
    """The fixed set of disease categories a prediction can belong to."""
    HEART = "heart"
    DIABETES = "diabetes"
    LIVER = "liver"
    KIDNEY = "kidney"

    @property
    def display_name(self) -> str:
        """Human-readable category name."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    DiseaseCategory.HEART: "Heart Disease",
    DiseaseCategory.DIABETES: "Diabetes",
    DiseaseCategory.LIVER: "Liver Disease",
    DiseaseCategory.KIDNEY: "Kidney Disease",
}


def parse_category(value: object) -> DiseaseCategory:
    """
    Coerce a category name to a DiseaseCategory.

    Raises:
        InvalidCategoryError: If the value is not one of the fixed categories.
    """
    if isinstance(value, DiseaseCategory):
        return value
    if isinstance(value, str):
        try:
            return DiseaseCategory(value)
        except ValueError:
            pass
    raise InvalidCategoryError(value)


# Opaque form input: field name -> primitive value (nesting is tolerated).
Parameters = dict[str, JsonValue]


class EstimateResult(BaseModel):
    """
    Outcome of a single risk estimation.

    Attributes:
        at_risk: Whether the estimate classifies the patient as high risk.
        probability: Estimated risk probability.
    """
    model_config = ConfigDict(frozen=True)

    at_risk: bool = Field(..., description="High-risk flag")
    probability: float = Field(..., ge=0.0, le=1.0, description="Risk probability")


class PredictionRecord(BaseModel):
    """
    One completed estimation event kept in the prediction history.

    Records are immutable once created. Unknown fields in stored snapshots
    are ignored so newer snapshots stay readable.

    Attributes:
        id: Unique record identifier, never reused.
        category: Disease category the prediction pertains to.
        at_risk: Outcome flag.
        probability: Risk probability in [0, 1].
        created_at: Insertion timestamp (UTC).
        parameters: Form inputs stored verbatim for later display.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: UUID = Field(..., description="Unique record ID")
    category: DiseaseCategory = Field(..., description="Disease category")
    at_risk: bool = Field(..., description="High-risk flag")
    probability: float = Field(
        ..., ge=0.0, le=1.0, allow_inf_nan=False, description="Risk probability"
    )
    created_at: datetime = Field(..., description="Insertion timestamp")
    parameters: Parameters = Field(default_factory=dict, description="Input parameters")


class HistoryState(BaseModel):
    """Persisted state container holding the ordered history."""
    model_config = ConfigDict(extra="ignore")

    history: list[PredictionRecord] = Field(default_factory=list)


class HistorySnapshot(BaseModel):
    """
    Envelope written to durable storage under the history storage key.

    Attributes:
        state: The persisted state, newest record first.
        version: Snapshot layout version.
    """
    model_config = ConfigDict(extra="ignore")

    state: HistoryState = Field(default_factory=HistoryState)
    version: int = Field(default=0, ge=0)


# ============================================================================
# API models
# ============================================================================

class PredictionRequest(BaseModel):
    """
    Request to estimate risk for a disease category.

    Attributes:
        parameters: Form inputs keyed by field name.
    """
    parameters: Parameters = Field(..., description="Form inputs keyed by field name")


class PredictionOutcome(BaseModel):
    """
    Result of an estimate-and-record round trip.

    Attributes:
        record: The history record that was created.
        persisted: False when the history snapshot could not be written.
        warning: Message to show the user when persistence failed.
    """
    record: PredictionRecord
    persisted: bool = Field(default=True, description="Snapshot written to storage")
    warning: str | None = Field(default=None, description="Persistence warning")


class HistoryResponse(BaseModel):
    """Full or category-filtered history, newest first."""
    category: DiseaseCategory | None = Field(default=None, description="Filter applied")
    count: int = Field(..., ge=0, description="Number of records")
    records: list[PredictionRecord] = Field(default_factory=list)


class ClearResponse(BaseModel):
    """Result of clearing the history."""
    cleared: int = Field(..., ge=0, description="Number of records removed")


class CategoryInfo(BaseModel):
    """A disease category with its display name."""
    category: DiseaseCategory
    name: str


class CategoriesResponse(BaseModel):
    """All disease categories the service can estimate."""
    categories: list[CategoryInfo]


class TrendSeries(BaseModel):
    """
    Risk trend of the most recent predictions for one category.

    Points are in chronological order (oldest first), values in percent.
    """
    category: DiseaseCategory
    title: str
    labels: list[str] = Field(default_factory=list)
    values: list[float] = Field(default_factory=list)


class CategorySummary(BaseModel):
    """Aggregate figures for one category of the history."""
    category: DiseaseCategory
    count: int = Field(default=0, ge=0)
    at_risk_count: int = Field(default=0, ge=0)
    mean_probability: float | None = Field(default=None)
    latest_at: datetime | None = Field(default=None)


class HistorySummary(BaseModel):
    """Aggregate figures for the whole history."""
    total: int = Field(..., ge=0)
    categories: list[CategorySummary]


class HealthStatus(str, Enum):
    """System health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """
    Health check response for monitoring.

    Attributes:
        status: Overall system health status.
        version: Application version.
        environment: Deployment environment.
        checks: Individual component health checks.
    """
    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Deployment environment")
    timestamp: datetime = Field(default_factory=utcnow, description="Check timestamp")
    checks: dict[str, bool] = Field(default_factory=dict, description="Component health checks")


class ErrorResponse(BaseModel):
    """
    Standardized error response.

    Attributes:
        error: Error type/code.
        message: Human-readable error message.
        details: Additional error details.
        request_id: Request ID for tracing.
    """
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict | None = Field(default=None, description="Additional details")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=utcnow, description="Error timestamp")
