"""
MedPredict API - Disease Risk Screening

A small screening service that estimates heart, diabetes, liver and kidney
disease risk from form inputs and keeps a persisted prediction history.

This API provides:
- Risk estimation per disease category
- A newest-first prediction history with category filtering
- Trend series and summaries for charting
- Structured logging of every request and history change
"""

import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medpredict.config.config import Settings, get_settings
from medpredict.config.logging_config import configure_logging, get_logger, log_request_context
from medpredict.exceptions import (
    InvalidCategoryError,
    MedPredictError,
    PersistenceWriteError,
)
from medpredict.models.models import (
    CategoriesResponse,
    CategoryInfo,
    ClearResponse,
    DiseaseCategory,
    ErrorResponse,
    HealthResponse,
    HealthStatus,
    HistoryResponse,
    HistorySummary,
    PredictionOutcome,
    PredictionRequest,
    TrendSeries,
)
from medpredict.services.history_store import HistoryStore, StoreState
from medpredict.services.prediction_service import PredictionService
from medpredict.storage.snapshot_storage import create_snapshot_storage

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Restores the prediction history at startup and logs shutdown.
    """
    settings: Settings = app.state.settings
    store: HistoryStore = app.state.history_store

    logger.info(
        "Application starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        config=settings.get_safe_config_dict(),
    )
    store.restore()

    yield

    logger.info("Application shutting down", records=len(store))


def get_history_store(request: Request) -> HistoryStore:
    """Dependency returning the store owned by the application."""
    return request.app.state.history_store


def get_prediction_service(request: Request) -> PredictionService:
    """Dependency returning the prediction service owned by the application."""
    return request.app.state.prediction_service


def _error_response(request: Request, status_code: int, error: str, message: str, details: dict | None = None):
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            request_id=getattr(request.state, "request_id", None),
        ).model_dump(mode="json"),
    )


def create_app(settings: Settings | None = None, store: HistoryStore | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing.
        store: Optional pre-built history store; one is created from the
            settings otherwise.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    if store is None:
        store = HistoryStore(
            create_snapshot_storage(settings),
            storage_key=settings.history_storage_key,
        )

    app = FastAPI(
        title=settings.app_name,
        description=__doc__,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.history_store = store
    app.state.prediction_service = PredictionService(
        store,
        latency_ms=settings.estimator_latency_ms,
        trend_limit=settings.trend_limit,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and context."""
        request_id = str(uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        log_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        processing_time = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-Ms"] = str(processing_time)

        logger.info(
            "Request completed",
            status_code=response.status_code,
            processing_time_ms=processing_time,
        )

        return response

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with structured response."""
        return _error_response(request, exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))

    @app.exception_handler(InvalidCategoryError)
    async def invalid_category_handler(request: Request, exc: InvalidCategoryError):
        """Unknown categories are reported as missing resources."""
        return _error_response(
            request,
            404,
            "INVALID_CATEGORY",
            str(exc),
            details={"allowed": [c.value for c in DiseaseCategory]},
        )

    @app.exception_handler(PersistenceWriteError)
    async def persistence_write_handler(request: Request, exc: PersistenceWriteError):
        """History changed in memory but could not be saved."""
        return _error_response(
            request,
            503,
            "PERSISTENCE_FAILED",
            "History was updated for this session but could not be saved",
            details={"reason": str(exc)},
        )

    @app.exception_handler(MedPredictError)
    async def domain_error_handler(request: Request, exc: MedPredictError):
        """Input rejected by the history store."""
        return _error_response(request, 422, "INVALID_INPUT", str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception", error=str(exc))
        return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred")

    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/", tags=["Root"])
    async def root(request: Request):
        """Root endpoint with API information."""
        settings: Settings = request.app.state.settings
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": "/docs" if settings.debug else "disabled",
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check(
        request: Request,
        store: HistoryStore = Depends(get_history_store),
    ) -> HealthResponse:
        """
        Health check endpoint for monitoring.

        The service stays usable when storage is unavailable, but history
        will not survive a restart, so that state is reported as degraded.
        """
        settings: Settings = request.app.state.settings
        checks = {
            "api": True,
            "history_ready": store.state is StoreState.READY,
            "storage_writable": store.storage.check(),
        }

        if all(checks.values()):
            status = HealthStatus.HEALTHY
        elif checks["api"]:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        return HealthResponse(
            status=status,
            version=settings.app_version,
            environment=settings.environment,
            checks=checks,
        )

    @app.get("/api/v1/categories", response_model=CategoriesResponse, tags=["Predictions"])
    async def list_categories() -> CategoriesResponse:
        """List the disease categories that can be estimated."""
        return CategoriesResponse(
            categories=[
                CategoryInfo(category=c, name=c.display_name) for c in DiseaseCategory
            ]
        )

    @app.post(
        "/api/v1/predictions/{category}",
        response_model=PredictionOutcome,
        status_code=201,
        tags=["Predictions"],
    )
    async def create_prediction(
        category: str,
        body: PredictionRequest,
        service: PredictionService = Depends(get_prediction_service),
    ) -> PredictionOutcome:
        """
        Estimate risk for the submitted form and record it in the history.

        **Example body (heart):**
        `{"parameters": {"age": 54, "cholesterol": 240, "bloodPressure": 130}}`
        """
        logger.info("Prediction request received", category=category, fields=len(body.parameters))
        return await service.predict(category, body.parameters)

    @app.get("/api/v1/history", response_model=HistoryResponse, tags=["History"])
    def get_history(
        category: DiseaseCategory | None = Query(default=None, description="Category filter"),
        store: HistoryStore = Depends(get_history_store),
    ) -> HistoryResponse:
        """Full prediction history, or the records of one category, newest first."""
        records = store.history if category is None else store.get_by_category(category)
        return HistoryResponse(category=category, count=len(records), records=list(records))

    @app.delete("/api/v1/history", response_model=ClearResponse, tags=["History"])
    def clear_history(store: HistoryStore = Depends(get_history_store)) -> ClearResponse:
        """Remove every record from the history."""
        return ClearResponse(cleared=store.clear())

    @app.get("/api/v1/history/summary", response_model=HistorySummary, tags=["History"])
    def history_summary(
        service: PredictionService = Depends(get_prediction_service),
    ) -> HistorySummary:
        """Per-category counts and average risk."""
        return service.summary()

    @app.get("/api/v1/history/{category}/trend", response_model=TrendSeries, tags=["History"])
    def history_trend(
        category: str,
        limit: int | None = Query(default=None, ge=1, le=100, description="Number of points"),
        service: PredictionService = Depends(get_prediction_service),
    ) -> TrendSeries:
        """Risk trend of the most recent predictions of one category."""
        return service.trend(category, limit)


# Configure logging before the application instance is built
configure_logging()

# Create the application instance
app = create_app()
