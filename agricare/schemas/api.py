"""
Pydantic Schemas for the AgriCare API

This module defines the request and response models for the AgriCare API:
- Account, field and sensor requests
- Field insights, management and weather responses built from advisories
- Assistant chat request/response
- Error responses, metrics, and health check schemas

All schemas follow Pydantic v2 patterns with field descriptions and
OpenAPI documentation support.
"""

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

from agricare.advisory.conditions import FieldConditions
from agricare.advisory.schemas import (
    CropRecommendation,
    HarvestIndex,
    ManagementPrescription,
    ManagementTask,
    SoilInsight,
)
from agricare.storage.models import NPK, Field as FarmField, Sensor

if TYPE_CHECKING:
    from agricare.advisory.service import (
        AdviceResult,
        FieldInsights,
        ManagementEntry,
    )
    from agricare.advisory.schemas import WeatherAlert


# =============================================================================
# REQUEST MODELS
# =============================================================================


class UserRegister(BaseModel):
    """Registration form. The id is generated when omitted."""

    id: str | None = Field(default=None, min_length=1, description="Optional user id")
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6, max_length=128)
    farm_name: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=100)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "name": "Rahim Uddin",
                    "email": "rahim@example.com",
                    "password": "boro-2026",
                    "farm_name": "Uddin Farm",
                    "location": "Bogura",
                }
            ]
        }
    )


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class FieldCreate(BaseModel):
    """New field owned by user_id."""

    user_id: str = Field(..., min_length=1)
    field_name: str = Field(..., min_length=1, max_length=100)
    location: str = Field(..., min_length=1, max_length=100)
    size: float = Field(..., gt=0, description="Area in hectares")
    soil_type: str = Field(default="Loamy", max_length=50)


class SensorCreate(BaseModel):
    """Add a sensor, or update the one with the given sensor_id."""

    sensor_id: int | None = Field(default=None, description="Existing sensor to update")
    field_id: int
    sensor_type: str = Field(..., min_length=1, max_length=50, examples=["Moisture"])
    status: str = Field(default="Active", max_length=20)


class ReadingUpdate(BaseModel):
    """Manual diagnostic entry for a sensor."""

    value: float = Field(default=0.0, description="Reading value in the sensor's unit")
    npk: NPK | None = Field(default=None, description="Nutrient levels for NPK sensors")
    crop: str | None = Field(
        default=None,
        description="Target crop for the harvest index (defaults to the field name)",
    )


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    text: str = Field(..., min_length=1)


class ChatRequest(BaseModel):
    """Assistant chat turn with optional prior conversation."""

    message: str = Field(..., min_length=1, max_length=4000)
    history: list[ChatMessage] = Field(default_factory=list, max_length=50)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "message": "When should I top-dress urea on Boro rice?",
                    "history": [],
                }
            ]
        }
    )


# =============================================================================
# RESPONSE MODELS
# =============================================================================


class ChatResponse(BaseModel):
    reply: str = Field(..., description="Assistant answer")


class FieldInsightsResponse(BaseModel):
    """
    Everything shown on a field's detail page.

    fallbacks lists the advisories (crops, soil, plan, harvest) that
    returned built-in answers because the AI was unavailable.
    """

    field: FarmField
    conditions: FieldConditions
    crops: list[CropRecommendation]
    soil: SoilInsight
    plan: list[ManagementTask]
    harvest: HarvestIndex
    fallbacks: list[str] = Field(default_factory=list)


class ReadingResponse(BaseModel):
    """Updated sensor and the harvest index recomputed from it."""

    sensor: Sensor
    harvest: HarvestIndex
    fallback_used: bool = False


class FieldManagement(BaseModel):
    """Field with its effective diagnostics and prescription."""

    field: FarmField
    conditions: FieldConditions
    prescription: ManagementPrescription
    fallback_used: bool = False


class WeatherReport(BaseModel):
    location: str
    text: str
    sources: list[dict] = Field(default_factory=list)
    fallback_used: bool = False


class AIStatus(BaseModel):
    """Dispatcher readiness. Keys are never exposed, only masked labels."""

    provider: str
    model: str
    configured_credentials: int = Field(..., ge=0)
    active_credential: int = Field(..., ge=0)
    credential_labels: list[str] = Field(default_factory=list)
    ready: bool


# =============================================================================
# ERROR MODELS
# =============================================================================


class ErrorCodes:
    """
    Standard error codes for API responses.

    These codes enable programmatic error handling by clients
    without parsing human-readable messages.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"
    AI_NOT_CONFIGURED = "AI_NOT_CONFIGURED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    """
    Detailed error information for API error responses.

    Provides machine-readable error codes, human-readable messages,
    and optional field information for validation errors.
    """

    code: str = Field(
        ...,
        description="Machine-readable error code for programmatic handling",
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    field: str | None = Field(
        default=None,
        description="Field that caused the error (for validation errors)",
    )


class ErrorResponse(BaseModel):
    """
    Standard error response format for all API errors.

    Example:
        {
            "error": {
                "code": "NOT_FOUND",
                "message": "Field not found: 42",
                "field": null
            }
        }
    """

    error: ErrorDetail = Field(..., description="Error details")


# =============================================================================
# METRICS MODELS
# =============================================================================


class CredentialMetrics(BaseModel):
    """Dispatch outcomes attributed to one credential slot."""

    credential_index: int = Field(..., ge=0)
    successes: int = Field(..., ge=0, description="Calls this credential served")
    failures: int = Field(..., ge=0, description="Calls that ended failing on it")
    avg_latency_ms: float = Field(..., ge=0.0)


class MetricsResponse(BaseModel):
    """
    Aggregated dispatcher metrics.

    Example:
        {
            "total_dispatches": 120,
            "total_attempts": 131,
            "total_rotations": 11,
            "success_rate": 97.5,
            ...
        }
    """

    total_dispatches: int = Field(..., ge=0)
    total_attempts: int = Field(..., ge=0)
    total_rotations: int = Field(..., ge=0)
    success_rate: float = Field(..., ge=0.0, le=100.0, description="Percent of calls")
    outcomes: dict[str, int] = Field(default_factory=dict)
    by_credential: dict[str, CredentialMetrics] = Field(default_factory=dict)
    total_tokens: int = Field(..., ge=0)
    avg_latency_ms: float = Field(..., ge=0.0)


# =============================================================================
# HEALTH MODELS
# =============================================================================


class ComponentHealth(BaseModel):
    """Health status of an individual component."""

    name: str = Field(..., description="Component name")
    status: Literal["healthy", "degraded", "unhealthy"]
    message: str | None = Field(default=None, description="Status details")


class HealthResponse(BaseModel):
    """
    System health check response.

    A missing AI configuration degrades the service rather than failing
    it: records and fallbacks keep working.
    """

    status: Literal["healthy", "degraded", "unhealthy"]
    service: str
    version: str
    components: list[ComponentHealth] = Field(default_factory=list)
    uptime_seconds: float | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "status": "healthy",
                    "service": "agricare",
                    "version": "0.1.0",
                    "components": [
                        {"name": "ai", "status": "healthy", "message": "3 credentials"},
                        {"name": "storage", "status": "healthy", "message": "memory"},
                    ],
                    "uptime_seconds": 3600.5,
                }
            ]
        }
    )


# =============================================================================
# CONVERSION UTILITIES
# =============================================================================


def build_field_insights_response(
    field: FarmField,
    conditions: FieldConditions,
    insights: "FieldInsights",
) -> FieldInsightsResponse:
    """Flatten a FieldInsights bundle into the API response."""
    fallbacks = [
        name
        for name, advice in (
            ("crops", insights.crops),
            ("soil", insights.soil),
            ("plan", insights.plan),
            ("harvest", insights.harvest),
        )
        if advice.fallback_used
    ]
    return FieldInsightsResponse(
        field=field,
        conditions=conditions,
        crops=insights.crops.value.crops,
        soil=insights.soil.value,
        plan=insights.plan.value.tasks,
        harvest=insights.harvest.value,
        fallbacks=fallbacks,
    )


def field_management_from_entry(entry: "ManagementEntry") -> FieldManagement:
    return FieldManagement(
        field=entry.field,
        conditions=entry.conditions,
        prescription=entry.prescription.value,
        fallback_used=entry.prescription.fallback_used,
    )


def weather_report_from_advice(advice: "AdviceResult[WeatherAlert]") -> WeatherReport:
    alert = advice.value
    return WeatherReport(
        location=alert.location,
        text=alert.text,
        sources=alert.sources,
        fallback_used=advice.fallback_used,
    )
