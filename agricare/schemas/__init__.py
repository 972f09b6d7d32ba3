"""
Schemas module: Pydantic request/response models.

This module provides validated data models for the AgriCare API:
- Account, field, sensor and chat requests
- Advisory-backed responses (insights, management, weather)
- Error response models for consistent error handling
- Metrics and health check response models

Example usage:
    from agricare.schemas import FieldCreate, build_field_insights_response

    request = FieldCreate(user_id="u1", field_name="North", location="Bogura", size=2.5)
"""

from agricare.schemas.api import (
    # Request models
    UserRegister,
    LoginRequest,
    FieldCreate,
    SensorCreate,
    ReadingUpdate,
    ChatMessage,
    ChatRequest,
    # Response models
    ChatResponse,
    FieldInsightsResponse,
    ReadingResponse,
    FieldManagement,
    WeatherReport,
    AIStatus,
    # Error models
    ErrorCodes,
    ErrorDetail,
    ErrorResponse,
    # Metrics models
    CredentialMetrics,
    MetricsResponse,
    # Health models
    ComponentHealth,
    HealthResponse,
    # Conversion utilities
    build_field_insights_response,
    field_management_from_entry,
    weather_report_from_advice,
)

__all__ = [
    # Request models
    "UserRegister",
    "LoginRequest",
    "FieldCreate",
    "SensorCreate",
    "ReadingUpdate",
    "ChatMessage",
    "ChatRequest",
    # Response models
    "ChatResponse",
    "FieldInsightsResponse",
    "ReadingResponse",
    "FieldManagement",
    "WeatherReport",
    "AIStatus",
    # Error models
    "ErrorCodes",
    "ErrorDetail",
    "ErrorResponse",
    # Metrics models
    "CredentialMetrics",
    "MetricsResponse",
    # Health models
    "ComponentHealth",
    "HealthResponse",
    # Conversion utilities
    "build_field_insights_response",
    "field_management_from_entry",
    "weather_report_from_advice",
]
