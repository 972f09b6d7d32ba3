"""
AgriCare: FastAPI Application Entry Point

This module initializes the FastAPI application and defines the endpoints:
- /health, /config, /metrics, /ai/status: service introspection
- /users/...: registration, login, field listing, management and exports
- /fields/..., /sensors/...: field and sensor records, manual diagnostics
- /weather: search-grounded weather alerts
- /assistant/chat: conversational farm assistant

The application uses a lifespan context manager to:
1. Load configuration at startup
2. Configure logging based on settings
3. Report which AI credentials are usable (a missing key degrades the
   service but does not stop it)
"""

from contextlib import asynccontextmanager
from datetime import datetime
import logging
import time
import uuid

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from agricare import __version__
from agricare.advisory import (
    AdvisoryService,
    build_management_report,
    effective_conditions,
    get_advisory_service,
    report_filename,
    sensors_to_csv,
)
from agricare.config import Settings, configure_logging, get_settings, mask_credential
from agricare.dispatcher import ConfigurationError, DispatchError
from agricare.metrics import get_stats_store
from agricare.metrics.reporter import MetricsReporter
from agricare.schemas import (
    AIStatus,
    ChatRequest,
    ChatResponse,
    ComponentHealth,
    ErrorCodes,
    ErrorResponse,
    FieldCreate,
    FieldInsightsResponse,
    FieldManagement,
    HealthResponse,
    LoginRequest,
    MetricsResponse,
    ReadingResponse,
    ReadingUpdate,
    SensorCreate,
    UserRegister,
    WeatherReport,
    build_field_insights_response,
    field_management_from_entry,
    weather_report_from_advice,
)
from agricare.storage import (
    AuthenticationError,
    DuplicateError,
    Field,
    InMemoryFarmStore,
    NotFoundError,
    Sensor,
    SensorReading,
    StorageError,
    User,
    get_farm_store,
)

logger = logging.getLogger(__name__)

_start_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup/shutdown events.

    On startup:
    - Loads configuration from environment
    - Configures logging
    - Logs the provider, model and masked credential labels

    On shutdown:
    - Logs shutdown message
    """
    settings = get_settings()
    configure_logging(settings)

    logger.info("=" * 60)
    logger.info("AgriCare starting up...")
    logger.info("=" * 60)
    logger.info(f"AI provider: {settings.ai_provider} (model {settings.ai_model})")
    logger.info(f"Retry budget: {settings.dispatch_retries} ({settings.retry_policy} policy)")
    logger.info(f"Storage backend: {settings.storage_backend}")
    logger.info(f"Debug mode: {'enabled' if settings.debug else 'disabled'}")

    credentials = settings.credentials()
    if credentials:
        labels = ", ".join(mask_credential(key) for key in credentials)
        logger.info(f"AI credentials: {len(credentials)} configured ({labels})")
    else:
        logger.warning(
            "No AI credentials configured; advisories will use fallbacks and "
            "the assistant is unavailable"
        )

    global _start_time
    _start_time = time.time()

    logger.info("=" * 60)
    logger.info("AgriCare ready to accept requests")

    yield  # Application runs here

    logger.info("AgriCare shutting down...")


app = FastAPI(
    title="AgriCare",
    description="Precision agriculture advisories backed by a multi-key AI dispatcher",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@app.get("/")
async def root():
    """
    Root endpoint with API information.
    """
    return {
        "name": "AgriCare",
        "description": "Precision agriculture advisory API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "config": "/config",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check system health and component status.",
)
async def health_check(
    settings: Settings = Depends(get_settings),
    service: AdvisoryService = Depends(get_advisory_service),
):
    """
    Health check endpoint for monitoring and orchestration.

    The service is degraded, not unhealthy, when no AI credentials are
    configured: records and fallback advisories still work.
    """
    components = []
    overall_status = "healthy"

    ai = service.ai_status()
    if ai["ready"]:
        components.append(
            ComponentHealth(
                name="ai",
                status="healthy",
                message=f"{ai['configured_credentials']} credential(s), "
                f"active #{ai['active_credential']}",
            )
        )
    else:
        components.append(
            ComponentHealth(name="ai", status="degraded", message="No AI credentials configured")
        )
        overall_status = "degraded"

    components.append(
        ComponentHealth(name="storage", status="healthy", message=settings.storage_backend)
    )

    uptime = time.time() - _start_time if _start_time > 0 else 0.0

    return HealthResponse(
        status=overall_status,
        service="agricare",
        version=__version__,
        components=components,
        uptime_seconds=uptime,
    )


@app.get("/config")
async def show_config(settings: Settings = Depends(get_settings)):
    """
    Returns non-sensitive configuration values.

    API keys are SecretStr and are NOT exposed in this endpoint; only the
    number of usable keys is reported.
    """
    return {
        "ai": {
            "provider": settings.ai_provider,
            "model": settings.ai_model,
            "temperature": settings.ai_temperature,
            "region": settings.region,
        },
        "dispatch": {
            "retries": settings.dispatch_retries,
            "retry_delay_seconds": settings.retry_delay_seconds,
            "retry_policy": settings.retry_policy,
            "credentials_configured": len(settings.credentials()),
        },
        "storage": {
            "backend": settings.storage_backend,
            "path": settings.storage_path if settings.storage_backend == "json" else None,
        },
        "server": {
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
        },
        "logging": {
            "level": settings.log_level,
        },
    }


@app.get(
    "/metrics",
    response_model=MetricsResponse,
    summary="Get metrics",
    description="Retrieve aggregated dispatch and credential rotation metrics.",
)
async def get_metrics():
    """Return aggregated dispatcher metrics from the global stats store."""
    return MetricsReporter(get_stats_store()).generate_report()


@app.get("/ai/status", response_model=AIStatus)
async def ai_status(service: AdvisoryService = Depends(get_advisory_service)):
    """Provider, model and credential readiness of the dispatcher."""
    return AIStatus(**service.ai_status())


# =============================================================================
# USERS
# =============================================================================


@app.post("/users/register", response_model=User, status_code=status.HTTP_201_CREATED)
def register_user(
    payload: UserRegister,
    store: InMemoryFarmStore = Depends(get_farm_store),
):
    user = User(
        id=payload.id or uuid.uuid4().hex,
        name=payload.name,
        email=payload.email,
        farm_name=payload.farm_name,
        location=payload.location,
    )
    return store.register_user(user, payload.password)


@app.post("/users/login", response_model=User, responses={401: {"model": ErrorResponse}})
def login_user(
    payload: LoginRequest,
    store: InMemoryFarmStore = Depends(get_farm_store),
):
    return store.login_user(payload.email, payload.password)


@app.get("/users/{user_id}/fields", response_model=list[Field], responses=ERROR_RESPONSES)
async def list_user_fields(
    user_id: str,
    store: InMemoryFarmStore = Depends(get_farm_store),
):
    store.get_user(user_id)
    return store.list_fields(user_id)


@app.get(
    "/users/{user_id}/management",
    response_model=list[FieldManagement],
    responses=ERROR_RESPONSES,
)
async def user_management(
    user_id: str,
    store: InMemoryFarmStore = Depends(get_farm_store),
    service: AdvisoryService = Depends(get_advisory_service),
):
    """
    Irrigation and fertilizer prescriptions for every field of a user.

    Diagnostics come from the latest sensor readings, filled in from each
    field's simulated series where a marker has no reading.
    """
    store.get_user(user_id)
    entries = await service.management_overview(store, user_id)
    return [field_management_from_entry(entry) for entry in entries]


@app.get(
    "/users/{user_id}/management/report",
    response_class=PlainTextResponse,
    responses=ERROR_RESPONSES,
)
async def user_management_report(
    user_id: str,
    store: InMemoryFarmStore = Depends(get_farm_store),
    service: AdvisoryService = Depends(get_advisory_service),
):
    """Download the management advisory as a plain-text report."""
    store.get_user(user_id)
    entries = await service.management_overview(store, user_id)
    generated_at = datetime.now()

    return PlainTextResponse(
        build_management_report(entries, generated_at),
        headers={
            "Content-Disposition": f'attachment; filename="{report_filename(generated_at)}"'
        },
    )


@app.get("/users/{user_id}/sensors/export", responses=ERROR_RESPONSES)
async def export_user_sensors(
    user_id: str,
    store: InMemoryFarmStore = Depends(get_farm_store),
):
    """Download a user's sensors and their last readings as CSV."""
    store.get_user(user_id)
    fields = store.list_fields(user_id)
    sensors = store.list_sensors([f.field_id for f in fields])

    return Response(
        content=sensors_to_csv(fields, sensors),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="sensors_{user_id}.csv"'},
    )


@app.get(
    "/users/{user_id}/weather",
    response_model=list[WeatherReport],
    responses=ERROR_RESPONSES,
)
async def user_weather(
    user_id: str,
    store: InMemoryFarmStore = Depends(get_farm_store),
    service: AdvisoryService = Depends(get_advisory_service),
):
    """Weather alerts for the distinct locations of the user's first fields."""
    store.get_user(user_id)
    alerts = await service.weather_for_fields(store.list_fields(user_id))
    return [weather_report_from_advice(advice) for advice in alerts]


# =============================================================================
# FIELDS
# =============================================================================


@app.post(
    "/fields",
    response_model=Field,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_field(
    payload: FieldCreate,
    store: InMemoryFarmStore = Depends(get_farm_store),
):
    store.get_user(payload.user_id)
    return store.add_field(Field(**payload.model_dump()))


@app.get("/fields/{field_id}", response_model=Field, responses=ERROR_RESPONSES)
async def get_field(field_id: int, store: InMemoryFarmStore = Depends(get_farm_store)):
    return store.get_field(field_id)


@app.delete(
    "/fields/{field_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_field(field_id: int, store: InMemoryFarmStore = Depends(get_farm_store)):
    store.delete_field(field_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/fields/{field_id}/sensors", response_model=list[Sensor], responses=ERROR_RESPONSES)
async def list_field_sensors(
    field_id: int,
    store: InMemoryFarmStore = Depends(get_farm_store),
):
    store.get_field(field_id)
    return store.list_sensors([field_id])


@app.get(
    "/fields/{field_id}/insights",
    response_model=FieldInsightsResponse,
    responses=ERROR_RESPONSES,
)
async def field_insights(
    field_id: int,
    crop: str | None = Query(
        default=None,
        max_length=50,
        description="Target crop for the harvest index (defaults to the field name)",
    ),
    store: InMemoryFarmStore = Depends(get_farm_store),
    service: AdvisoryService = Depends(get_advisory_service),
):
    """
    Crop recommendations, soil summary, management plan and harvest index
    for a field, generated concurrently.

    Advisories the AI could not produce are replaced by built-in answers
    and listed in the response's fallbacks.
    """
    field = store.get_field(field_id)
    conditions = effective_conditions(store, field_id)
    insights = await service.field_insights(field, conditions, crop=crop)
    return build_field_insights_response(field, conditions, insights)


# =============================================================================
# SENSORS
# =============================================================================


@app.post(
    "/sensors",
    response_model=Sensor,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def upsert_sensor(
    payload: SensorCreate,
    store: InMemoryFarmStore = Depends(get_farm_store),
):
    """Add a sensor, or update type/status of an existing one."""
    last_reading = None
    if payload.sensor_id is not None:
        try:
            last_reading = store.get_sensor(payload.sensor_id).last_reading
        except NotFoundError:
            pass

    return store.upsert_sensor(Sensor(**payload.model_dump(), last_reading=last_reading))


@app.put(
    "/sensors/{sensor_id}/reading",
    response_model=ReadingResponse,
    responses=ERROR_RESPONSES,
)
async def update_sensor_reading(
    sensor_id: int,
    payload: ReadingUpdate,
    store: InMemoryFarmStore = Depends(get_farm_store),
    service: AdvisoryService = Depends(get_advisory_service),
):
    """
    Record a manual diagnostic reading, then recompute the harvest
    compatibility index for the sensor's field.
    """
    sensor = store.record_reading(sensor_id, SensorReading(value=payload.value, npk=payload.npk))
    field = store.get_field(sensor.field_id)

    conditions = effective_conditions(store, field.field_id)
    harvest = await service.harvest_compatibility(payload.crop or field.field_name, conditions)

    return ReadingResponse(
        sensor=sensor, harvest=harvest.value, fallback_used=harvest.fallback_used
    )


@app.delete(
    "/sensors/{sensor_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_sensor(sensor_id: int, store: InMemoryFarmStore = Depends(get_farm_store)):
    store.delete_sensor(sensor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# WEATHER AND ASSISTANT
# =============================================================================


@app.get("/weather", response_model=WeatherReport)
async def weather(
    location: str = Query(..., min_length=1, max_length=100, examples=["Bogura"]),
    service: AdvisoryService = Depends(get_advisory_service),
):
    return weather_report_from_advice(await service.weather_alert(location))


@app.post(
    "/assistant/chat",
    response_model=ChatResponse,
    responses={
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def assistant_chat(
    payload: ChatRequest,
    service: AdvisoryService = Depends(get_advisory_service),
):
    """
    Conversational farm assistant.

    There is no fallback answer: a missing configuration returns 503 and
    provider failures return 502.
    """
    history = [(message.role, message.text) for message in payload.history]
    reply = await service.ask_assistant(payload.message, history)
    return ChatResponse(reply=reply)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "field": None}},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Returns a consistent error response format with the first validation
    error's details for client-side error handling.
    """
    errors = exc.errors()
    first_error = errors[0] if errors else {}

    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": ErrorCodes.VALIDATION_ERROR,
                "message": first_error.get("msg", "Validation failed"),
                "field": ".".join(str(loc) for loc in first_error.get("loc", [])),
            }
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(
    request: Request, exc: HTTPException
) -> JSONResponse:
    """
    Handle HTTP exceptions with consistent format.
    """
    detail = exc.detail
    if isinstance(detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": detail})
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "HTTP_ERROR", "message": str(detail), "field": None}},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, ErrorCodes.NOT_FOUND, str(exc))


@app.exception_handler(DuplicateError)
async def duplicate_handler(request: Request, exc: DuplicateError) -> JSONResponse:
    return _error(409, ErrorCodes.CONFLICT, str(exc))


@app.exception_handler(AuthenticationError)
async def authentication_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    return _error(401, ErrorCodes.UNAUTHORIZED, str(exc))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Storage failure: {exc}")
    return _error(500, ErrorCodes.STORAGE_ERROR, "Farm records are unavailable")


@app.exception_handler(ConfigurationError)
async def ai_configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return _error(503, ErrorCodes.AI_NOT_CONFIGURED, str(exc))


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """
    Handle AI provider failures that reached an endpoint.

    The provider's message is not echoed; it may contain request details.
    """
    return _error(502, ErrorCodes.PROVIDER_ERROR, "The AI provider could not answer the request")


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Logs the full exception for debugging and returns a generic error
    response to avoid leaking implementation details.
    """
    logger.exception("Unhandled exception")
    return _error(500, ErrorCodes.INTERNAL_ERROR, "An unexpected error occurred")
