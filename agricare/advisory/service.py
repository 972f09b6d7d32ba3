"""
Advisory Service - AI-backed farm advice with graceful fallbacks.

Every advisory goes through the shared KeyRotatingDispatcher, so key
rotation and retries apply uniformly. When the dispatcher gives up, or the
model answers with something that does not parse, the dashboard advisories
return a conservative built-in answer flagged with fallback_used=True
instead of failing the page. The chat assistant is the exception: its
errors propagate so the caller can tell the user the assistant is down.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from agricare.advisory.conditions import FieldConditions, effective_conditions
from agricare.advisory.parsing import parse_model_response
from agricare.advisory import prompts
from agricare.advisory.schemas import (
    CropAnalysis,
    CropRecommendation,
    Fertilizer,
    HarvestIndex,
    IrrigationAdvice,
    ManagementPlan,
    ManagementPrescription,
    ManagementTask,
    NutrientAdvice,
    SoilInsight,
    WeatherAlert,
)
from agricare.config import Settings, get_settings
from agricare.dispatcher import (
    DispatchError,
    GenerationRequest,
    KeyRotatingDispatcher,
    get_dispatcher,
)
from agricare.storage.models import Field
from agricare.storage.store import InMemoryFarmStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Locations shown on the overview weather panel
WEATHER_FIELD_LIMIT = 2


@dataclass
class AdviceResult(Generic[T]):
    """
    Outcome of one advisory call.

    Attributes:
        value: Parsed model answer, or the fallback
        fallback_used: True when value is the built-in fallback
        error: Why the fallback was used
    """

    value: T
    fallback_used: bool = False
    error: str | None = None


@dataclass
class FieldInsights:
    """The four advisories shown on a field's detail page."""

    crops: AdviceResult[CropAnalysis]
    soil: AdviceResult[SoilInsight]
    plan: AdviceResult[ManagementPlan]
    harvest: AdviceResult[HarvestIndex]


@dataclass
class ManagementEntry:
    """A field with its effective diagnostics and prescription."""

    field: Field
    conditions: FieldConditions
    prescription: AdviceResult[ManagementPrescription]


# =============================================================================
# Fallbacks
# =============================================================================

FALLBACK_CROPS = CropAnalysis(
    crops=[
        CropRecommendation(
            name="Rice (Boro)",
            suitability=94,
            expected_yield="5.5 tons/ha",
            requirements="High water requirement. Add Nitrogen if levels drop.",
            icon="fa-wheat-awn",
        ),
        CropRecommendation(
            name="Potato",
            suitability=88,
            expected_yield="22 tons/ha",
            requirements="Cool temp preferred. Loamy soil is ideal.",
            icon="fa-circle",
        ),
        CropRecommendation(
            name="Mustard",
            suitability=75,
            expected_yield="1.5 tons/ha",
            requirements="Low water need. Thrives in sandy loam.",
            icon="fa-seedling",
        ),
    ]
)

FALLBACK_SOIL = SoilInsight(
    summary=(
        "Soil health is currently stable. Current moisture and temperature levels "
        "are optimal for root development. Recommendation: Continue standard "
        "maintenance cycles."
    ),
    status="Stable",
    priority_action="Continue standard maintenance cycles.",
)

FALLBACK_PLAN = ManagementPlan(
    tasks=[
        ManagementTask(
            priority="High",
            title="Moisture Control",
            description="Increase irrigation by 10% to combat rising surface temperatures.",
            icon="fa-droplet",
        ),
        ManagementTask(
            priority="Medium",
            title="Nutrient Supplement",
            description="Apply Urea top-dressing to maintain Nitrogen levels above 40ppm.",
            icon="fa-flask",
        ),
        ManagementTask(
            priority="Medium",
            title="pH Monitoring",
            description="No immediate correction needed, but watch for acidity.",
            icon="fa-vial",
        ),
        ManagementTask(
            priority="Low",
            title="General Scouting",
            description="Physical inspection of leaf health near drainage points.",
            icon="fa-magnifying-glass",
        ),
    ]
)

FALLBACK_WEATHER_TEXT = (
    "Live weather is unavailable right now. Check the local forecast before "
    "irrigating or spraying."
)


def estimate_harvest_index(crop: str, conditions: FieldConditions) -> HarvestIndex:
    """
    Rule-based compatibility estimate used when the model is unavailable.

    Starts at 100 and subtracts a penalty for every known marker outside
    its general-purpose range.
    """
    score = 100.0
    limiting: list[str] = []

    if conditions.ph_level is not None and not 5.5 <= conditions.ph_level <= 7.5:
        score -= 20
        limiting.append("pH")
    if conditions.moisture is not None and not 25 <= conditions.moisture <= 70:
        score -= 20
        limiting.append("Moisture")
    if conditions.temperature is not None and not 15 <= conditions.temperature <= 35:
        score -= 15
        limiting.append("Temperature")
    if conditions.npk_n is not None and conditions.npk_n < 20:
        score -= 10
        limiting.append("Nitrogen")

    if score >= 85:
        status = "Excellent"
    elif score >= 70:
        status = "Good"
    elif score >= 50:
        status = "Fair"
    else:
        status = "Poor"

    recommendation = (
        f"Correct {', '.join(limiting)} before the next growth stage."
        if limiting
        else "Conditions are within normal ranges. Maintain the current schedule."
    )
    return HarvestIndex(
        crop=crop,
        score=score,
        status=status,
        recommendation=recommendation,
        limiting_factors=limiting,
    )


def estimate_prescription(field: Field, conditions: FieldConditions) -> ManagementPrescription:
    """Rule-based irrigation and fertilizer prescription for a field."""
    if conditions.moisture is not None and conditions.moisture < 30:
        irrigation = IrrigationAdvice(
            needed=True, volume="25 mm", schedule="Early morning within 24 hours"
        )
    else:
        irrigation = IrrigationAdvice(needed=False, volume="0", schedule="Not required")

    # Per-hectare rates scaled to the field
    fertilizers = []
    if conditions.npk_n is not None and conditions.npk_n < 40:
        fertilizers.append(Fertilizer(type="Urea", amount=f"{100 * field.size:.0f} kg"))
    if conditions.npk_p is not None and conditions.npk_p < 20:
        fertilizers.append(Fertilizer(type="TSP", amount=f"{60 * field.size:.0f} kg"))
    if conditions.npk_k is not None and conditions.npk_k < 150:
        fertilizers.append(Fertilizer(type="MoP", amount=f"{50 * field.size:.0f} kg"))

    nutrient = NutrientAdvice(
        needed=bool(fertilizers),
        fertilizers=fertilizers,
        advice=(
            "Split the application and incorporate into moist soil."
            if fertilizers
            else "Nutrient balance is currently optimal."
        ),
    )
    return ManagementPrescription(irrigation=irrigation, nutrient=nutrient)


# =============================================================================
# Service
# =============================================================================


class AdvisoryService:
    """
    Farm advisories backed by the key-rotating dispatcher.

    Usage:
        service = AdvisoryService()
        insights = await service.field_insights(field, conditions)
        insights.crops.value.crops[0].name
    """

    def __init__(
        self,
        dispatcher: KeyRotatingDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._dispatcher = dispatcher or get_dispatcher()
        self._settings = settings or get_settings()

    async def _structured(
        self,
        label: str,
        request: GenerationRequest,
        schema: type[T],
        fallback: Any,
    ) -> AdviceResult[T]:
        try:
            result = await self._dispatcher.dispatch(request)
            value = parse_model_response(result.text, schema)
        except (DispatchError, ValueError) as e:
            logger.warning(f"{label} unavailable, using fallback: {e}")
            return AdviceResult(
                value=fallback.model_copy(deep=True), fallback_used=True, error=str(e)
            )
        return AdviceResult(value=value)

    async def crop_recommendations(
        self, field: Field, conditions: FieldConditions
    ) -> AdviceResult[CropAnalysis]:
        """Top 3 crops for the field."""
        advice = await self._structured(
            "Crop analysis",
            prompts.crop_analysis_request(field, conditions, self._settings),
            CropAnalysis,
            FALLBACK_CROPS,
        )
        if advice.fallback_used:
            return advice
        if not advice.value.crops:
            logger.warning("Crop analysis returned no crops, using fallback")
            return AdviceResult(
                FALLBACK_CROPS.model_copy(deep=True), fallback_used=True, error="Model returned no crops"
            )
        advice.value.crops = advice.value.crops[:3]
        return advice

    async def soil_health_summary(
        self, field: Field, conditions: FieldConditions
    ) -> AdviceResult[SoilInsight]:
        return await self._structured(
            "Soil summary",
            prompts.soil_summary_request(field, conditions, self._settings),
            SoilInsight,
            FALLBACK_SOIL,
        )

    async def management_plan(
        self, field: Field, conditions: FieldConditions
    ) -> AdviceResult[ManagementPlan]:
        """Up to 4 prioritized tasks; an empty plan counts as a failure."""
        advice = await self._structured(
            "Management plan",
            prompts.management_plan_request(field, conditions, self._settings),
            ManagementPlan,
            FALLBACK_PLAN,
        )
        if advice.fallback_used:
            return advice
        if not advice.value.tasks:
            logger.warning("Management plan returned no tasks, using fallback")
            return AdviceResult(
                FALLBACK_PLAN.model_copy(deep=True), fallback_used=True, error="Model returned no tasks"
            )
        advice.value.tasks = advice.value.tasks[:4]
        return advice

    async def harvest_compatibility(
        self, crop: str, conditions: FieldConditions
    ) -> AdviceResult[HarvestIndex]:
        return await self._structured(
            "Harvest index",
            prompts.harvest_compatibility_request(crop, conditions, self._settings),
            HarvestIndex,
            estimate_harvest_index(crop, conditions),
        )

    async def management_prescriptions(
        self, field: Field, conditions: FieldConditions
    ) -> AdviceResult[ManagementPrescription]:
        return await self._structured(
            f"Prescription for field {field.field_id}",
            prompts.prescription_request(field, conditions, self._settings),
            ManagementPrescription,
            estimate_prescription(field, conditions),
        )

    async def weather_alert(self, location: str) -> AdviceResult[WeatherAlert]:
        """Search-grounded weather alert for one location."""
        try:
            result = await self._dispatcher.dispatch(
                prompts.weather_alert_request(location, self._settings)
            )
        except DispatchError as e:
            logger.warning(f"Weather for {location} unavailable, using fallback: {e}")
            return AdviceResult(
                WeatherAlert(location=location, text=FALLBACK_WEATHER_TEXT),
                fallback_used=True,
                error=str(e),
            )

        text = result.text.strip()
        if not text:
            return AdviceResult(
                WeatherAlert(location=location, text=FALLBACK_WEATHER_TEXT),
                fallback_used=True,
                error="Empty weather response",
            )
        return AdviceResult(WeatherAlert(location=location, text=text, sources=result.sources))

    async def weather_for_fields(self, fields: list[Field]) -> list[AdviceResult[WeatherAlert]]:
        """
        Weather alerts for the unique locations of the first fields.

        Locations are fetched concurrently and returned in first-seen order.
        """
        locations = list(dict.fromkeys(f.location for f in fields[:WEATHER_FIELD_LIMIT]))
        return list(await asyncio.gather(*(self.weather_alert(loc) for loc in locations)))

    async def field_insights(
        self,
        field: Field,
        conditions: FieldConditions,
        crop: str | None = None,
    ) -> FieldInsights:
        """
        Run the four field-page advisories concurrently.

        Args:
            field: The field being viewed.
            conditions: Its current markers.
            crop: Target crop for the harvest index; the field name when None.
        """
        harvest, crops, soil, plan = await asyncio.gather(
            self.harvest_compatibility(crop or field.field_name, conditions),
            self.crop_recommendations(field, conditions),
            self.soil_health_summary(field, conditions),
            self.management_plan(field, conditions),
        )
        return FieldInsights(crops=crops, soil=soil, plan=plan, harvest=harvest)

    async def management_overview(
        self, store: InMemoryFarmStore, user_id: str
    ) -> list[ManagementEntry]:
        """Prescriptions for every field a user owns, fetched concurrently."""
        fields = store.list_fields(user_id)
        conditions = [effective_conditions(store, f.field_id) for f in fields]
        prescriptions = await asyncio.gather(
            *(self.management_prescriptions(f, c) for f, c in zip(fields, conditions))
        )
        return [
            ManagementEntry(field=f, conditions=c, prescription=p)
            for f, c, p in zip(fields, conditions, prescriptions)
        ]

    async def ask_assistant(
        self, question: str, history: list[tuple[str, str]] | None = None
    ) -> str:
        """
        Answer a chat message.

        Raises:
            DispatchError: If the dispatcher cannot produce an answer.
        """
        result = await self._dispatcher.dispatch(
            prompts.assistant_request(question, history, self._settings)
        )
        return result.text.strip()

    def ai_status(self) -> dict[str, Any]:
        """Provider, model and credential state, without exposing keys."""
        return {
            "provider": self._settings.ai_provider,
            "model": self._settings.ai_model,
            "configured_credentials": self._dispatcher.credential_count,
            "active_credential": self._dispatcher.cursor,
            "credential_labels": self._dispatcher.credential_labels(),
            "ready": self._dispatcher.has_credentials,
        }


_service: AdvisoryService | None = None


def get_advisory_service() -> AdvisoryService:
    """Get the global advisory service bound to the global dispatcher."""
    global _service
    if _service is None:
        _service = AdvisoryService()
    return _service


def reset_advisory_service() -> None:
    global _service
    _service = None
