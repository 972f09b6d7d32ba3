"""
Prompt builders for the advisory features.

Each builder returns a GenerationRequest ready for the dispatcher. Model,
temperature and regional context come from settings so that every
advisory in a process uses the same configuration.
"""

from agricare.advisory.conditions import FieldConditions
from agricare.advisory.schemas import (
    CropAnalysis,
    HarvestIndex,
    ManagementPlan,
    ManagementPrescription,
    SoilInsight,
)
from agricare.config import Settings, get_settings
from agricare.dispatcher.clients import GenerationRequest
from agricare.storage.models import Field

AGRONOMIST_INSTRUCTION = (
    "You are an expert agricultural scientist advising smallholder farmers "
    "in {region}. Base every recommendation on the soil markers provided. "
    "Be concrete: give quantities, timings and local crop names. Never use "
    "markdown formatting."
)

ASSISTANT_INSTRUCTION = (
    "You are AgriCare Assistant, a friendly farm advisor for growers in "
    "{region}. Answer questions about crops, soil, irrigation, fertilizer, "
    "pests and weather in short practical paragraphs. If a question is not "
    "about farming, politely steer the conversation back to the farm."
)


def _field_context(field: Field) -> str:
    return f"Field: {field.field_name}, Location: {field.location}, Soil: {field.soil_type}."


def _request(
    contents: str,
    settings: Settings | None,
    schema=None,
    use_search: bool = False,
    system_instruction: str | None = AGRONOMIST_INSTRUCTION,
) -> GenerationRequest:
    settings = settings or get_settings()
    return GenerationRequest(
        model=settings.ai_model,
        contents=contents.strip(),
        system_instruction=(
            system_instruction.format(region=settings.region) if system_instruction else None
        ),
        response_schema=schema,
        temperature=settings.ai_temperature,
        use_search=use_search,
    )


def crop_analysis_request(
    field: Field, conditions: FieldConditions, settings: Settings | None = None
) -> GenerationRequest:
    """Top 3 crops for the field's current markers."""
    region = (settings or get_settings()).region
    contents = f"""
Analyze this agricultural field data and provide the top 3 recommended crops.
{_field_context(field)}
Latest soil data: {conditions.describe()}.
Focus on these markers to determine growth suitability in the context of {region}.
Return an object with a "crops" list of exactly 3 entries.
"""
    return _request(contents, settings, schema=CropAnalysis)


def soil_summary_request(
    field: Field, conditions: FieldConditions, settings: Settings | None = None
) -> GenerationRequest:
    contents = f"""
Provide a concise 3-sentence soil health summary for this field.
{_field_context(field)}
Latest markers: {conditions.describe()}.
Focus on the current status and suggest one prioritized action.
"""
    return _request(contents, settings, schema=SoilInsight)


def management_plan_request(
    field: Field, conditions: FieldConditions, settings: Settings | None = None
) -> GenerationRequest:
    contents = f"""
Generate exactly 4 prioritized farm management tasks for this field.
{_field_context(field)}
Conditions: {conditions.describe()}.
Use priority High, Medium or Low and a FontAwesome icon class for each task.
Return an object with a "tasks" list.
"""
    return _request(contents, settings, schema=ManagementPlan)


def harvest_compatibility_request(
    crop: str, conditions: FieldConditions, settings: Settings | None = None
) -> GenerationRequest:
    """Compatibility of the current markers with a target crop."""
    contents = f"""
Calculate a harvest compatibility index (0-100) for growing {crop} under these
soil conditions: {conditions.describe()}.
Rate it Excellent, Good, Fair or Poor, give one short recommendation and list
the markers that limit the harvest, if any.
"""
    return _request(contents, settings, schema=HarvestIndex)


def prescription_request(
    field: Field, conditions: FieldConditions, settings: Settings | None = None
) -> GenerationRequest:
    contents = f"""
Prescribe irrigation and fertilizer actions for this field.
{_field_context(field)} Size: {field.size} ha.
Current diagnostics: {conditions.describe()}.
For irrigation state whether it is needed, the volume to apply and the timing.
For nutrients state whether fertilizer is needed, list each fertilizer with
its amount for the whole field, and add one line of advice.
"""
    return _request(contents, settings, schema=ManagementPrescription)


def weather_alert_request(location: str, settings: Settings | None = None) -> GenerationRequest:
    """Search-grounded free-text weather alert; no response schema."""
    contents = f"""
Search for the current weather and the 3-day forecast for {location}.
Write a short farm weather alert (at most 3 sentences) highlighting rain,
heat or storms that affect field work, irrigation or harvesting.
"""
    return _request(contents, settings, use_search=True)


def assistant_request(
    question: str,
    history: list[tuple[str, str]] | None = None,
    settings: Settings | None = None,
) -> GenerationRequest:
    """
    Chat turn for the farm assistant.

    Args:
        question: The user's new message.
        history: Earlier (role, text) turns, oldest first. Roles are
                 "user" or "assistant".
    """
    lines = [f"{role.capitalize()}: {text}" for role, text in history or []]
    lines.append(f"User: {question}")
    lines.append("Assistant:")
    return _request(
        "\n".join(lines), settings, system_instruction=ASSISTANT_INSTRUCTION
    )
