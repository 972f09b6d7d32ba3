"""
Structured advisory payloads.

These models double as response schemas sent with structured-output
requests and as validators for the returned JSON. Every top-level schema
is an object (lists are wrapped) so that providers limited to JSON-object
mode can produce them too.

Numeric ranges are enforced by clamping validators rather than schema
constraints, since not every provider accepts minimum/maximum keywords.
"""

from pydantic import BaseModel, Field, field_validator


def _clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


class CropRecommendation(BaseModel):
    """A crop suited to the field's current conditions."""

    name: str
    suitability: float = Field(..., description="Percentage 0-100")
    expected_yield: str = Field(..., description="Expected yield estimate, e.g. '5.5 tons/ha'")
    requirements: str = Field(..., description="Key growth requirements")
    icon: str = Field(default="fa-seedling", description="FontAwesome icon class, e.g. fa-leaf")

    @field_validator("suitability")
    @classmethod
    def clamp_suitability(cls, v: float) -> float:
        return _clamp_percent(v)


class CropAnalysis(BaseModel):
    """Top crop recommendations for a field."""

    crops: list[CropRecommendation]


class SoilInsight(BaseModel):
    """Short soil health summary with one prioritized action."""

    summary: str = Field(..., description="Three plain sentences, no markdown")
    status: str = Field(default="Stable", description="Good, Stable, or Needs Attention")
    priority_action: str = Field(default="", description="Single most important next step")


class ManagementTask(BaseModel):
    """A prioritized farm management task."""

    priority: str = Field(..., description="High, Medium, or Low")
    title: str
    description: str
    icon: str = Field(default="fa-list-check", description="FontAwesome icon class")


class ManagementPlan(BaseModel):
    """Prioritized management tasks for a field."""

    tasks: list[ManagementTask]


class HarvestIndex(BaseModel):
    """How compatible current conditions are with a target crop."""

    crop: str
    score: float = Field(..., description="Compatibility 0-100")
    status: str = Field(..., description="Excellent, Good, Fair, or Poor")
    recommendation: str
    limiting_factors: list[str] = Field(default_factory=list)

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        return _clamp_percent(v)


class IrrigationAdvice(BaseModel):
    needed: bool
    volume: str = Field(..., description="Water volume, e.g. '25 mm' or '0'")
    schedule: str = Field(..., description="When to irrigate")


class Fertilizer(BaseModel):
    type: str
    amount: str


class NutrientAdvice(BaseModel):
    needed: bool
    fertilizers: list[Fertilizer] = Field(default_factory=list)
    advice: str


class ManagementPrescription(BaseModel):
    """Irrigation and fertilizer prescription for a field."""

    irrigation: IrrigationAdvice
    nutrient: NutrientAdvice


class WeatherAlert(BaseModel):
    """Search-grounded weather alert for a location."""

    location: str
    text: str
    sources: list[dict] = Field(default_factory=list)
