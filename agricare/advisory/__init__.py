"""
Advisory module: AI-generated farm advice built on the dispatcher.

Key exports:
- FieldConditions and helpers turning sensor readings into soil markers
- AdvisoryService: crop, soil, plan, harvest, prescription, weather and chat
- build_management_report() / sensors_to_csv(): downloadable reports
- parse_model_response(): tolerant JSON extraction from model output
"""

from agricare.advisory.conditions import (
    FieldConditions,
    conditions_from_sensors,
    effective_conditions,
    manual_diagnostics,
    merge_conditions,
    simulate_readings,
)
from agricare.advisory.parsing import parse_json_payload, parse_model_response
from agricare.advisory.report import build_management_report, report_filename, sensors_to_csv
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
from agricare.advisory.service import (
    AdviceResult,
    AdvisoryService,
    FieldInsights,
    ManagementEntry,
    get_advisory_service,
    reset_advisory_service,
)

__all__ = [
    # Conditions
    "FieldConditions",
    "conditions_from_sensors",
    "effective_conditions",
    "manual_diagnostics",
    "merge_conditions",
    "simulate_readings",
    # Parsing
    "parse_json_payload",
    "parse_model_response",
    # Payloads
    "CropAnalysis",
    "CropRecommendation",
    "Fertilizer",
    "HarvestIndex",
    "IrrigationAdvice",
    "ManagementPlan",
    "ManagementPrescription",
    "ManagementTask",
    "NutrientAdvice",
    "SoilInsight",
    "WeatherAlert",
    # Service
    "AdviceResult",
    "AdvisoryService",
    "FieldInsights",
    "ManagementEntry",
    "get_advisory_service",
    "reset_advisory_service",
    # Reports
    "build_management_report",
    "report_filename",
    "sensors_to_csv",
]
