"""
Test Fixtures

Shared test data for the AgriCare test suite: a provider SDK error
double, canned advisory payloads, and sensor naming variants.
"""

import json


class FakeAPIError(Exception):
    """Provider SDK error carrying an HTTP status code."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


CROP_ANALYSIS_PAYLOAD = {
    "crops": [
        {
            "name": "Jute",
            "suitability": 91,
            "expected_yield": "2.8 tons/ha",
            "requirements": "Warm, humid.",
            "icon": "fa-leaf",
        },
        {
            "name": "Aman Rice",
            "suitability": 87,
            "expected_yield": "4.5 tons/ha",
            "requirements": "Monsoon water.",
            "icon": "fa-wheat-awn",
        },
        {
            "name": "Lentil",
            "suitability": 64,
            "expected_yield": "1.2 tons/ha",
            "requirements": "Dry finish.",
            "icon": "fa-seedling",
        },
    ]
}

SOIL_INSIGHT_PAYLOAD = {
    "summary": "Moisture is low. pH is slightly acidic. Irrigate within two days.",
    "status": "Needs Attention",
    "priority_action": "Irrigate within two days.",
}

MANAGEMENT_PLAN_PAYLOAD = {
    "tasks": [
        {
            "priority": "High",
            "title": f"Task {i}",
            "description": "Do it.",
            "icon": "fa-list-check",
        }
        for i in range(4)
    ]
}

HARVEST_INDEX_PAYLOAD = {
    "crop": "Jute",
    "score": 82,
    "status": "Good",
    "recommendation": "Maintain moisture above 35%.",
    "limiting_factors": ["Moisture"],
}

PRESCRIPTION_PAYLOAD = {
    "irrigation": {"needed": True, "volume": "30 mm", "schedule": "Tomorrow 6am"},
    "nutrient": {
        "needed": True,
        "fertilizers": [{"type": "Urea", "amount": "120 kg"}],
        "advice": "Apply after irrigation.",
    },
}

WEATHER_TEXT = "Heavy rain expected in Bogura on Thursday. Delay urea application."


def advisory_reply(request) -> str:
    """Well-formed answer for whichever advisory the request is for."""
    from agricare.advisory.schemas import (
        CropAnalysis,
        HarvestIndex,
        ManagementPlan,
        ManagementPrescription,
        SoilInsight,
    )

    payloads = {
        CropAnalysis: CROP_ANALYSIS_PAYLOAD,
        SoilInsight: SOIL_INSIGHT_PAYLOAD,
        ManagementPlan: MANAGEMENT_PLAN_PAYLOAD,
        HarvestIndex: HARVEST_INDEX_PAYLOAD,
        ManagementPrescription: PRESCRIPTION_PAYLOAD,
    }
    payload = payloads.get(request.response_schema)
    return WEATHER_TEXT if payload is None else json.dumps(payload)


# Sensor type spellings the fuzzy matcher must recognize
SENSOR_TYPE_VARIANTS = {
    "moisture": ["Moisture", "Soil Moisture", "moisture probe"],
    "ph": ["pH Level", "Soil pH", "PH"],
    "temp": ["Temperature", "Soil Temp", "temp sensor"],
    "npk": ["NPK", "NPK Probe", "npk-3in1"],
}
