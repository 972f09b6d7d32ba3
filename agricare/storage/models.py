"""
Farm record models.

Pydantic models for the records the dashboard persists: users, fields
and sensors with their most recent reading.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field as PydanticField


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """Registered dashboard user. Password hashes are stored separately."""

    id: str = PydanticField(..., min_length=1, description="Stable user identifier")
    name: str = PydanticField(..., min_length=1, max_length=100)
    email: str = PydanticField(
        ...,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        description="Login email, matched case-insensitively",
    )
    farm_name: str | None = PydanticField(default=None, max_length=100)
    location: str | None = PydanticField(default=None, max_length=100)


class Field(BaseModel):
    """
    A registered farm field.

    field_id is assigned by the store when left empty.
    """

    field_id: int | None = None
    user_id: str = PydanticField(..., min_length=1)
    field_name: str = PydanticField(..., min_length=1, max_length=100)
    location: str = PydanticField(..., min_length=1, max_length=100)
    size: float = PydanticField(..., gt=0, description="Area in hectares")
    soil_type: str = PydanticField(default="Loamy", max_length=50)


class NPK(BaseModel):
    """Nitrogen / phosphorus / potassium levels in ppm."""

    n: float = PydanticField(..., ge=0)
    p: float = PydanticField(..., ge=0)
    k: float = PydanticField(..., ge=0)


class SensorReading(BaseModel):
    """Latest value reported by a sensor."""

    value: float = 0.0
    npk: NPK | None = None
    timestamp: datetime = PydanticField(default_factory=utc_now)


class Sensor(BaseModel):
    """
    Virtual or IoT sensor attached to a field.

    sensor_type is free text ("Moisture", "Soil pH", "NPK Probe", ...);
    readings are matched to soil markers by name (see conditions.py).
    """

    sensor_id: int | None = None
    field_id: int
    sensor_type: str = PydanticField(..., min_length=1, max_length=50)
    status: str = PydanticField(default="Active", max_length=20)
    last_reading: SensorReading | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "sensor_id": 17,
                    "field_id": 3,
                    "sensor_type": "Moisture",
                    "status": "Active",
                    "last_reading": {
                        "value": 41.5,
                        "timestamp": "2026-10-19T06:00:00Z",
                    },
                }
            ]
        }
    )
