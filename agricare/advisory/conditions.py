"""
Field conditions derived from sensor readings.

Soil markers are pulled out of a field's sensors by fuzzy type matching
("Soil pH", "pH Level" and "ph probe" all count as a pH sensor). Fields
without hardware get a deterministic simulated series so that advisories
can still be produced.
"""

import random
import re
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from agricare.storage.models import Sensor
from agricare.storage.store import InMemoryFarmStore

# "ph" must stand alone so "Phosphorus" is not read as a pH sensor
SENSOR_PATTERNS = {
    "moisture": re.compile(r"moisture"),
    "ph": re.compile(r"(?<![a-z])ph(?![a-z])"),
    "temperature": re.compile(r"temp"),
    "npk": re.compile(r"npk"),
}


class FieldConditions(BaseModel):
    """
    Latest soil markers for a field. Any marker may be unknown.

    Attributes:
        temperature: Soil temperature in degrees Celsius
        moisture: Volumetric moisture in percent
        ph_level: Soil pH
        npk_n / npk_p / npk_k: Nutrient levels in ppm
    """

    temperature: float | None = None
    moisture: float | None = None
    ph_level: float | None = None
    npk_n: float | None = None
    npk_p: float | None = None
    npk_k: float | None = None

    @property
    def has_npk(self) -> bool:
        return self.npk_n is not None

    @property
    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())

    def describe(self) -> str:
        """One-line marker summary used in prompts and reports."""

        def fmt(value: float | None, unit: str = "", digits: int = 1) -> str:
            return "unknown" if value is None else f"{value:.{digits}f}{unit}"

        npk = (
            f"{fmt(self.npk_n, digits=0)}-{fmt(self.npk_p, digits=0)}-{fmt(self.npk_k, digits=0)}"
            if self.has_npk
            else "unknown"
        )
        return (
            f"Temp: {fmt(self.temperature, '°C')}, "
            f"Moisture: {fmt(self.moisture, '%')}, "
            f"pH: {fmt(self.ph_level)}, "
            f"NPK: {npk}"
        )


def _find_sensor(sensors: list[Sensor], marker: str) -> Sensor | None:
    pattern = SENSOR_PATTERNS[marker]
    for sensor in sensors:
        if pattern.search(sensor.sensor_type.lower()):
            return sensor
    return None


def _reading_value(sensor: Sensor | None) -> float | None:
    if sensor is None or sensor.last_reading is None:
        return None
    return sensor.last_reading.value


def conditions_from_sensors(sensors: list[Sensor]) -> FieldConditions:
    """
    Build field conditions from the last readings of a field's sensors.

    Matching is a case-insensitive search on sensor_type, with "ph" only
    counted as a whole word; the first matching sensor wins. The NPK sensor supplies all three
    nutrient values.
    """
    npk_sensor = _find_sensor(sensors, "npk")
    npk = npk_sensor.last_reading.npk if npk_sensor and npk_sensor.last_reading else None

    return FieldConditions(
        moisture=_reading_value(_find_sensor(sensors, "moisture")),
        ph_level=_reading_value(_find_sensor(sensors, "ph")),
        temperature=_reading_value(_find_sensor(sensors, "temperature")),
        npk_n=npk.n if npk else None,
        npk_p=npk.p if npk else None,
        npk_k=npk.k if npk else None,
    )


def simulate_readings(field_id: int, days: int = 7) -> list[tuple[datetime, FieldConditions]]:
    """
    Deterministic virtual sensor series for a field.

    The same field_id always yields the same series, one sample per day
    ending today, so dashboards and reports stay stable between calls.

    Args:
        field_id: Seed for the series.
        days: Number of daily samples.

    Returns:
        List of (timestamp, conditions) pairs, oldest first.
    """
    rng = random.Random(field_id)
    today = datetime.now(timezone.utc).replace(hour=6, minute=0, second=0, microsecond=0)

    base_temp = rng.uniform(22.0, 30.0)
    base_moisture = rng.uniform(30.0, 55.0)
    base_ph = rng.uniform(5.6, 7.2)
    base_n, base_p, base_k = rng.uniform(30, 60), rng.uniform(15, 35), rng.uniform(120, 220)

    series = []
    for offset in range(days - 1, -1, -1):
        series.append(
            (
                today - timedelta(days=offset),
                FieldConditions(
                    temperature=round(base_temp + rng.uniform(-2.0, 2.0), 1),
                    moisture=round(max(0.0, base_moisture + rng.uniform(-6.0, 6.0)), 1),
                    ph_level=round(base_ph + rng.uniform(-0.2, 0.2), 1),
                    npk_n=round(base_n + rng.uniform(-5, 5)),
                    npk_p=round(base_p + rng.uniform(-3, 3)),
                    npk_k=round(base_k + rng.uniform(-10, 10)),
                ),
            )
        )
    return series


def merge_conditions(manual: FieldConditions | None, baseline: FieldConditions) -> FieldConditions:
    """Overlay measured values on a baseline; unknown manual values keep the baseline."""
    if manual is None:
        return baseline
    merged = baseline.model_dump()
    merged.update({k: v for k, v in manual.model_dump().items() if v is not None})
    return FieldConditions(**merged)


def manual_diagnostics(
    store: InMemoryFarmStore, field_ids: list[int]
) -> dict[int, FieldConditions]:
    """
    Measured conditions per field, for fields whose sensors reported anything.

    Returns:
        Mapping of field_id to conditions; fields without readings are omitted.
    """
    sensors = store.list_sensors(field_ids)
    diagnostics: dict[int, FieldConditions] = {}
    for field_id in field_ids:
        conditions = conditions_from_sensors([s for s in sensors if s.field_id == field_id])
        if not conditions.is_empty:
            diagnostics[field_id] = conditions
    return diagnostics


def effective_conditions(store: InMemoryFarmStore, field_id: int) -> FieldConditions:
    """Measured values for a field, filled in from its simulated series."""
    baseline = simulate_readings(field_id)[-1][1]
    manual = manual_diagnostics(store, [field_id]).get(field_id)
    return merge_conditions(manual, baseline)
