"""
Downloadable reports: the plain-text management advisory and the sensor
inventory CSV.
"""

import csv
import io
from datetime import datetime

from agricare.advisory.service import ManagementEntry
from agricare.storage.models import Field, Sensor

RULE = "=" * 60
THIN_RULE = "-" * 60

CSV_COLUMNS = [
    "sensor_id",
    "field_id",
    "field_name",
    "location",
    "sensor_type",
    "status",
    "value",
    "npk_n",
    "npk_p",
    "npk_k",
    "last_updated",
]


def _fmt(value: float | None, digits: int) -> str:
    return "unknown" if value is None else f"{value:.{digits}f}"


def report_filename(generated_at: datetime) -> str:
    return f"Agricare_Advisory_Report_{generated_at.date().isoformat()}.txt"


def build_management_report(entries: list[ManagementEntry], generated_at: datetime) -> str:
    """
    Render the farm management advisory as plain text.

    One block per field: location and size, the diagnostic state the
    prescription was based on, then the irrigation and fertilizer actions.

    Args:
        entries: Fields with their conditions and prescriptions.
        generated_at: Timestamp printed in the header.

    Returns:
        The report text, newline-terminated.
    """
    lines = [
        "AGRICARE - AI FARM MANAGEMENT ADVISORY",
        f"Generated on: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        RULE,
        "",
    ]

    for entry in entries:
        field, data = entry.field, entry.conditions
        irrigation = entry.prescription.value.irrigation
        nutrient = entry.prescription.value.nutrient

        lines += [
            f"FIELD: {field.field_name}",
            f"Location: {field.location}",
            f"Size: {field.size:g} ha | Soil: {field.soil_type}",
            THIN_RULE,
            "CURRENT DIAGNOSTIC STATE:",
            f"- Temperature: {_fmt(data.temperature, 1)}°C",
            f"- Moisture: {_fmt(data.moisture, 1)}%",
            f"- Nutrient Profile (NPK): "
            f"{_fmt(data.npk_n, 0)}-{_fmt(data.npk_p, 0)}-{_fmt(data.npk_k, 0)}",
            "",
            "AI PRESCRIPTIVE ACTIONS:",
        ]

        if irrigation.needed:
            lines.append(
                f"[!] IRRIGATION: Required. Apply {irrigation.volume}. "
                f"Timing: {irrigation.schedule}."
            )
        else:
            lines.append("[✓] IRRIGATION: Not required. Moisture levels are sufficient.")

        if nutrient.needed:
            lines.append("[!] FERTILIZER PLAN:")
            lines += [f"    - {f.type}: {f.amount}" for f in nutrient.fertilizers]
            lines.append(f"    Advice: {nutrient.advice}")
        else:
            lines.append("[✓] FERTILIZER: Nutrient balance is currently optimal.")

        lines += ["", RULE, ""]

    lines.append("End of Advisory.")
    return "\n".join(lines) + "\n"


def sensors_to_csv(fields: list[Field], sensors: list[Sensor]) -> str:
    """
    Export sensors and their last readings as CSV.

    Sensors whose field is not in fields are skipped. Missing readings
    leave their columns empty.
    """
    by_id = {f.field_id: f for f in fields}

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)

    for sensor in sensors:
        field = by_id.get(sensor.field_id)
        if field is None:
            continue
        reading = sensor.last_reading
        npk = reading.npk if reading else None
        writer.writerow(
            [
                sensor.sensor_id,
                sensor.field_id,
                field.field_name,
                field.location,
                sensor.sensor_type,
                sensor.status,
                reading.value if reading else "",
                npk.n if npk else "",
                npk.p if npk else "",
                npk.k if npk else "",
                reading.timestamp.isoformat() if reading else "",
            ]
        )

    return output.getvalue()
