"""
Advisory Tests

Tests for field conditions (sensor matching, simulated series, merging)
and for AdvisoryService: parsed answers, fallbacks when the dispatcher or
the model fails, and concurrent fan-out.

Test Categories:
1. TestConditionsFromSensors - fuzzy sensor type matching
2. TestSimulatedReadings - deterministic virtual series
3. TestMergeConditions - manual values over the simulated baseline
4. TestRuleBasedEstimates - harvest index and prescription fallbacks
5. TestAdvisoryService - dispatcher-backed advisories
6. TestWeather - search-grounded alerts
7. TestAssistant - chat turns without fallback
"""

import json

import pytest

from agricare.advisory import (
    AdvisoryService,
    FieldConditions,
    conditions_from_sensors,
    effective_conditions,
    manual_diagnostics,
    merge_conditions,
    simulate_readings,
)
from agricare.advisory.service import (
    FALLBACK_CROPS,
    FALLBACK_PLAN,
    FALLBACK_WEATHER_TEXT,
    estimate_harvest_index,
    estimate_prescription,
)
from agricare.dispatcher import ConfigurationError, ExhaustedRetriesError
from agricare.storage import NPK, Field, Sensor, SensorReading

from tests.fixtures import SENSOR_TYPE_VARIANTS, WEATHER_TEXT, FakeAPIError


def sensor(sensor_type: str, value: float = 0.0, npk: NPK | None = None, field_id: int = 1):
    return Sensor(
        field_id=field_id,
        sensor_type=sensor_type,
        last_reading=SensorReading(value=value, npk=npk),
    )


def exhausted() -> ExhaustedRetriesError:
    return ExhaustedRetriesError(
        "All 3 attempts failed: 429", attempts=3, last_error=FakeAPIError("429", 429)
    )


# =============================================================================
# CONDITIONS
# =============================================================================


class TestConditionsFromSensors:
    """Tests for conditions_from_sensors()."""

    @pytest.mark.parametrize("sensor_type", SENSOR_TYPE_VARIANTS["moisture"])
    def test_moisture_variants(self, sensor_type):
        assert conditions_from_sensors([sensor(sensor_type, 41.5)]).moisture == 41.5

    @pytest.mark.parametrize("sensor_type", SENSOR_TYPE_VARIANTS["ph"])
    def test_ph_variants(self, sensor_type):
        assert conditions_from_sensors([sensor(sensor_type, 6.4)]).ph_level == 6.4

    @pytest.mark.parametrize("sensor_type", ["Phosphorus", "Phosphate Probe", "Graph Logger"])
    def test_ph_needs_whole_word(self, sensor_type):
        assert conditions_from_sensors([sensor(sensor_type, 31.0)]).ph_level is None

    def test_ph_found_next_to_phosphorus(self):
        sensors = [sensor("Phosphorus", 31.0), sensor("soil-pH", 6.2)]

        assert conditions_from_sensors(sensors).ph_level == 6.2

    @pytest.mark.parametrize("sensor_type", SENSOR_TYPE_VARIANTS["temp"])
    def test_temperature_variants(self, sensor_type):
        assert conditions_from_sensors([sensor(sensor_type, 27.0)]).temperature == 27.0

    @pytest.mark.parametrize("sensor_type", SENSOR_TYPE_VARIANTS["npk"])
    def test_npk_variants(self, sensor_type):
        """The NPK sensor supplies all three nutrient values."""
        conditions = conditions_from_sensors(
            [sensor(sensor_type, npk=NPK(n=45, p=22, k=180))]
        )

        assert (conditions.npk_n, conditions.npk_p, conditions.npk_k) == (45, 22, 180)
        assert conditions.has_npk

    def test_first_matching_sensor_wins(self):
        conditions = conditions_from_sensors(
            [sensor("Moisture", 30.0), sensor("Soil Moisture", 60.0)]
        )

        assert conditions.moisture == 30.0

    def test_sensor_without_reading(self):
        """A sensor that never reported leaves its marker unknown."""
        conditions = conditions_from_sensors([Sensor(field_id=1, sensor_type="Moisture")])

        assert conditions.moisture is None
        assert conditions.is_empty

    def test_unknown_types_ignored(self):
        conditions = conditions_from_sensors([sensor("Leaf Wetness", 3.0)])

        assert conditions.is_empty
        assert not conditions.has_npk

    def test_describe_marks_unknown(self):
        text = FieldConditions(moisture=22.0).describe()

        assert "Moisture: 22.0%" in text
        assert "pH: unknown" in text
        assert "NPK: unknown" in text


class TestSimulatedReadings:
    """Tests for simulate_readings()."""

    def test_same_field_same_series(self):
        first = [c for _, c in simulate_readings(5)]
        second = [c for _, c in simulate_readings(5)]

        assert first == second

    def test_fields_differ(self):
        assert simulate_readings(5)[-1][1] != simulate_readings(6)[-1][1]

    def test_daily_samples_oldest_first(self):
        series = simulate_readings(3, days=7)
        timestamps = [ts for ts, _ in series]

        assert len(series) == 7
        assert timestamps == sorted(timestamps)
        assert (timestamps[-1] - timestamps[0]).days == 6

    def test_values_are_complete_and_plausible(self):
        for _, conditions in simulate_readings(11):
            assert not conditions.is_empty
            assert 4.0 < conditions.ph_level < 8.5
            assert 0 <= conditions.moisture <= 100
            assert conditions.has_npk


class TestMergeConditions:
    """Tests for merge_conditions(), manual_diagnostics() and effective_conditions()."""

    def test_manual_overrides_baseline(self):
        baseline = FieldConditions(temperature=25.0, moisture=40.0, ph_level=6.5)
        manual = FieldConditions(moisture=18.0)

        merged = merge_conditions(manual, baseline)

        assert merged.moisture == 18.0
        assert merged.temperature == 25.0
        assert merged.ph_level == 6.5

    def test_no_manual_values(self):
        baseline = FieldConditions(moisture=40.0)

        assert merge_conditions(None, baseline) is baseline

    def test_manual_diagnostics_skips_silent_fields(self, seeded_store):
        """Only fields whose sensors reported appear in the result."""
        diagnostics = manual_diagnostics(seeded_store, [1, 2])

        assert list(diagnostics) == [1]
        assert diagnostics[1].moisture == 18.0
        assert diagnostics[1].npk_n == 15

    def test_effective_conditions_fill_gaps(self, seeded_store):
        """Measured markers win, missing ones come from the simulation."""
        conditions = effective_conditions(seeded_store, 1)
        simulated = simulate_readings(1)[-1][1]

        assert conditions.moisture == 18.0
        assert conditions.npk_k == 100
        assert conditions.ph_level == simulated.ph_level
        assert conditions.temperature == simulated.temperature

    def test_effective_conditions_without_sensors(self, seeded_store):
        assert effective_conditions(seeded_store, 2) == simulate_readings(2)[-1][1]


# =============================================================================
# FALLBACK ESTIMATES
# =============================================================================


class TestRuleBasedEstimates:
    """Tests for estimate_harvest_index() and estimate_prescription()."""

    def test_harvest_penalties(self, dry_conditions):
        """Acidic, dry, nitrogen-poor soil loses 50 points."""
        index = estimate_harvest_index("Potato", dry_conditions)

        assert index.crop == "Potato"
        assert index.score == 50
        assert index.status == "Fair"
        assert index.limiting_factors == ["pH", "Moisture", "Nitrogen"]

    def test_harvest_ideal_conditions(self):
        conditions = FieldConditions(
            temperature=26.0, moisture=45.0, ph_level=6.5, npk_n=50, npk_p=25, npk_k=180
        )

        index = estimate_harvest_index("Rice", conditions)

        assert index.score == 100
        assert index.status == "Excellent"
        assert index.limiting_factors == []

    def test_unknown_markers_not_penalized(self):
        assert estimate_harvest_index("Rice", FieldConditions()).score == 100

    def test_prescription_scales_with_size(self, sample_field, dry_conditions):
        """A 2 ha dry, depleted field needs water and all three fertilizers."""
        prescription = estimate_prescription(sample_field, dry_conditions)

        assert prescription.irrigation.needed
        assert prescription.irrigation.volume == "25 mm"
        assert prescription.nutrient.needed
        assert [(f.type, f.amount) for f in prescription.nutrient.fertilizers] == [
            ("Urea", "200 kg"),
            ("TSP", "120 kg"),
            ("MoP", "100 kg"),
        ]

    def test_prescription_nothing_needed(self, sample_field):
        conditions = FieldConditions(moisture=45.0, npk_n=50, npk_p=30, npk_k=200)

        prescription = estimate_prescription(sample_field, conditions)

        assert not prescription.irrigation.needed
        assert not prescription.nutrient.needed
        assert prescription.nutrient.fertilizers == []


# =============================================================================
# SERVICE
# =============================================================================


def crop_payload(count: int) -> str:
    return json.dumps(
        {
            "crops": [
                {
                    "name": f"Crop {i}",
                    "suitability": 90 - i,
                    "expected_yield": "1 ton/ha",
                    "requirements": "-",
                }
                for i in range(count)
            ]
        }
    )


class TestAdvisoryService:
    """Tests for the structured advisories."""

    @pytest.mark.asyncio
    async def test_field_insights(self, scripted_dispatcher, sample_field, dry_conditions):
        """All four advisories are parsed from the model answers."""
        dispatcher = scripted_dispatcher()
        service = AdvisoryService(dispatcher=dispatcher)

        insights = await service.field_insights(sample_field, dry_conditions)

        assert [c.name for c in insights.crops.value.crops] == ["Jute", "Aman Rice", "Lentil"]
        assert insights.soil.value.status == "Needs Attention"
        assert len(insights.plan.value.tasks) == 4
        assert insights.harvest.value.score == 82
        assert not any(
            a.fallback_used
            for a in (insights.crops, insights.soil, insights.plan, insights.harvest)
        )
        assert len(dispatcher.requests) == 4

    @pytest.mark.asyncio
    async def test_harvest_crop_defaults_to_field_name(
        self, scripted_dispatcher, sample_field, dry_conditions
    ):
        dispatcher = scripted_dispatcher()
        service = AdvisoryService(dispatcher=dispatcher)

        await service.field_insights(sample_field, dry_conditions)
        await service.field_insights(sample_field, dry_conditions, crop="Potato")

        harvest_prompts = [r.contents for r in dispatcher.requests if "harvest" in r.contents]
        assert "North Plot" in harvest_prompts[0]
        assert "Potato" in harvest_prompts[1]

    @pytest.mark.asyncio
    async def test_prompts_carry_conditions(
        self, scripted_dispatcher, sample_field, dry_conditions
    ):
        """Every prompt includes the field's markers and the region."""
        dispatcher = scripted_dispatcher()
        service = AdvisoryService(dispatcher=dispatcher)

        await service.management_prescriptions(sample_field, dry_conditions)

        request = dispatcher.requests[0]
        assert "Moisture: 18.0%" in request.contents
        assert "Bogura" in request.contents
        assert "Bangladesh" in request.system_instruction
        assert request.response_schema is not None

    @pytest.mark.asyncio
    async def test_dispatch_failure_uses_fallbacks(
        self, scripted_dispatcher, sample_field, dry_conditions
    ):
        """Exhausted retries turn every advisory into its fallback."""
        service = AdvisoryService(dispatcher=scripted_dispatcher(error=exhausted()))

        insights = await service.field_insights(sample_field, dry_conditions, crop="Potato")

        assert insights.crops.fallback_used
        assert insights.crops.value == FALLBACK_CROPS
        assert insights.plan.value == FALLBACK_PLAN
        assert insights.soil.fallback_used
        assert insights.harvest.value == estimate_harvest_index("Potato", dry_conditions)
        assert "429" in insights.crops.error

    @pytest.mark.asyncio
    async def test_missing_configuration_uses_fallbacks(
        self, scripted_dispatcher, sample_field, dry_conditions
    ):
        service = AdvisoryService(
            dispatcher=scripted_dispatcher(error=ConfigurationError("No AI credentials"))
        )

        prescription = await service.management_prescriptions(sample_field, dry_conditions)

        assert prescription.fallback_used
        assert prescription.value == estimate_prescription(sample_field, dry_conditions)

    @pytest.mark.asyncio
    async def test_fallback_is_a_copy(self, scripted_dispatcher, sample_field, dry_conditions):
        """Mutating a fallback answer does not change the shared default."""
        service = AdvisoryService(dispatcher=scripted_dispatcher(error=exhausted()))

        advice = await service.crop_recommendations(sample_field, dry_conditions)
        advice.value.crops.clear()

        assert len(FALLBACK_CROPS.crops) == 3

    @pytest.mark.asyncio
    async def test_unparseable_answer_uses_fallback(
        self, make_dispatcher, sample_field, dry_conditions
    ):
        dispatcher, _ = make_dispatcher(["key-alpha-0001"], default="Sorry, I can't.")
        service = AdvisoryService(dispatcher=dispatcher)

        advice = await service.soil_health_summary(sample_field, dry_conditions)

        assert advice.fallback_used
        assert advice.value.status == "Stable"

    @pytest.mark.asyncio
    async def test_crops_truncated_to_three(self, make_dispatcher, sample_field, dry_conditions):
        dispatcher, _ = make_dispatcher(["key-alpha-0001"], default=crop_payload(5))
        service = AdvisoryService(dispatcher=dispatcher)

        advice = await service.crop_recommendations(sample_field, dry_conditions)

        assert not advice.fallback_used
        assert [c.name for c in advice.value.crops] == ["Crop 0", "Crop 1", "Crop 2"]

    @pytest.mark.asyncio
    async def test_empty_crop_list_uses_fallback(
        self, make_dispatcher, sample_field, dry_conditions
    ):
        dispatcher, _ = make_dispatcher(["key-alpha-0001"], default=crop_payload(0))
        service = AdvisoryService(dispatcher=dispatcher)

        advice = await service.crop_recommendations(sample_field, dry_conditions)

        assert advice.fallback_used
        assert advice.error == "Model returned no crops"

    @pytest.mark.asyncio
    async def test_empty_plan_uses_fallback(self, make_dispatcher, sample_field, dry_conditions):
        dispatcher, _ = make_dispatcher(["key-alpha-0001"], default='{"tasks": []}')
        service = AdvisoryService(dispatcher=dispatcher)

        advice = await service.management_plan(sample_field, dry_conditions)

        assert advice.fallback_used
        assert advice.value == FALLBACK_PLAN

    @pytest.mark.asyncio
    async def test_rotation_is_transparent(
        self, make_dispatcher, credentials, rate_limited, sample_field, dry_conditions
    ):
        """A rate-limited first key still yields a parsed answer."""
        dispatcher, provider = make_dispatcher(
            credentials,
            {credentials[0]: [rate_limited]},
            default='{"summary": "Fine.", "status": "Good"}',
        )
        service = AdvisoryService(dispatcher=dispatcher)

        advice = await service.soil_health_summary(sample_field, dry_conditions)

        assert not advice.fallback_used
        assert advice.value.status == "Good"
        assert provider.calls == [credentials[0], credentials[1]]

    @pytest.mark.asyncio
    async def test_management_overview(self, scripted_dispatcher, seeded_store):
        """One entry per field, diagnostics from sensors and simulation."""
        service = AdvisoryService(dispatcher=scripted_dispatcher())

        entries = await service.management_overview(seeded_store, "u1")

        assert [e.field.field_name for e in entries] == ["North Plot", "River Plot"]
        assert entries[0].conditions.moisture == 18.0
        assert entries[1].conditions == simulate_readings(2)[-1][1]
        assert entries[0].prescription.value.irrigation.volume == "30 mm"

    @pytest.mark.asyncio
    async def test_management_overview_no_fields(self, scripted_dispatcher, farm_store):
        service = AdvisoryService(dispatcher=scripted_dispatcher())

        assert await service.management_overview(farm_store, "nobody") == []

    def test_ai_status(self, make_dispatcher, credentials):
        """Status reports counts and masked labels, never the keys."""
        dispatcher, _ = make_dispatcher(credentials)
        service = AdvisoryService(dispatcher=dispatcher)

        status = service.ai_status()

        assert status["configured_credentials"] == 3
        assert status["active_credential"] == 0
        assert status["ready"] is True
        assert status["credential_labels"][0] == "key-...001"
        assert credentials[0] not in json.dumps(status)

    def test_ai_status_without_credentials(self, make_dispatcher):
        dispatcher, _ = make_dispatcher([])

        status = AdvisoryService(dispatcher=dispatcher).ai_status()

        assert status["ready"] is False
        assert status["credential_labels"] == []


class TestWeather:
    """Tests for weather_alert() and weather_for_fields()."""

    @pytest.mark.asyncio
    async def test_alert_with_sources(self, scripted_dispatcher):
        dispatcher = scripted_dispatcher()
        service = AdvisoryService(dispatcher=dispatcher)

        advice = await service.weather_alert("Bogura")

        assert not advice.fallback_used
        assert advice.value.text == WEATHER_TEXT
        assert advice.value.sources[0]["uri"] == "https://example.org/bd"
        assert dispatcher.requests[0].use_search
        assert dispatcher.requests[0].response_schema is None

    @pytest.mark.asyncio
    async def test_dispatch_failure(self, scripted_dispatcher):
        service = AdvisoryService(dispatcher=scripted_dispatcher(error=exhausted()))

        advice = await service.weather_alert("Bogura")

        assert advice.fallback_used
        assert advice.value.location == "Bogura"
        assert advice.value.text == FALLBACK_WEATHER_TEXT

    @pytest.mark.asyncio
    async def test_blank_answer(self, make_dispatcher):
        dispatcher, _ = make_dispatcher(["key-alpha-0001"], default="  \n")
        service = AdvisoryService(dispatcher=dispatcher)

        advice = await service.weather_alert("Bogura")

        assert advice.fallback_used
        assert advice.error == "Empty weather response"

    @pytest.mark.asyncio
    async def test_unique_locations_of_first_fields(self, scripted_dispatcher):
        """Only the first two fields count, and each location is asked once."""
        dispatcher = scripted_dispatcher()
        service = AdvisoryService(dispatcher=dispatcher)
        fields = [
            Field(field_id=i, user_id="u1", field_name=f"F{i}", location=loc, size=1.0)
            for i, loc in enumerate(["Bogura", "Bogura", "Rajshahi"])
        ]

        alerts = await service.weather_for_fields(fields)

        assert [a.value.location for a in alerts] == ["Bogura"]
        assert len(dispatcher.requests) == 1

    @pytest.mark.asyncio
    async def test_locations_keep_field_order(self, scripted_dispatcher):
        service = AdvisoryService(dispatcher=scripted_dispatcher())
        fields = [
            Field(field_id=i, user_id="u1", field_name=f"F{i}", location=loc, size=1.0)
            for i, loc in enumerate(["Rajshahi", "Bogura", "Dhaka"])
        ]

        alerts = await service.weather_for_fields(fields)

        assert [a.value.location for a in alerts] == ["Rajshahi", "Bogura"]

    @pytest.mark.asyncio
    async def test_no_fields(self, scripted_dispatcher):
        service = AdvisoryService(dispatcher=scripted_dispatcher())

        assert await service.weather_for_fields([]) == []


class TestAssistant:
    """Tests for ask_assistant()."""

    @pytest.mark.asyncio
    async def test_reply_is_stripped(self, make_dispatcher):
        dispatcher, _ = make_dispatcher(["key-alpha-0001"], default="  Water at dawn.\n")
        service = AdvisoryService(dispatcher=dispatcher)

        assert await service.ask_assistant("When should I irrigate?") == "Water at dawn."

    @pytest.mark.asyncio
    async def test_history_in_prompt(self, scripted_dispatcher):
        dispatcher = scripted_dispatcher()
        service = AdvisoryService(dispatcher=dispatcher)

        await service.ask_assistant(
            "And potatoes?",
            [("user", "What grows in clay?"), ("assistant", "Rice does well.")],
        )

        contents = dispatcher.requests[0].contents
        assert contents.splitlines() == [
            "User: What grows in clay?",
            "Assistant: Rice does well.",
            "User: And potatoes?",
            "Assistant:",
        ]
        assert "AgriCare Assistant" in dispatcher.requests[0].system_instruction

    @pytest.mark.asyncio
    async def test_errors_propagate(self, scripted_dispatcher):
        """The assistant has no fallback answer."""
        service = AdvisoryService(
            dispatcher=scripted_dispatcher(error=ConfigurationError("No AI credentials"))
        )

        with pytest.raises(ConfigurationError):
            await service.ask_assistant("Hello")
