"""
Tests for the dosing engine: weight-based doses, patient adjustments,
safe-range checks and the daily schedule.
"""

import pytest

from dosecalc.errors import NotFound
from dosecalc.services.dosing import DosingEngine

from conftest import build_reference, make_component, make_profile


@pytest.fixture
def engine(reference_data):
    return DosingEngine(reference_data)


@pytest.fixture
def adjusted_engine():
    """Single component declaring four of the five adjustment factors."""
    reference = build_reference({
        "test-comp": make_component(
            adjustments={"age65": 1.1, "bmi30": 1.2, "smoking": 1.15, "crCl30": 0.8},
        ),
    })
    return DosingEngine(reference)


class TestComputeDose:
    """Tests for compute_dose."""

    def test_adjustment_factor_is_product_of_applicable_factors(self, adjusted_engine, high_risk_profile):
        """childB applies to the patient but the component declares no childB factor."""
        dose = adjusted_engine.compute_dose("test-comp", high_risk_profile)

        assert dose.adjustment_factor == pytest.approx(1.2144)
        assert dose.base_dose == pytest.approx(800)
        assert dose.adjusted_dose == pytest.approx(971.52)

    def test_effective_and_tissue_dose(self, adjusted_engine, high_risk_profile):
        dose = adjusted_engine.compute_dose("test-comp", high_risk_profile)

        # f = 50 %, vd = 1.0 L/kg, kp = 2.0
        assert dose.effective_dose == pytest.approx(485.76)
        assert dose.tissue_dose == pytest.approx(485.76 / 80 * 2.0)

    def test_no_applicable_factors(self, adjusted_engine, healthy_profile):
        dose = adjusted_engine.compute_dose("test-comp", healthy_profile)

        assert dose.adjustment_factor == 1.0
        assert dose.adjusted_dose == pytest.approx(dose.base_dose)

    @pytest.mark.parametrize("crcl,expected", [
        (50, 0.8),
        (51, 1.0),
        (None, 1.0),
    ])
    def test_renal_factor_threshold(self, adjusted_engine, crcl, expected):
        profile = make_profile(creatinineClearance=crcl)
        dose = adjusted_engine.compute_dose("test-comp", profile)
        assert dose.adjustment_factor == pytest.approx(expected)

    def test_thresholds_are_inclusive(self, adjusted_engine):
        profile = make_profile(age=65, bmi=30)
        dose = adjusted_engine.compute_dose("test-comp", profile)
        assert dose.adjustment_factor == pytest.approx(1.1 * 1.2)

    def test_result_carries_schedule_metadata(self, engine, healthy_profile):
        dose = engine.compute_dose("vitamin-c", healthy_profile)

        assert dose.component_id == "vitamin-c"
        assert dose.frequency == "BID"
        assert dose.route == "oral"
        assert "morning" in dose.timing

    def test_topical_component(self, engine, healthy_profile):
        dose = engine.compute_dose("diclofenac", healthy_profile)

        assert dose.route == "topical"
        assert dose.base_dose == pytest.approx(40 * 75)

    def test_values_are_not_rounded(self, engine, healthy_profile):
        dose = engine.compute_dose("vitamin-c", healthy_profile)
        assert dose.adjusted_dose == pytest.approx(13.33 * 75)
        assert dose.adjusted_dose != round(dose.adjusted_dose)

    def test_rounded_copy(self, adjusted_engine, high_risk_profile):
        shown = adjusted_engine.compute_dose("test-comp", high_risk_profile).rounded()

        assert shown.base_dose == 800
        assert shown.adjusted_dose == 972
        assert shown.adjustment_factor == 1.21
        assert shown.tissue_dose == 12.14

    def test_unknown_component(self, engine, healthy_profile):
        with pytest.raises(NotFound):
            engine.compute_dose("unobtainium", healthy_profile)


class TestDailyDose:
    """Tests for get_daily_dose."""

    def test_twice_daily(self, engine, healthy_profile):
        assert engine.get_daily_dose("vitamin-c", healthy_profile) == pytest.approx(13.33 * 75 * 2)

    def test_once_daily(self, engine, healthy_profile):
        assert engine.get_daily_dose("coq10", healthy_profile) == pytest.approx(2.0 * 75)


class TestDoseRange:
    """Tests for validate_dose_range and check_dose."""

    def test_within_declared_range(self, engine):
        result = engine.validate_dose_range("vitamin-c", 1000)
        assert result.valid
        assert result.min_dose == 750
        assert result.max_dose == 1500

    def test_below_minimum(self, engine):
        result = engine.validate_dose_range("vitamin-c", 700)
        assert not result.valid
        assert result.error == "Dose 700mg below minimum safe range (750mg)"

    def test_above_maximum(self, engine):
        result = engine.validate_dose_range("vitamin-c", 1600)
        assert not result.valid
        assert result.error == "Dose 1600mg exceeds maximum safe range (1500mg)"

    def test_fallback_table_used_without_declared_range(self, engine):
        assert engine.validate_dose_range("coq10", 150).valid
        assert not engine.validate_dose_range("coq10", 250).valid

    def test_declared_range_takes_precedence(self, engine, healthy_profile):
        """Pentoxifylline's record allows 200-1200 mg; the fallback table would reject 400 mg."""
        result = engine.check_dose("pentoxifylline", healthy_profile)
        assert result.valid
        assert result.min_dose == 200

    def test_no_established_range(self):
        engine = DosingEngine(build_reference({"test-comp": make_component()}))
        result = engine.validate_dose_range("test-comp", 10_000)
        assert result.valid
        assert result.warning == "No established range"


class TestDosingSchedule:
    """Tests for generate_dosing_schedule."""

    def _schedule(self, engine, profile, ids):
        doses = {cid: engine.compute_dose(cid, profile) for cid in ids}
        return engine.generate_dosing_schedule(doses)

    def test_fat_soluble_components_move_to_meals(self, engine, healthy_profile):
        schedule = self._schedule(engine, healthy_profile, ["coq10", "vitamin-c", "vitamin-e"])

        assert "coq10" not in [e.id for e in schedule["morning"]]
        assert "vitamin-e" not in [e.id for e in schedule["evening"]]
        assert "coq10" in [e.id for e in schedule["breakfast"]]
        assert "vitamin-e" in [e.id for e in schedule["dinner"]]

    def test_no_duplicates_within_a_slot(self, engine, healthy_profile):
        schedule = self._schedule(engine, healthy_profile, list(engine.components))

        for entries in schedule.values():
            ids = [e.id for e in entries]
            assert len(ids) == len(set(ids))

    def test_synergy_pair_is_co_located(self, engine, healthy_profile):
        """Bilberry follows propolis into the morning slot."""
        schedule = self._schedule(engine, healthy_profile, ["propolis", "bilberry"])

        assert [e.id for e in schedule["morning"]] == ["propolis", "bilberry"]
        assert schedule["evening"] == []

    def test_move_requires_timing_support(self):
        reference = build_reference({
            "vitamin-c": make_component(timing=["noon"]),
            "vitamin-e": make_component(timing=["evening"]),
        })
        engine = DosingEngine(reference)
        profile = make_profile()
        schedule = self._schedule(engine, profile, ["vitamin-c", "vitamin-e"])

        assert [e.id for e in schedule["noon"]] == ["vitamin-c"]
        assert [e.id for e in schedule["evening"]] == ["vitamin-e"]

    def test_tie_moves_second_member(self):
        """Noon and evening both hold two entries; vitamin-e joins vitamin-c at noon."""
        reference = build_reference({
            "vitamin-c": make_component(timing=["noon"]),
            "vitamin-e": make_component(timing=["noon", "evening"]),
            "sod": make_component(timing=["evening"]),
        })
        engine = DosingEngine(reference)
        schedule = self._schedule(engine, make_profile(), ["vitamin-c", "vitamin-e", "sod"])

        assert [e.id for e in schedule["noon"]] == ["vitamin-c", "vitamin-e"]
        assert [e.id for e in schedule["evening"]] == ["sod"]

    def test_slots_are_recounted_after_each_move(self):
        """
        Noon and bedtime start with three entries each. Moving vitamin-e to
        noon leaves bedtime with two, so pentoxifylline follows it to noon
        instead of vitamin-e being pulled back to bedtime.
        """
        reference = build_reference({
            "vitamin-c": make_component(timing=["noon"]),
            "vitamin-e": make_component(timing=["noon", "bedtime"]),
            "pentoxifylline": make_component(timing=["noon", "bedtime"]),
            "sod": make_component(timing=["bedtime"]),
        })
        engine = DosingEngine(reference)
        schedule = self._schedule(
            engine, make_profile(), ["vitamin-c", "vitamin-e", "pentoxifylline", "sod"]
        )

        assert [e.id for e in schedule["noon"]] == ["vitamin-c", "vitamin-e", "pentoxifylline"]
        assert [e.id for e in schedule["bedtime"]] == ["sod"]

    def test_entries_carry_adjusted_dose(self, engine, healthy_profile):
        schedule = self._schedule(engine, healthy_profile, ["sod"])

        entry = schedule["bedtime"][0]
        assert entry.id == "sod"
        assert entry.dose == pytest.approx(1.87 * 75)
        assert entry.unit == "IU"

    def test_topical_slot(self, engine, healthy_profile):
        schedule = self._schedule(engine, healthy_profile, ["diclofenac"])
        assert [e.id for e in schedule["topical"]] == ["diclofenac"]

    def test_input_is_not_modified(self, engine, healthy_profile):
        doses = {cid: engine.compute_dose(cid, healthy_profile) for cid in ["coq10", "vitamin-e"]}
        snapshot = dict(doses)
        engine.generate_dosing_schedule(doses)
        assert doses == snapshot
