"""
Tests for the display tables.
"""

import pytest

from dosecalc.tables import (
    DOSE_COLUMNS,
    contraindication_table,
    dose_table,
    effectiveness_table,
    schedule_table,
    synergy_table,
)

from conftest import make_profile

SELECTION = ["coq10", "vitamin-c", "vitamin-e"]


@pytest.fixture
def result(calculator, healthy_profile):
    return calculator.calculate_dosing(healthy_profile, SELECTION)


class TestTables:
    """Tests for the pandas DataFrames built from calculator results."""

    def test_dose_table(self, result, reference_data):
        df = dose_table(result, reference_data)

        assert list(df.columns) == DOSE_COLUMNS
        assert list(df["component"]) == SELECTION
        row = df.set_index("component").loc["vitamin-c"]
        assert row["adjusted_dose"] == 1000
        assert row["timing"] == "morning, evening, breakfast, dinner"

    def test_synergy_table(self, result):
        df = synergy_table(result)

        assert len(df) == 3
        assert set(df["pair"]) == {"vitamin-c_vitamin-e", "coq10_vitamin-c", "coq10_vitamin-e"}

    def test_effectiveness_table(self, result):
        df = effectiveness_table(result)

        assert len(df) == 6
        assert df["metric"].iloc[-1] == "Response potential"
        assert all(0 <= v <= 100 for v in df["percent"])

    def test_schedule_table(self, calculator, result):
        df = schedule_table(calculator.generate_dosing_schedule(result.component_doses))

        assert set(df["component"]) == set(SELECTION)
        assert "bedtime" not in set(df["slot"])

    def test_contraindication_table(self, calculator):
        findings = calculator.interactions.check_contraindications(
            ["pentoxifylline"], make_profile(age=80)
        )
        df = contraindication_table(findings)

        assert list(df.columns) == ["type", "component", "severity", "message"]
        assert df.iloc[0]["severity"] == "caution"

    def test_empty_contraindication_table(self):
        df = contraindication_table([])
        assert df.empty
        assert list(df.columns) == ["type", "component", "severity", "message"]
