"""
Tests for target calculation.

These tests verify:
1. Org targets come from the ten best adoption snapshots
2. User targets come from the most recent metrics days
3. Impact targets combine surveys with the cost settings
4. Calculation logging records each figure once
"""

from datetime import datetime, timedelta, timezone

import pytest

from copilot_value.services.target_calculation import (
    CalculationData,
    CalculationDataMissingError,
    TargetCalculator,
)
from copilot_value.services.targets import default_targets

NOW = datetime(2024, 3, 15, tzinfo=timezone.utc)


def metrics_day(days_ago: int, suggestions: int = 0, chats: int = 0, active: int = 0, dotcom: int = 0) -> dict:
    return {
        "date": (NOW - timedelta(days=days_ago)).isoformat(),
        "total_active_users": active,
        "copilot_ide_code_completions": {"total_code_suggestions": suggestions},
        "copilot_ide_chat": {"total_chats": chats},
        "copilot_dotcom_chat": {"total_chats": dotcom},
        "copilot_dotcom_pull_requests": {"total_pr_summaries_created": 0},
    }


@pytest.fixture
def calculator() -> TargetCalculator:
    calculator = TargetCalculator()
    calculator.load(
        CalculationData(
            settings={
                "developerCount": "40",
                "hoursPerYear": 2000,
                "percentCoding": 50,
                "percentTimeSaved": 20,
                "devCostPerYear": 100000,
            },
            adoptions=[
                {"totalSeats": 20, "totalActive": 10},
                {"totalSeats": 30, "totalActive": 20},
                {"totalSeats": 5, "totalActive": 0},
            ],
            metrics_daily=[metrics_day(0, chats=30, active=10)],
            metrics_weekly=[metrics_day(d, suggestions=150) for d in range(7)],
            surveys_weekly=[
                {"userId": "alice", "percentTimeSaved": 10},
                {"userId": "alice", "percentTimeSaved": 30},
                {"userId": "bob", "percentTimeSaved": 40},
            ],
            surveys_monthly=[{"userId": "alice"}, {"userId": "bob"}, {"userId": "alice"}],
        )
    )
    return calculator


# =============================================================================
# TEST: ORG
# =============================================================================


class TestOrgTargets:
    """Tests for seat and adoption targets."""

    def test_seats_average_of_top_adoptions(self, calculator):
        # (20 + 30 + 5) / 3 rounded
        assert calculator.calculate_seats() == {"current": 18, "target": 18, "max": 40}

    def test_adopted_devs(self, calculator):
        assert calculator.calculate_adopted_devs() == {"current": 10, "target": 10, "max": 40}

    def test_monthly_reporting_counts_distinct_users(self, calculator):
        assert calculator.calculate_monthly_devs_reporting_time_savings() == {
            "current": 2,
            "target": 4,
            "max": 40,
        }

    def test_percent_of_seats_adopted(self, calculator):
        result = calculator.calculate_percent_of_seats_adopted()

        assert result["current"] == pytest.approx(10 / 18 * 100)
        assert result["max"] == 100

    def test_percentage_of_zero_is_zero(self):
        assert TargetCalculator.percentage(5, 0) == 0


# =============================================================================
# TEST: USER
# =============================================================================


class TestUserTargets:
    """Tests for per-developer usage targets."""

    def test_daily_suggestions_use_five_most_recent_days(self, calculator):
        result = calculator.calculate_daily_suggestions()

        assert result["current"] == pytest.approx(150 / 10)
        assert result["target"] == pytest.approx(30)
        assert result["max"] == 150

    def test_daily_acceptances_assume_acceptance_rate(self, calculator):
        assert calculator.calculate_daily_acceptances()["current"] == pytest.approx(15 * 0.7)

    def test_daily_chat_turns(self, calculator):
        assert calculator.calculate_daily_chat_turns() == {"current": 3, "target": 4.5, "max": 50}

    def test_dotcom_chats_fall_back_to_ratio(self, calculator):
        assert calculator.calculate_daily_dotcom_chats()["current"] == pytest.approx(3 * 0.33)

    def test_weekly_time_saved_averages_per_user(self, calculator):
        # alice 20%, bob 40% -> 30% of 20 coding hours a week
        result = calculator.calculate_weekly_time_saved_hrs()

        assert result["current"] == pytest.approx(6)
        assert result["max"] == pytest.approx(4)
        assert result["target"] == pytest.approx(min(9, 3.2))

    def test_weekly_time_saved_without_surveys(self):
        calculator = TargetCalculator()
        calculator.load(CalculationData())

        assert calculator.calculate_weekly_time_saved_hrs() == {"current": 0, "target": 0, "max": 10}


# =============================================================================
# TEST: IMPACT AND ALL
# =============================================================================


class TestImpactTargets:
    """Tests for time and money saved."""

    def test_monthly_time_savings(self, calculator):
        result = calculator.calculate_monthly_time_savings_hrs()

        assert result["current"] == pytest.approx(10 * 6 * 4)
        assert result["max"] == 80 * 18

    def test_annual_savings_use_hourly_rate(self, calculator):
        # 6 hrs * 50 weeks * $50/hr * 10 devs
        assert calculator.calculate_annual_time_savings_as_dollars()["current"] == pytest.approx(150000)

    def test_productivity_boost(self, calculator):
        assert calculator.calculate_productivity_or_throughput_boost_percent()["current"] == pytest.approx(46 / 40)


class TestCalculateAll:
    """Tests for the full calculation."""

    def test_every_group_and_target(self, calculator):
        targets = calculator.calculate_all()

        assert set(targets) == {"org", "user", "impact"}
        assert set(targets["org"]) == set(default_targets()["org"])
        assert set(targets["user"]) == set(default_targets()["user"])
        assert set(targets["impact"]) == set(default_targets()["impact"])

    def test_requires_data(self):
        with pytest.raises(CalculationDataMissingError):
            TargetCalculator().calculate_all()

    def test_logs_each_calculation_once(self, calculator):
        calculator.enable_logging = True

        calculator.calculate_all()

        names = [log["name"] for log in calculator.logs]
        assert len(names) == len(set(names))
        assert "Calculate SEATS" in names

    def test_no_logs_when_disabled(self, calculator):
        calculator.calculate_all()

        assert calculator.logs == []


class TestDefaultTargets:
    """Tests for the targets seeded on first start."""

    def test_from_adoptions(self):
        targets = default_targets([{"totalSeats": 10, "totalActive": 5}])

        assert targets["org"]["seats"] == {"current": 10, "target": 10, "max": 10}
        assert targets["org"]["percentOfSeatsAdopted"]["current"] == 50

    def test_without_adoptions(self):
        assert default_targets()["org"]["seats"] == {"current": 0, "target": 0, "max": 0}
