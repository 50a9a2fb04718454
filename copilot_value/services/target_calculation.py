"""Target calculation: derive current/target/max values from collected data.

The calculator is pure; ``fetch_and_calculate`` gathers settings, adoptions,
metrics and surveys from the stores and feeds them in.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from pymongo.asynchronous.database import AsyncDatabase
from sqlalchemy.ext.asyncio import AsyncSession

from .activity import parse_datetime
from .adoption import AdoptionService
from .metrics import MetricsService
from .settings import SettingsService
from .surveys import SurveyService

logger = logging.getLogger(__name__)

TOP_ADOPTIONS = 10
RECENT_METRIC_DAYS = 5
WORKING_WEEKS_PER_YEAR = 50
ACCEPTANCE_RATE = 0.7
DOTCOM_CHAT_RATIO = 0.33


# =============================================================================
# EXCEPTIONS
# =============================================================================


class TargetCalculationError(Exception):
    """Base exception for target calculation."""
    pass


class CalculationDataMissingError(TargetCalculationError):
    """Calculation was requested before the input data was loaded."""
    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CalculationData:
    """Everything the calculator reads."""

    settings: dict[str, Any] = field(default_factory=dict)
    adoptions: list[dict[str, Any]] = field(default_factory=list)
    metrics_daily: list[dict[str, Any]] = field(default_factory=list)
    metrics_weekly: list[dict[str, Any]] = field(default_factory=list)
    surveys_weekly: list[dict[str, Any]] = field(default_factory=list)
    surveys_monthly: list[dict[str, Any]] = field(default_factory=list)


def _number(value: Any, default: float = 0) -> float:
    """Coerce a setting value (which may be stored as a string) to a number."""
    if value is None or value == "" or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _target(current: float, target: float, max_value: float) -> dict[str, float]:
    return {"current": current, "target": target, "max": max_value}


def _by_date_desc(docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    return sorted(docs, key=lambda doc: parse_datetime(doc.get("date")) or epoch, reverse=True)


def _section_total(doc: dict[str, Any], section: str, key: str) -> float:
    return (doc.get(section) or {}).get(key) or 0


class TargetCalculator:
    """Computes org, user and impact targets from loaded data."""

    def __init__(self, enable_logging: bool = False):
        self.enable_logging = enable_logging
        self.data: CalculationData | None = None
        self.logs: list[dict[str, Any]] = []
        self._logged: set[str] = set()

    def load(self, data: CalculationData) -> None:
        self.data = data

    def reset_logging(self) -> None:
        self._logged.clear()
        self.logs = []

    def log_calculation(self, name: str, inputs: dict[str, Any], formula: str, result: Any) -> None:
        """Record a calculation once per name when logging is enabled."""
        if name in self._logged:
            return
        self._logged.add(name)
        if not self.enable_logging:
            return
        self.logs.append({"name": name, "inputs": inputs, "formula": formula, "result": result})
        logger.info(
            f"Calculation {name}: inputs={json.dumps(inputs, default=str)} "
            f"formula={formula!r} result={json.dumps(result, default=str)}"
        )

    @property
    def _data(self) -> CalculationData:
        if self.data is None:
            raise CalculationDataMissingError(
                "Data must be fetched before calculations can be performed"
            )
        return self.data

    def _setting(self, name: str, default: float = 0) -> float:
        return _number(self._data.settings.get(name), default)

    @staticmethod
    def percentage(numerator: float, denominator: float) -> float:
        if denominator == 0:
            return 0
        return numerator / denominator * 100

    @staticmethod
    def distinct_users(surveys: list[dict[str, Any]]) -> list[str]:
        return list(dict.fromkeys(survey.get("userId") for survey in surveys))

    def _top_adoptions(self) -> list[dict[str, Any]]:
        ranked = sorted(self._data.adoptions, key=lambda a: a.get("totalActive") or 0, reverse=True)
        return ranked[:TOP_ADOPTIONS]

    # =========================================================================
    # ORG
    # =========================================================================

    def calculate_seats(self) -> dict[str, float]:
        top = self._top_adoptions()
        total_seats = sum(a.get("totalSeats") or 0 for a in top)
        avg_seats = round(total_seats / (len(top) or 1))
        developer_count = self._setting("developerCount")
        result = _target(avg_seats, avg_seats, developer_count)
        self.log_calculation(
            "Calculate SEATS",
            {
                "topAdoptions": [
                    {"totalSeats": a.get("totalSeats"), "totalActive": a.get("totalActive")} for a in top
                ],
                "developerCount": developer_count,
                "adoptionsCount": len(self._data.adoptions),
            },
            "Sort adoptions by totalActive, take top 10, average totalSeats, "
            "set current = target = avgTotalSeats, max = developerCount",
            result,
        )
        return result

    def calculate_adopted_devs(self) -> dict[str, float]:
        top = self._top_adoptions()
        total_active = sum(a.get("totalActive") or 0 for a in top)
        avg_active = round(total_active / (len(top) or 1))
        developer_count = self._setting("developerCount")
        result = _target(avg_active, avg_active, developer_count)
        self.log_calculation(
            "ADOPTED DEVS",
            {
                "topAdoptions": [{"totalActive": a.get("totalActive")} for a in top],
                "developerCount": developer_count,
                "adoptionsCount": len(self._data.adoptions),
            },
            "Sort adoptions by totalActive, take top 10, average totalActive, "
            "set current = target = avgTotalActive, max = developerCount",
            result,
        )
        return result

    def calculate_monthly_devs_reporting_time_savings(self) -> dict[str, float]:
        users = self.distinct_users(self._data.surveys_monthly)
        developer_count = self._setting("developerCount")
        result = _target(len(users), len(users) * 2, developer_count)
        self.log_calculation(
            "MONTHLY DEVS REPORTING TIME SAVINGS",
            {
                "monthlySurveysCount": len(self._data.surveys_monthly),
                "distinctUsersCount": len(users),
                "developerCount": developer_count,
            },
            "Count distinct userIds from monthly surveys, set current = distinctUsers, max = developerCount",
            result,
        )
        return result

    def calculate_percent_of_seats_reporting_time_savings(self) -> dict[str, float]:
        seats = self.calculate_seats()
        reporting = self.calculate_monthly_devs_reporting_time_savings()
        result = _target(
            self.percentage(reporting["current"], seats["current"]),
            self.percentage(reporting["target"], seats["target"]),
            100,
        )
        self.log_calculation(
            "PERCENTAGE OF SEATS REPORTING TIME SAVINGS",
            {"monthlyReportingCount": reporting["target"], "seatsCount": seats["target"]},
            "Calculate (monthlyReporting / seats) * 100, set current = percentage, max = 100",
            result,
        )
        return result

    def calculate_percent_of_seats_adopted(self) -> dict[str, float]:
        seats = self.calculate_seats()
        adopted = self.calculate_adopted_devs()
        result = _target(
            self.percentage(adopted["current"], seats["current"]),
            self.percentage(adopted["target"], seats["target"]),
            100,
        )
        self.log_calculation(
            "PERCENTAGE OF SEATS ADOPTED",
            {"adoptedDevsCount": adopted["target"], "seatsCount": seats["target"]},
            "Calculate (adoptedDevs / seats) * 100, set current = percentage, max = 100",
            result,
        )
        return result

    def calculate_percent_of_max_adopted(self) -> dict[str, float]:
        developer_count = self._setting("developerCount")
        adopted = self.calculate_adopted_devs()
        result = _target(
            self.percentage(adopted["current"], developer_count),
            self.percentage(adopted["target"], developer_count),
            100,
        )
        self.log_calculation(
            "PERCENTAGE OF MAX ADOPTED",
            {"adoptedDevsCount": adopted["target"], "developerCount": developer_count},
            "Calculate (adoptedDevs / developerCount) * 100, set current = currentPercentage, max = 100",
            result,
        )
        return result

    # =========================================================================
    # USER
    # =========================================================================

    def calculate_daily_suggestions(self) -> dict[str, float]:
        adopted = self.calculate_adopted_devs()["current"]
        recent = _by_date_desc(self._data.metrics_weekly)[:RECENT_METRIC_DAYS]
        total = sum(
            _section_total(m, "copilot_ide_code_completions", "total_code_suggestions") for m in recent
        )
        avg_suggestions = total / (len(recent) or 1)
        per_dev = avg_suggestions / adopted if adopted > 0 else 0
        result = _target(per_dev, per_dev * 2, 150)
        self.log_calculation(
            "DAILY SUGGESTIONS PER DEVELOPER",
            {
                "totalSuggestions": avg_suggestions,
                "adoptedDevsCount": adopted,
                "metricsRowCount": len(self._data.metrics_weekly),
                "timestamp": recent[0].get("date") if recent else "unknown",
            },
            "Calculate totalSuggestions / adoptedDevs, set current = suggestionsPerDev, max = 150",
            result,
        )
        return result

    def calculate_daily_chat_turns(self) -> dict[str, float]:
        recent = _by_date_desc(self._data.metrics_daily)[:RECENT_METRIC_DAYS]
        count = len(recent) or 1
        avg_chats = sum(_section_total(m, "copilot_ide_chat", "total_chats") for m in recent) / count
        avg_active = max(sum(m.get("total_active_users") or 0 for m in recent) / count, 1)
        per_dev = avg_chats / avg_active
        result = _target(per_dev, per_dev * 1.5, 50)
        self.log_calculation(
            "DAILY CHAT TURNS PER DEVELOPER",
            {
                "totalChats": avg_chats,
                "activeUsersCount": avg_active,
                "metricsRowCount": len(recent),
                "timestamp": recent[0].get("date") if recent else "unknown",
            },
            "Calculate average totalChats / activeUsers from 5 most recent days, set target = current * 1.5",
            result,
        )
        return result

    def calculate_daily_acceptances(self) -> dict[str, float]:
        suggestions = self.calculate_daily_suggestions()["current"]
        per_dev = suggestions * ACCEPTANCE_RATE
        result = _target(per_dev, per_dev * 1.2, 100)
        self.log_calculation(
            "DAILY ACCEPTANCES PER DEVELOPER",
            {"dailySuggestions": suggestions, "assumedAcceptanceRate": ACCEPTANCE_RATE},
            "Calculate dailySuggestions * assumedAcceptanceRate",
            result,
        )
        return result

    def calculate_daily_dotcom_chats(self) -> dict[str, float]:
        adopted = self.calculate_adopted_devs()["current"]
        recent = _by_date_desc(self._data.metrics_weekly)[:RECENT_METRIC_DAYS]
        dotcom_chats = sum(_section_total(m, "copilot_dotcom_chat", "total_chats") for m in recent)
        has_direct_data = dotcom_chats > 0

        if has_direct_data:
            per_dev = dotcom_chats / len(recent) / adopted if adopted > 0 else 0
            formula = "Average dotcom_chats / adoptedDevs from 5 most recent metrics days"
        else:
            per_dev = self.calculate_daily_chat_turns()["current"] * DOTCOM_CHAT_RATIO
            formula = "Calculate dailyChatTurns * assumedDotComRatio (using fallback ratio)"

        result = _target(per_dev, per_dev * 1.5, 100)
        self.log_calculation(
            "DAILY DOTCOM CHATS PER DEVELOPER",
            {
                "dotComChatsTotal": dotcom_chats,
                "hasDirectData": has_direct_data,
                "assumedDotComRatio": None if has_direct_data else DOTCOM_CHAT_RATIO,
                "adoptedDevsCount": adopted,
                "metricsRowCount": len(recent),
            },
            formula,
            result,
        )
        return result

    def calculate_weekly_pr_summaries(self) -> dict[str, float]:
        adopted = self.calculate_adopted_devs()["current"]
        recent = _by_date_desc(self._data.metrics_weekly)[:RECENT_METRIC_DAYS]
        total = sum(
            _section_total(m, "copilot_dotcom_pull_requests", "total_pr_summaries_created") for m in recent
        )
        avg_summaries = total / (len(recent) or 1)
        per_dev = avg_summaries / adopted if adopted > 0 else 0
        result = _target(per_dev, per_dev * 2, 5)
        self.log_calculation(
            "WEEKLY PR SUMMARIES PER DEVELOPER",
            {
                "totalPRSummaries": avg_summaries,
                "adoptedDevsCount": adopted,
                "metricsRowCount": len(recent),
            },
            "Calculate average totalPRSummaries / adoptedDevs, set target = current * 2",
            result,
        )
        return result

    def calculate_weekly_time_saved_hrs(self) -> dict[str, float]:
        surveys = self._data.surveys_weekly
        users = self.distinct_users(surveys)
        if not surveys or not users:
            return _target(0, 0, 10)

        user_percentages = []
        for user_id in users:
            user_surveys = [s for s in surveys if s.get("userId") == user_id]
            total = sum(_number(s.get("percentTimeSaved")) for s in user_surveys)
            user_percentages.append(total / len(user_surveys))
        avg_percent = sum(user_percentages) / len(user_percentages)

        hours_per_year = self._setting("hoursPerYear", 2000)
        percent_coding = self._setting("percentCoding", 50)
        weekly_dev_hours = hours_per_year / WORKING_WEEKS_PER_YEAR * (percent_coding / 100)
        weekly_saved = weekly_dev_hours * (avg_percent / 100)
        max_saved = weekly_dev_hours * (self._setting("percentTimeSaved", 20) / 100)

        result = _target(weekly_saved, min(weekly_saved * 1.5, max_saved * 0.8), max_saved or 10)
        self.log_calculation(
            "WEEKLY TIME SAVED HRS PER DEVELOPER",
            {
                "distinctUsersCount": len(users),
                "surveysCount": len(surveys),
                "avgPercentTimeSaved": avg_percent,
                "userPercentages": user_percentages,
                "hoursPerYear": hours_per_year,
                "percentCoding": percent_coding,
                "weeklyDevHours": weekly_dev_hours,
            },
            "Calculate average time saved percentage per user, then weeklyDevHours * (avgPercentTimeSaved / 100)",
            result,
        )
        return result

    # =========================================================================
    # IMPACT
    # =========================================================================

    def calculate_monthly_time_savings_hrs(self) -> dict[str, float]:
        adopted = self.calculate_adopted_devs()["current"]
        weekly_saved = self.calculate_weekly_time_saved_hrs()["current"]
        seats = self.calculate_seats()["current"]
        result = _target(adopted * weekly_saved * 4, 0, 80 * seats)
        self.log_calculation(
            "MONTHLY TIME SAVINGS HRS",
            {"adoptedDevsCount": adopted, "weeklyTimeSavedHrs": weekly_saved, "seatsCount": seats},
            "Calculate adoptedDevs * weeklyTimeSavedHrs * 4, set current = monthlyTimeSavings, max = 80 * seats",
            result,
        )
        return result

    def calculate_annual_time_savings_as_dollars(self) -> dict[str, float]:
        adopted = self.calculate_adopted_devs()["current"]
        weekly_saved = self.calculate_weekly_time_saved_hrs()["current"]
        seats = self.calculate_seats()["current"]

        hours_per_year = self._setting("hoursPerYear", 2000)
        weeks_in_year = round(hours_per_year / 40) or 50
        dev_cost = self._setting("devCostPerYear")
        hourly_rate = dev_cost / hours_per_year if dev_cost > 0 and hours_per_year else 50

        annual = weekly_saved * weeks_in_year * hourly_rate * adopted
        result = _target(annual or 0, 0, 12 * seats * weeks_in_year * hourly_rate or 10000)
        self.log_calculation(
            "ANNUAL TIME SAVINGS AS DOLLARS",
            {
                "adoptedDevsCount": adopted,
                "weeklyTimeSavedHrs": weekly_saved,
                "weeksInYear": weeks_in_year,
                "hourlyRate": hourly_rate,
                "seatsCount": seats,
            },
            "Calculate weeklyTimeSavedHrs * weeksInYear * hourlyRate * adoptedDevs, set current = annualSavings",
            result,
        )
        return result

    def calculate_productivity_or_throughput_boost_percent(self) -> dict[str, float]:
        weekly_saved = self.calculate_weekly_time_saved_hrs()["current"]
        hours_per_week = self._setting("hoursPerYear", 2000) / WORKING_WEEKS_PER_YEAR or 40
        boost = (hours_per_week + weekly_saved) / hours_per_week
        result = _target(boost, 10, 25)
        self.log_calculation(
            "PRODUCTIVITY OR THROUGHPUT BOOST PERCENT",
            {"weeklyTimeSavedHrs": weekly_saved, "hoursPerWeek": hours_per_week, "productivityBoost": boost},
            "Calculate (hoursPerWeek + weeklyTimeSavedHrs) / hoursPerWeek, set current = productivityBoost, max = 25",
            result,
        )
        return result

    # =========================================================================
    # ALL
    # =========================================================================

    def calculate_all(self) -> dict[str, dict[str, dict[str, float]]]:
        """Every target, with null values replaced by 0."""
        if self.data is None:
            raise CalculationDataMissingError(
                "Data must be fetched before calculations can be performed"
            )
        targets = {
            "org": {
                "seats": self.calculate_seats(),
                "adoptedDevs": self.calculate_adopted_devs(),
                "monthlyDevsReportingTimeSavings": self.calculate_monthly_devs_reporting_time_savings(),
                "percentOfSeatsReportingTimeSavings": self.calculate_percent_of_seats_reporting_time_savings(),
                "percentOfSeatsAdopted": self.calculate_percent_of_seats_adopted(),
                "percentOfMaxAdopted": self.calculate_percent_of_max_adopted(),
            },
            "user": {
                "dailySuggestions": self.calculate_daily_suggestions(),
                "dailyAcceptances": self.calculate_daily_acceptances(),
                "dailyChatTurns": self.calculate_daily_chat_turns(),
                "dailyDotComChats": self.calculate_daily_dotcom_chats(),
                "weeklyPRSummaries": self.calculate_weekly_pr_summaries(),
                "weeklyTimeSavedHrs": self.calculate_weekly_time_saved_hrs(),
            },
            "impact": {
                "monthlyTimeSavingsHrs": self.calculate_monthly_time_savings_hrs(),
                "annualTimeSavingsAsDollars": self.calculate_annual_time_savings_as_dollars(),
                "productivityOrThroughputBoostPercent": self.calculate_productivity_or_throughput_boost_percent(),
            },
        }
        return {
            group: {
                name: {key: 0 if value is None else value for key, value in target.items()}
                for name, target in values.items()
            }
            for group, values in targets.items()
        }


# =============================================================================
# DATA LOADING
# =============================================================================


async def load_calculation_data(
    session: AsyncSession,
    db: AsyncDatabase,
    org: str | None = None,
    reference_date: datetime | None = None,
) -> CalculationData:
    """Load settings, adoptions, metrics (1 and 7 days) and surveys (7 and 30 days)."""
    now = reference_date or datetime.now(timezone.utc)
    one_day_ago = now - timedelta(days=1)
    seven_days_ago = now - timedelta(days=7)
    thirty_days_ago = now - timedelta(days=30)

    metrics = MetricsService(db, session)
    surveys = SurveyService(db)
    return CalculationData(
        settings=await SettingsService(session).get_all_settings(),
        adoptions=await AdoptionService(db).get_all_adoptions(org=org),
        metrics_daily=await metrics.get_metrics(org=org, since=one_day_ago, until=now),
        metrics_weekly=await metrics.get_metrics(org=org, since=seven_days_ago, until=now),
        surveys_weekly=await surveys.get_all_surveys(org=org, since=seven_days_ago, until=now),
        surveys_monthly=await surveys.get_all_surveys(org=org, since=thirty_days_ago, until=now),
    )


async def fetch_and_calculate(
    session: AsyncSession,
    db: AsyncDatabase,
    org: str | None = None,
    enable_logging: bool = False,
) -> dict[str, Any]:
    """Load the data and calculate every target; logs are included when enabled."""
    logger.info(f"Calculating targets for org={org or 'all'} (logging {'enabled' if enable_logging else 'disabled'})")
    calculator = TargetCalculator(enable_logging=enable_logging)
    calculator.load(await load_calculation_data(session, db, org))
    targets = calculator.calculate_all()
    if enable_logging:
        return {"targets": targets, "logs": calculator.logs}
    return {"targets": targets}
