"""
Spending Pattern Detection

Statistics over the user's recent expense history. Each detector is a
plain function over a list of expenses; `PatternDetector` loads the
history, runs all detectors and upserts the results.

DESIGN DECISION: Patterns are keyed by (user, type, key). Running the
detector again replaces a pattern instead of piling up duplicates.
"""

import calendar
import math
import re
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

import structlog

from pocket.models import (
    AuditEventBuilder,
    Expense,
    PatternDetectionResult,
    PatternType,
    SpendingPattern,
    to_cents,
)
from pocket.services.storage.interface import StorageError

logger = structlog.get_logger()

# Indexed by date.weekday(): Monday is 0
DAY_NAMES = ["segunda", "terca", "quarta", "quinta", "sexta", "sabado", "domingo"]
WEEKEND_DAYS = (5, 6)

PERIOD_NAMES = {
    "morning": "manhã",
    "afternoon": "tarde",
    "evening": "noite",
    "night": "madrugada",
}

ZERO = Decimal("0")


def _money(value: Decimal) -> float:
    return float(to_cents(value))


def _percent(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _confidence(value: float) -> float:
    return round(value, 2)


def months_before(today: date, months: int) -> date:
    """Same day `months` months earlier, clamped to the end of shorter months."""
    month_index = today.year * 12 + (today.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(today.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def week_of_month_key(d: date) -> str:
    """Bucket key for a date: year, month and week of the month (days 1-7 are week 1)."""
    return f"{d.year}-{d.month:02d}-W{math.ceil(d.day / 7)}"


# =============================================================================
# DETECTORS
# =============================================================================

def detect_category_averages(user_id: str, expenses: Sequence[Expense]) -> list[SpendingPattern]:
    """Average spend per transaction and per week for categories with 3+ expenses."""
    totals: dict = defaultdict(lambda: ZERO)
    counts: dict = defaultdict(int)
    weeks: dict = defaultdict(set)

    for e in expenses:
        totals[e.category] += e.amount
        counts[e.category] += 1
        weeks[e.category].add(week_of_month_key(e.expense_date))

    patterns = []
    for category, count in counts.items():
        if count < 3:
            continue
        total = totals[category]
        week_count = len(weeks[category])
        patterns.append(SpendingPattern(
            user_id=user_id,
            pattern_type=PatternType.SPENDING_HABIT,
            pattern_key=f"avg_spending_{category.value}",
            category=category,
            pattern_value={
                "average_per_transaction": _money(total / count),
                "average_per_week": _money(total / week_count if week_count else total),
                "total_transactions": count,
                "total_amount": _money(total),
            },
            confidence=_confidence(min(0.9, 0.5 + count * 0.05)),
            occurrences=count,
        ))
    return patterns


def detect_favorite_places(user_id: str, expenses: Sequence[Expense]) -> list[SpendingPattern]:
    """Top 5 establishments visited at least 3 times."""
    places: dict[str, dict] = {}

    for e in expenses:
        name = e.establishment_name.lower().strip()
        if not name:
            continue
        place = places.setdefault(name, {"count": 0, "total": ZERO, "category": e.category})
        place["count"] += 1
        place["total"] += e.amount

    ranked = sorted(
        ((name, data) for name, data in places.items() if data["count"] >= 3),
        key=lambda item: -item[1]["count"],
    )[:5]

    patterns = []
    for rank, (name, data) in enumerate(ranked, start=1):
        slug = re.sub(r"\s+", "_", name)[:20]
        patterns.append(SpendingPattern(
            user_id=user_id,
            pattern_type=PatternType.FAVORITE_PLACE,
            pattern_key=f"favorite_{rank}_{slug}",
            category=data["category"],
            pattern_value={
                "establishment_name": name,
                "visit_count": data["count"],
                "total_spent": _money(data["total"]),
                "average_ticket": _money(data["total"] / data["count"]),
                "rank": rank,
            },
            confidence=_confidence(min(0.95, 0.6 + data["count"] * 0.05)),
            occurrences=data["count"],
        ))
    return patterns


def detect_weekday_patterns(user_id: str, expenses: Sequence[Expense]) -> list[SpendingPattern]:
    """
    Days of the week with spending well above average (count or amount
    over 1.3x the daily average), plus the weekend spender pattern when
    the weekend daily average is over 1.5x the weekday one.
    """
    counts = [0] * 7
    totals = [ZERO] * 7
    for e in expenses:
        day = e.expense_date.weekday()
        counts[day] += 1
        totals[day] += e.amount

    total_amount = sum(totals, ZERO)
    avg_count_per_day = Decimal(sum(counts)) / 7
    avg_amount_per_day = total_amount / 7

    patterns = []
    for day in range(7):
        count, total = counts[day], totals[day]
        if not (count > avg_count_per_day * Decimal("1.3") or total > avg_amount_per_day * Decimal("1.3")):
            continue
        above_average_by = (
            _percent((total / avg_amount_per_day - 1) * 100) if avg_amount_per_day else 0
        )
        patterns.append(SpendingPattern(
            user_id=user_id,
            pattern_type=PatternType.TIME_PATTERN,
            pattern_key=f"high_spending_{DAY_NAMES[day]}",
            pattern_value={
                "day_of_week": day,
                "day_name": DAY_NAMES[day],
                "transaction_count": count,
                "total_amount": _money(total),
                "average_amount": _money(total / max(count, 1)),
                "above_average_by": above_average_by,
            },
            confidence=0.7,
            occurrences=count,
        ))

    weekend_total = sum((totals[d] for d in WEEKEND_DAYS), ZERO)
    weekend_avg = weekend_total / 2
    weekday_avg = (total_amount - weekend_total) / 5

    if weekend_avg > weekday_avg * Decimal("1.5"):
        patterns.append(SpendingPattern(
            user_id=user_id,
            pattern_type=PatternType.TIME_PATTERN,
            pattern_key="weekend_spender",
            pattern_value={
                "weekend_average": _money(weekend_avg),
                "weekday_average": _money(weekday_avg),
                "weekend_increase_percent": (
                    _percent((weekend_avg / weekday_avg - 1) * 100) if weekday_avg else None
                ),
            },
            confidence=0.8,
            occurrences=sum(counts[d] for d in WEEKEND_DAYS),
        ))

    return patterns


def period_of_day(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def detect_time_of_day_patterns(
    user_id: str,
    expenses: Sequence[Expense],
    timezone: str = "America/Sao_Paulo",
) -> list[SpendingPattern]:
    """Dominant period of the day, by when expenses were recorded, once it has 5+ expenses."""
    tz = ZoneInfo(timezone)
    counts = {period: 0 for period in PERIOD_NAMES}
    totals = {period: ZERO for period in PERIOD_NAMES}

    for e in expenses:
        period = period_of_day(e.created_at.astimezone(tz).hour)
        counts[period] += 1
        totals[period] += e.amount

    # Stable sort: ties keep the morning -> night order
    period, count = sorted(counts.items(), key=lambda item: -item[1])[0]
    if count < 5:
        return []

    return [SpendingPattern(
        user_id=user_id,
        pattern_type=PatternType.TIME_PATTERN,
        pattern_key=f"peak_spending_{period}",
        pattern_value={
            "period": period,
            "period_name": PERIOD_NAMES[period],
            "transaction_count": count,
            "total_amount": _money(totals[period]),
            "percentage_of_total": _percent(Decimal(count) / sum(counts.values()) * 100),
        },
        confidence=0.7,
        occurrences=count,
    )]


def detect_payment_cycle(user_id: str, expenses: Sequence[Expense]) -> list[SpendingPattern]:
    """First-week spender: more than 35% of spending in days 1-7 of the month."""
    counts = {week: 0 for week in range(1, 5)}
    totals = {week: ZERO for week in range(1, 5)}

    for e in expenses:
        week = min(4, math.ceil(e.expense_date.day / 7))
        counts[week] += 1
        totals[week] += e.amount

    total_amount = sum(totals.values(), ZERO)
    if total_amount <= 0:
        return []

    first_week_percent = totals[1] / total_amount * 100
    if first_week_percent <= 35:
        return []

    value = {"first_week_percent": _percent(first_week_percent)}
    for week in range(1, 5):
        value[f"week_{week}_total"] = _money(totals[week])

    return [SpendingPattern(
        user_id=user_id,
        pattern_type=PatternType.PAYMENT_CYCLE,
        pattern_key="first_week_spender",
        pattern_value=value,
        confidence=0.75,
        occurrences=counts[1],
    )]


def detect_category_trends(user_id: str, expenses: Sequence[Expense]) -> list[SpendingPattern]:
    """
    Categories whose monthly spend changed by more than 20% between the
    first and second half of the analyzed months.
    """
    monthly: dict[str, dict] = defaultdict(lambda: defaultdict(lambda: ZERO))
    for e in expenses:
        monthly[e.expense_date.strftime("%Y-%m")][e.category] += e.amount

    months = sorted(monthly)
    if len(months) < 2:
        return []

    categories = []
    for month in months:
        for category in monthly[month]:
            if category not in categories:
                categories.append(category)

    split_at = math.ceil(len(months) / 2)
    patterns = []
    for category in categories:
        values = [monthly[m].get(category, ZERO) for m in months]
        first_half, second_half = values[:split_at], values[split_at:]
        first_avg = sum(first_half, ZERO) / len(first_half)
        second_avg = sum(second_half, ZERO) / len(second_half)

        if first_avg <= 0:
            continue

        change_percent = (second_avg - first_avg) / first_avg * 100
        if abs(change_percent) <= 20:
            continue

        patterns.append(SpendingPattern(
            user_id=user_id,
            pattern_type=PatternType.CATEGORY_TREND,
            pattern_key=f"trend_{category.value}",
            category=category,
            pattern_value={
                "trend": "increasing" if change_percent > 0 else "decreasing",
                "change_percent": _percent(change_percent),
                "first_period_avg": _money(first_avg),
                "second_period_avg": _money(second_avg),
                "months_analyzed": len(months),
            },
            confidence=_confidence(min(0.85, 0.5 + len(months) * 0.1)),
            occurrences=len(months),
        ))
    return patterns


def detect_anomaly_thresholds(user_id: str, expenses: Sequence[Expense]) -> list[SpendingPattern]:
    """Per-category anomaly threshold: mean + 2 standard deviations (population)."""
    amounts_by_category: dict = defaultdict(list)
    for e in expenses:
        amounts_by_category[e.category].append(e.amount)

    patterns = []
    for category, amounts in amounts_by_category.items():
        n = len(amounts)
        if n < 5:
            continue
        mean = sum(amounts, ZERO) / n
        variance = sum(((a - mean) ** 2 for a in amounts), ZERO) / n
        std_dev = variance.sqrt()

        patterns.append(SpendingPattern(
            user_id=user_id,
            pattern_type=PatternType.ANOMALY_THRESHOLD,
            pattern_key=f"anomaly_{category.value}",
            category=category,
            pattern_value={
                "mean": _money(mean),
                "std_dev": _money(std_dev),
                "anomaly_threshold": _money(mean + 2 * std_dev),
                "sample_size": n,
                "min": _money(min(amounts)),
                "max": _money(max(amounts)),
            },
            confidence=_confidence(min(0.9, 0.5 + n * 0.02)),
            occurrences=n,
        ))
    return patterns


def detect_patterns(
    user_id: str,
    expenses: Sequence[Expense],
    timezone: str = "America/Sao_Paulo",
) -> list[SpendingPattern]:
    """Run every detector over the given expenses."""
    patterns: list[SpendingPattern] = []
    patterns.extend(detect_category_averages(user_id, expenses))
    patterns.extend(detect_favorite_places(user_id, expenses))
    patterns.extend(detect_weekday_patterns(user_id, expenses))
    patterns.extend(detect_time_of_day_patterns(user_id, expenses, timezone))
    patterns.extend(detect_payment_cycle(user_id, expenses))
    patterns.extend(detect_category_trends(user_id, expenses))
    patterns.extend(detect_anomaly_thresholds(user_id, expenses))
    return patterns


# =============================================================================
# RUNNER
# =============================================================================

class PatternDetector:
    """
    Loads a user's recent expenses, detects patterns and stores them.

    Usage:
        detector = PatternDetector(expense_storage, insights_storage)
        result = await detector.run(user_id)
    """

    def __init__(
        self,
        expense_storage,
        insights_storage,
        audit_logger=None,
        lookback_months: int = 3,
        min_expenses: int = 5,
        timezone: str = "America/Sao_Paulo",
    ):
        self.expense_storage = expense_storage
        self.insights_storage = insights_storage
        self.audit_logger = audit_logger
        self.lookback_months = lookback_months
        self.min_expenses = min_expenses
        self.timezone = timezone

    async def run(self, user_id: str, today: Optional[date] = None) -> PatternDetectionResult:
        today = today or date.today()
        period_start = months_before(today, self.lookback_months)

        expenses = await self.expense_storage.list_expenses(
            user_id=user_id,
            date_from=period_start,
            date_to=today,
        )
        logger.info(
            "pattern_detection_started",
            user_id=user_id,
            expenses=len(expenses),
            period_start=period_start.isoformat(),
        )

        if len(expenses) < self.min_expenses:
            return PatternDetectionResult(
                user_id=user_id,
                expenses_analyzed=len(expenses),
                message="Insufficient data for pattern detection",
            )

        patterns = detect_patterns(user_id, expenses, self.timezone)

        saved = []
        for pattern in patterns:
            pattern.analysis_period_start = period_start
            pattern.analysis_period_end = today
            try:
                saved.append(await self.insights_storage.upsert_pattern(pattern))
            except StorageError as e:
                # Keep going with the remaining patterns
                logger.error(
                    "pattern_save_failed",
                    pattern_key=pattern.pattern_key,
                    error=str(e),
                )

        if self.audit_logger:
            await self.audit_logger.log(
                AuditEventBuilder.patterns_detected(user_id, len(expenses), len(saved))
            )

        logger.info("pattern_detection_completed", user_id=user_id, patterns=len(saved))
        return PatternDetectionResult(
            user_id=user_id,
            patterns=saved,
            expenses_analyzed=len(expenses),
        )
