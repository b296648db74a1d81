"""
Dynamic Analytics Aggregator

Computes per-field and per-category statistics for any form template from
a student's submitted entries. Nothing about the template is hard-coded:
every field with analytics enabled gets the statistic its analytics type
names.

Policies:
- Entries are processed oldest first. Repeatable-section instances are
  flattened into the field's value list.
- A field absent from an entry contributes nothing (never a default).
- Zero entries -> every enabled field is present with value None (N/A).
- Trend compares the statistic over the most recent `window` entries with
  the `window` entries before them. A relative change below the threshold
  is stable; otherwise the sign decides, inverted when lower is better.
- Malformed entries, sections and repeat instances are skipped and counted
  as warnings. Aggregation never raises because of entry content.

Results are derived on every read and never written back as truth.
"""
import logging
import statistics
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from services.form_schema import (
    AnalyticsType,
    FieldType,
    FormField,
    FormSection,
    FormTemplate,
    as_number,
    field_value,
    is_value_present,
    sort_template,
)

logger = logging.getLogger(__name__)

DEFAULT_TREND_WINDOW = 5
DEFAULT_TREND_THRESHOLD_PERCENT = 5.0

POSITIVE_STRINGS = {"true", "yes", "y", "1"}

# Statistics that are a single number and can feed a category rollup
SCALAR_ANALYTICS = {
    AnalyticsType.AVERAGE,
    AnalyticsType.SUM,
    AnalyticsType.PERCENTAGE,
    AnalyticsType.CONSISTENCY,
    AnalyticsType.COUNT,
    AnalyticsType.TREND,
}

# Already on a 0-100 scale
PERCENT_ANALYTICS = {AnalyticsType.PERCENTAGE, AnalyticsType.CONSISTENCY}


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


def _as_utc(value: Any) -> Optional[datetime]:
    """Normalize a stored timestamp (datetime, ISO string or epoch seconds)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


@dataclass
class FormEntry:
    """One submitted form response."""
    id: str
    student_id: str
    form_template_id: str
    submitted_at: datetime
    responses: Dict[str, Any]
    form_template_version: int = 1
    is_complete: bool = True
    completion_percentage: int = 100
    submitted_by: Optional[str] = None
    submitter_role: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_document(cls, document: Any, entry_id: Optional[str] = None) -> Optional["FormEntry"]:
        """Build an entry from a stored document; None when it cannot be read."""
        if not isinstance(document, dict):
            return None
        submitted_at = _as_utc(document.get("submittedAt"))
        responses = document.get("responses")
        student_id = document.get("studentId")
        template_id = document.get("formTemplateId")
        if submitted_at is None or not isinstance(responses, dict) or not student_id or not template_id:
            return None
        try:
            version = int(document.get("formTemplateVersion") or 1)
            completion = int(document.get("completionPercentage") or 0)
        except (TypeError, ValueError):
            return None
        return cls(
            id=str(entry_id or document.get("id") or ""),
            student_id=str(student_id),
            form_template_id=str(template_id),
            submitted_at=submitted_at,
            responses=responses,
            form_template_version=version,
            is_complete=bool(document.get("isComplete", False)),
            completion_percentage=completion,
            submitted_by=document.get("submittedBy"),
            submitter_role=document.get("submitterRole"),
            session_id=document.get("sessionId"),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "studentId": self.student_id,
            "formTemplateId": self.form_template_id,
            "formTemplateVersion": self.form_template_version,
            "submittedAt": self.submitted_at.isoformat(),
            "responses": self.responses,
            "isComplete": self.is_complete,
            "completionPercentage": self.completion_percentage,
            "submittedBy": self.submitted_by,
            "submitterRole": self.submitter_role,
            "sessionId": self.session_id,
        }


@dataclass
class FieldAnalyticsResult:
    field_id: str
    field_label: str
    field_type: FieldType
    analytics_type: AnalyticsType
    category: Optional[str]
    data_points: int = 0
    value: Any = None  # None renders as N/A
    score: Optional[float] = None  # 0-100 when the statistic can be normalized
    distribution: Optional[Dict[str, int]] = None
    distribution_percentages: Optional[Dict[str, float]] = None
    most_common: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    median: Optional[float] = None
    trend: Optional[TrendDirection] = None
    trend_percentage: Optional[float] = None
    recent_value: Optional[float] = None
    prior_value: Optional[float] = None
    target_value: Optional[float] = None
    target_progress: Optional[float] = None
    is_on_target: Optional[bool] = None


@dataclass
class CategoryAnalyticsResult:
    category: str
    field_ids: List[str] = field(default_factory=list)
    field_count: int = 0
    value: Optional[float] = None
    score: Optional[float] = None
    trend: TrendDirection = TrendDirection.STABLE


@dataclass
class AggregationResult:
    field_analytics: Dict[str, FieldAnalyticsResult]
    category_analytics: Dict[str, CategoryAnalyticsResult]
    total_entries: int
    warnings: int = 0
    warning_messages: List[str] = field(default_factory=list)

    @property
    def partial_failure(self) -> bool:
        return self.warnings > 0


# ==================== VALUE HELPERS ====================

def _is_positive(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in POSITIVE_STRINGS
    return False


def _option_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _comparable(value: Any):
    """Hashable form used to find the mode."""
    if isinstance(value, (list, tuple)):
        return tuple(sorted(_option_key(v) for v in value))
    if isinstance(value, bool):
        return _option_key(value)
    number = as_number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        return value.strip()
    return repr(value)


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


# ==================== STATISTICS ====================

def _numbers(values: List[Any]) -> List[float]:
    return [n for n in (as_number(v) for v in values) if n is not None]


def _statistic(analytics_type: AnalyticsType, values: List[Any]) -> Tuple[Optional[float], int]:
    """Scalar statistic over values plus the number of values that contributed."""
    if analytics_type in (AnalyticsType.AVERAGE, AnalyticsType.TREND):
        numbers = _numbers(values)
        return _mean(numbers), len(numbers)
    if analytics_type is AnalyticsType.SUM:
        numbers = _numbers(values)
        return (sum(numbers) if numbers else None), len(numbers)
    if analytics_type is AnalyticsType.PERCENTAGE:
        if not values:
            return None, 0
        positives = sum(1 for v in values if _is_positive(v))
        return positives / len(values) * 100, len(values)
    if analytics_type is AnalyticsType.CONSISTENCY:
        if not values:
            return None, 0
        # most_common keeps first-seen order on ties
        _, mode_count = Counter(_comparable(v) for v in values).most_common(1)[0]
        return mode_count / len(values) * 100, len(values)
    if analytics_type is AnalyticsType.COUNT:
        return (float(len(values)) if values else None), len(values)
    return None, 0


def _distribution(f: FormField, values: List[Any]) -> Tuple[Dict[str, int], int]:
    counts: Dict[str, int] = {}
    if f.options:
        counts = {option: 0 for option in f.options}
    total = 0
    for value in values:
        items = value if isinstance(value, (list, tuple)) else [value]
        for item in items:
            if item is None or (isinstance(item, str) and not item.strip()):
                continue
            key = _option_key(item)
            counts[key] = counts.get(key, 0) + 1
            total += 1
    return counts, total


def classify_trend(
    recent: float,
    prior: float,
    higher_is_better: bool = True,
    threshold_percent: float = DEFAULT_TREND_THRESHOLD_PERCENT,
) -> Tuple[TrendDirection, Optional[float]]:
    """Direction and signed relative change (None when prior is zero)."""
    diff = recent - prior
    if prior == 0:
        if diff == 0:
            return TrendDirection.STABLE, 0.0
        change = None
        rising = diff > 0
    else:
        change = diff / abs(prior) * 100
        if abs(change) < threshold_percent:
            return TrendDirection.STABLE, round(change, 2)
        rising = change > 0
    improving = rising if higher_is_better else not rising
    direction = TrendDirection.IMPROVING if improving else TrendDirection.DECLINING
    return direction, round(change, 2) if change is not None else None


def majority_trend(trends: Iterable[Optional[TrendDirection]]) -> TrendDirection:
    """Most frequent direction; ties and empty input are stable."""
    counts = Counter(t for t in trends if t is not None)
    if not counts:
        return TrendDirection.STABLE
    ranked = counts.most_common()
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return TrendDirection.STABLE
    return ranked[0][0]


def _field_score(f: FormField, analytics_type: AnalyticsType, value: Optional[float]) -> Optional[float]:
    """Normalize a field statistic to 0-100 where its scale is known."""
    if value is None:
        return None
    if analytics_type in PERCENT_ANALYTICS:
        return value
    if analytics_type in (AnalyticsType.AVERAGE, AnalyticsType.TREND):
        low = f.validation.min if f.validation.min is not None else 0
        high = f.validation.max
        if high is None or high <= low:
            return None
        score = (value - low) / (high - low) * 100
        if not f.analytics.higher_is_better:
            score = 100 - score
        return max(0.0, min(100.0, score))
    return None


# ==================== ENTRY EXTRACTION ====================

class _EntryReader:
    """Reads section instances out of entries, counting anything unreadable."""

    def __init__(self):
        self.warnings = 0
        self.messages: List[str] = []

    def warn(self, message: str) -> None:
        self.warnings += 1
        self.messages.append(message)
        logger.warning(f"Analytics skipped malformed data: {message}")

    def coerce_entry(self, raw: Any) -> Optional[FormEntry]:
        if isinstance(raw, FormEntry):
            if isinstance(raw.responses, dict) and _as_utc(raw.submitted_at) is not None:
                return raw
            self.warn(f"entry {raw.id or '?'} has unreadable responses or timestamp")
            return None
        entry = FormEntry.from_document(raw)
        if entry is None:
            self.warn("unreadable entry document")
        return entry

    def instances(self, entry: FormEntry, section: FormSection) -> List[dict]:
        section_data = entry.responses.get(section.id)
        if section_data is None:
            return []
        if section.is_repeatable:
            if not isinstance(section_data, list):
                self.warn(f"entry {entry.id}: section {section.id} should be a list of instances")
                return []
            records = []
            for idx, instance in enumerate(section_data):
                if isinstance(instance, dict):
                    records.append(instance)
                else:
                    self.warn(f"entry {entry.id}: section {section.id} instance {idx} is not a record")
            return records
        if not isinstance(section_data, dict):
            self.warn(f"entry {entry.id}: section {section.id} is not a record")
            return []
        return [section_data]


def _sort_key(entry: FormEntry) -> datetime:
    return _as_utc(entry.submitted_at)


# ==================== AGGREGATION ====================

def _field_result(
    f: FormField,
    per_entry: List[List[Any]],
    trend_window: int,
    trend_threshold_percent: float,
) -> FieldAnalyticsResult:
    analytics_type = f.analytics.type
    result = FieldAnalyticsResult(
        field_id=f.id,
        field_label=f.analytics.display_name or f.label,
        field_type=f.type,
        analytics_type=analytics_type,
        category=f.analytics.category,
        target_value=f.analytics.target_value,
    )
    values = [v for entry_values in per_entry for v in entry_values]

    if analytics_type is AnalyticsType.DISTRIBUTION:
        counts, total = _distribution(f, values)
        result.data_points = total
        if total:
            result.distribution = counts
            result.distribution_percentages = {
                key: round(count / total * 100, 1) for key, count in counts.items()
            }
            result.most_common = max(counts, key=counts.get)
            result.value = result.most_common
        return result

    if analytics_type is AnalyticsType.TREND:
        value, data_points = _statistic(analytics_type, [v for ev in per_entry[-trend_window:] for v in ev])
    else:
        value, data_points = _statistic(analytics_type, values)
    result.value = value
    result.data_points = data_points
    result.score = _field_score(f, analytics_type, value)

    if analytics_type in (AnalyticsType.AVERAGE, AnalyticsType.SUM, AnalyticsType.TREND):
        numbers = _numbers(values)
        if numbers:
            result.min = min(numbers)
            result.max = max(numbers)
            result.median = statistics.median(numbers)

    window = min(trend_window, len(per_entry) // 2)
    if window >= 1:
        recent_values = [v for ev in per_entry[-window:] for v in ev]
        prior_values = [v for ev in per_entry[-2 * window:-window] for v in ev]
        recent, _ = _statistic(analytics_type, recent_values)
        prior, _ = _statistic(analytics_type, prior_values)
        if recent is not None and prior is not None:
            result.recent_value = recent
            result.prior_value = prior
            result.trend, result.trend_percentage = classify_trend(
                recent, prior, f.analytics.higher_is_better, trend_threshold_percent
            )

    target = f.analytics.target_value
    if target is not None and value is not None:
        if target != 0:
            result.target_progress = round(value / target * 100, 1)
        result.is_on_target = value >= target if f.analytics.higher_is_better else value <= target

    return result


def _category_rollups(field_results: Dict[str, FieldAnalyticsResult]) -> Dict[str, CategoryAnalyticsResult]:
    categories: Dict[str, CategoryAnalyticsResult] = {}
    contributions: Dict[str, List[FieldAnalyticsResult]] = {}

    for result in field_results.values():
        if not result.category:
            continue
        rollup = categories.setdefault(result.category, CategoryAnalyticsResult(category=result.category))
        rollup.field_ids.append(result.field_id)
        if result.analytics_type in SCALAR_ANALYTICS and result.value is not None:
            contributions.setdefault(result.category, []).append(result)

    for category, rollup in categories.items():
        contributing = contributions.get(category, [])
        rollup.field_count = len(contributing)
        rollup.value = _mean([r.value for r in contributing])
        rollup.score = _mean([r.score for r in contributing if r.score is not None])
        rollup.trend = majority_trend(r.trend for r in contributing)

    return categories


def aggregate(
    template: FormTemplate,
    entries: Iterable[Any],
    *,
    trend_window: int = DEFAULT_TREND_WINDOW,
    trend_threshold_percent: float = DEFAULT_TREND_THRESHOLD_PERCENT,
) -> AggregationResult:
    """
    Aggregate entries against template.

    entries may be FormEntry objects or stored entry documents. Safe to call
    concurrently; nothing outside the arguments is read or written.
    """
    reader = _EntryReader()
    readable = [e for e in (reader.coerce_entry(raw) for raw in entries) if e is not None]
    readable = sorted(readable, key=_sort_key)
    ordered = sort_template(template)

    # Per entry, per section: the readable instances
    instances_by_entry = [
        {section.id: reader.instances(entry, section) for section in ordered.sections}
        for entry in readable
    ]

    field_results: Dict[str, FieldAnalyticsResult] = {}
    for section in ordered.sections:
        for f in section.fields:
            if not f.analytics.enabled or f.analytics.type is AnalyticsType.NONE:
                continue
            per_entry = [
                [
                    field_value(record[f.id])
                    for record in sections[section.id]
                    if is_value_present(record.get(f.id))
                ]
                for sections in instances_by_entry
            ]
            field_results[f.id] = _field_result(f, per_entry, trend_window, trend_threshold_percent)

    return AggregationResult(
        field_analytics=field_results,
        category_analytics=_category_rollups(field_results),
        total_entries=len(readable),
        warnings=reader.warnings,
        warning_messages=reader.messages,
    )


def overall_score(result: AggregationResult) -> Optional[float]:
    """Mean of the normalized field scores, or None when no field can be scored."""
    return _mean([r.score for r in result.field_analytics.values() if r.score is not None])


def ranked_fields(result: AggregationResult, limit: int = 5) -> Tuple[List[str], List[str]]:
    """(top strengths, areas for improvement) by score."""
    scored = sorted(
        (r for r in result.field_analytics.values() if r.score is not None),
        key=lambda r: r.score,
        reverse=True,
    )
    strengths = [r.field_label for r in scored[:limit]]
    improvements = [r.field_label for r in reversed(scored[-limit:])]
    return strengths, improvements


# ==================== SESSIONS AND STREAKS ====================

@dataclass
class SessionStats:
    total_sessions: int
    completed_sessions: int
    partial_sessions: int
    completion_rate: int
    average_completion_percentage: int
    first_session_date: Optional[datetime]
    last_session_date: Optional[datetime]
    average_sessions_per_week: float
    average_sessions_per_month: float


def calculate_session_stats(entries: List[FormEntry]) -> SessionStats:
    total = len(entries)
    completed = sum(1 for e in entries if e.is_complete)
    dates = sorted(_as_utc(e.submitted_at) for e in entries)
    first = dates[0] if dates else None
    last = dates[-1] if dates else None

    per_week = per_month = 0.0
    if first and last:
        days = (last - first).total_seconds() / 86400
        if days > 0:
            per_week = round(total / days * 7, 1)
            per_month = round(total / days * 30, 1)

    return SessionStats(
        total_sessions=total,
        completed_sessions=completed,
        partial_sessions=total - completed,
        completion_rate=round(completed / total * 100) if total else 0,
        average_completion_percentage=(
            round(sum(e.completion_percentage for e in entries) / total) if total else 0
        ),
        first_session_date=first,
        last_session_date=last,
        average_sessions_per_week=per_week,
        average_sessions_per_month=per_month,
    )


@dataclass
class StreakInfo:
    current_streak: int
    longest_streak: int
    last_active_date: Optional[date]
    active_dates: List[date]


def calculate_streak(entries: List[FormEntry], today: Optional[date] = None) -> StreakInfo:
    """
    Daily submission streaks.

    The current streak counts consecutive active days ending today; a day
    with no submission yet does not break a streak that ran through yesterday.
    """
    today = today or datetime.now(timezone.utc).date()
    active = sorted({_as_utc(e.submitted_at).date() for e in entries})

    longest = run = 0
    previous: Optional[date] = None
    for day in active:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day

    current = 0
    active_set = set(active)
    cursor = today if today in active_set else today - timedelta(days=1)
    while cursor in active_set:
        current += 1
        cursor -= timedelta(days=1)

    return StreakInfo(
        current_streak=current,
        longest_streak=longest,
        last_active_date=active[-1] if active else None,
        active_dates=list(reversed(active)),
    )


def filter_entries(
    entries: List[FormEntry],
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    include_partial: bool = False,
) -> List[FormEntry]:
    start = _as_utc(date_from) if date_from else None
    end = _as_utc(date_to) if date_to else None
    selected = []
    for entry in entries:
        submitted = _as_utc(entry.submitted_at)
        if start and submitted < start:
            continue
        if end and submitted > end:
            continue
        if not include_partial and not entry.is_complete:
            continue
        selected.append(entry)
    return selected


# ==================== SERVICE ====================

@dataclass
class StudentAnalytics:
    student_id: str
    form_template_id: str
    form_template_name: str
    session_stats: SessionStats
    streak: StreakInfo
    aggregation: AggregationResult
    overall_performance_score: Optional[float]
    overall_trend: TrendDirection
    top_strengths: List[str]
    areas_for_improvement: List[str]
    generated_at: datetime


class DynamicAnalyticsService:
    """
    Student analytics for a template, built from live entries on every call.
    """

    def __init__(
        self,
        templates,
        entries,
        trend_window: int = DEFAULT_TREND_WINDOW,
        trend_threshold_percent: float = DEFAULT_TREND_THRESHOLD_PERCENT,
    ):
        self.templates = templates
        self.entries = entries
        self.trend_window = trend_window
        self.trend_threshold_percent = trend_threshold_percent

    def student_analytics(
        self,
        student_id: str,
        template_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        include_partial: bool = False,
        today: Optional[date] = None,
    ) -> StudentAnalytics:
        template = self.templates.get_template(template_id)
        documents = self.entries.list_entry_documents(student_id, template_id)
        parsed = [FormEntry.from_document(doc) for doc in documents]
        unreadable = sum(1 for entry in parsed if entry is None)
        entries = filter_entries([e for e in parsed if e is not None], date_from, date_to, include_partial)

        result = aggregate(
            template,
            entries,
            trend_window=self.trend_window,
            trend_threshold_percent=self.trend_threshold_percent,
        )
        if unreadable:
            result.warnings += unreadable
            result.warning_messages.append(f"{unreadable} stored entries could not be read")
        if result.partial_failure:
            logger.warning(
                f"Analytics for student {student_id} template {template_id} skipped {result.warnings} items",
                extra={"extra_fields": {"student_id": student_id, "template_id": template_id, "warnings": result.warnings}},
            )

        strengths, improvements = ranked_fields(result)
        return StudentAnalytics(
            student_id=student_id,
            form_template_id=template_id,
            form_template_name=template.name,
            session_stats=calculate_session_stats(entries),
            streak=calculate_streak(entries, today=today),
            aggregation=result,
            overall_performance_score=overall_score(result),
            overall_trend=majority_trend(r.trend for r in result.field_analytics.values()),
            top_strengths=strengths,
            areas_for_improvement=improvements,
            generated_at=datetime.now(timezone.utc),
        )
