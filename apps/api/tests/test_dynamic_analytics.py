"""
Tests for the dynamic analytics aggregator.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from services.dynamic_analytics import (
    DynamicAnalyticsService,
    FormEntry,
    TrendDirection,
    aggregate,
    calculate_session_stats,
    calculate_streak,
    classify_trend,
    filter_entries,
    majority_trend,
    overall_score,
)
from services.form_entries import ENTRIES_COLLECTION
from services.form_schema import FormTemplate

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_entry(index: int, responses: dict, is_complete: bool = True, day_offset=None) -> FormEntry:
    offset = timedelta(days=index if day_offset is None else day_offset)
    return FormEntry(
        id=f"e{index}",
        student_id="s1",
        form_template_id="t1",
        submitted_at=START + offset,
        responses=responses,
        is_complete=is_complete,
        completion_percentage=100 if is_complete else 50,
    )


def single_field_template(field_type: str, analytics_type: str, **field_extra) -> FormTemplate:
    analytics = {"enabled": True, "type": analytics_type, **field_extra.pop("analytics", {})}
    return FormTemplate.model_validate({
        "name": "Single",
        "sections": [{
            "id": "s",
            "title": "S",
            "fields": [{"id": "f", "label": "Field", "type": field_type, "analytics": analytics, **field_extra}],
        }],
    })


def entries_for(values) -> list:
    return [make_entry(i, {"s": {"f": v}}) for i, v in enumerate(values)]


class TestEmptyInput:
    """Zero entries means N/A, not zero"""

    def test_every_field_absent(self, sample_template):
        result = aggregate(sample_template, [])
        assert result.total_entries == 0
        assert set(result.field_analytics) == {"reps", "effort", "attended", "focus"}
        for field_result in result.field_analytics.values():
            assert field_result.value is None
            assert field_result.data_points == 0
        assert result.warnings == 0

    def test_categories_have_no_value(self, sample_template):
        result = aggregate(sample_template, [])
        assert result.category_analytics["performance"].value is None
        assert result.category_analytics["performance"].trend is TrendDirection.STABLE

    def test_disabled_fields_skipped(self, sample_template):
        assert "notes" not in aggregate(sample_template, []).field_analytics


class TestStatistics:
    """Per analytics type"""

    def test_average(self):
        result = aggregate(single_field_template("numeric", "average"), entries_for([2, 4, 6]))
        field_result = result.field_analytics["f"]
        assert field_result.value == 4.0
        assert field_result.data_points == 3
        assert (field_result.min, field_result.max, field_result.median) == (2, 6, 4)

    def test_average_excludes_unparseable_values(self):
        result = aggregate(single_field_template("numeric", "average"), entries_for([2, "bad", 6]))
        assert result.field_analytics["f"].value == 4.0
        assert result.field_analytics["f"].data_points == 2

    def test_booleans_are_not_numbers(self):
        result = aggregate(single_field_template("numeric", "average"), entries_for([True, 3]))
        assert result.field_analytics["f"].value == 3.0

    def test_numeric_strings(self):
        result = aggregate(single_field_template("numeric", "sum"), entries_for(["1.5", " 2.5 "]))
        assert result.field_analytics["f"].value == 4.0

    def test_percentage(self):
        result = aggregate(single_field_template("yesno", "percentage"), entries_for([True, "yes", False, "no"]))
        assert result.field_analytics["f"].value == 50.0
        assert result.field_analytics["f"].score == 50.0

    def test_consistency_uses_mode_share(self):
        result = aggregate(single_field_template("numeric", "consistency"), entries_for([3, 3, 4, "3"]))
        assert result.field_analytics["f"].value == 75.0

    def test_count(self):
        result = aggregate(single_field_template("text", "count"), entries_for(["a", "b", "c"]))
        assert result.field_analytics["f"].value == 3.0

    def test_distribution(self):
        template = single_field_template("radio", "distribution", options=["A", "B"])
        field_result = aggregate(template, entries_for(["A", "A", "B"])).field_analytics["f"]
        assert field_result.distribution == {"A": 2, "B": 1}
        assert field_result.distribution_percentages == {"A": 66.7, "B": 33.3}
        assert field_result.most_common == "A"
        assert field_result.value == "A"

    def test_distribution_seeds_unused_options(self):
        template = single_field_template("radio", "distribution", options=["A", "B", "C"])
        field_result = aggregate(template, entries_for(["B"])).field_analytics["f"]
        assert field_result.distribution == {"A": 0, "B": 1, "C": 0}

    def test_checkbox_distribution_counts_each_choice(self):
        template = single_field_template("checkbox", "distribution", options=["x", "y"])
        field_result = aggregate(template, entries_for([["x", "y"], ["x"]])).field_analytics["f"]
        assert field_result.distribution == {"x": 2, "y": 1}

    def test_wrapped_values_with_comments(self):
        values = [{"value": 8, "comments": "good"}, {"value": 6, "comments": ""}]
        result = aggregate(single_field_template("scale", "average"), entries_for(values))
        assert result.field_analytics["f"].value == 7.0

    def test_absent_field_not_defaulted(self, sample_template):
        entries = [
            make_entry(0, {"session": {"effort": 8}}),
            make_entry(1, {"session": {"attended": True}}),
        ]
        effort = aggregate(sample_template, entries).field_analytics["effort"]
        assert effort.value == 8.0
        assert effort.data_points == 1

    def test_repeatable_instances_flattened(self, sample_template):
        entries = [
            make_entry(0, {"drills": [{"reps": 10}, {"reps": 5}]}),
            make_entry(1, {"drills": [{"reps": 3}]}),
        ]
        assert aggregate(sample_template, entries).field_analytics["reps"].value == 18.0

    def test_fields_removed_from_template_ignored(self, sample_template):
        entry = make_entry(0, {"session": {"effort": 6, "retired_field": 99}, "old_section": {"x": 1}})
        result = aggregate(sample_template, [entry])
        assert "retired_field" not in result.field_analytics
        assert result.warnings == 0


class TestScoresAndTargets:
    """Normalization and target tracking"""

    def test_scale_score_uses_validation_bounds(self):
        template = single_field_template("scale", "average", validation={"min": 1, "max": 10})
        field_result = aggregate(template, entries_for([4])).field_analytics["f"]
        assert field_result.score == pytest.approx(33.33, abs=0.01)

    def test_lower_is_better_inverts_score(self):
        template = single_field_template(
            "scale", "average", validation={"min": 0, "max": 10}, analytics={"higherIsBetter": False}
        )
        assert aggregate(template, entries_for([2])).field_analytics["f"].score == pytest.approx(80.0)

    def test_unbounded_average_has_no_score(self):
        result = aggregate(single_field_template("numeric", "average"), entries_for([4]))
        assert result.field_analytics["f"].score is None
        assert overall_score(result) is None

    def test_target_progress(self):
        template = single_field_template("numeric", "average", analytics={"targetValue": 5})
        field_result = aggregate(template, entries_for([4])).field_analytics["f"]
        assert field_result.target_progress == 80.0
        assert field_result.is_on_target is False


class TestTrend:
    """Recent window vs the window before it"""

    def test_ten_percent_increase_is_improving(self):
        values = [10] * 5 + [11] * 5
        field_result = aggregate(single_field_template("numeric", "average"), entries_for(values)).field_analytics["f"]
        assert field_result.trend is TrendDirection.IMPROVING
        assert field_result.trend_percentage == pytest.approx(10.0)
        assert (field_result.prior_value, field_result.recent_value) == (10.0, 11.0)

    def test_lower_is_better_flips_direction(self):
        template = single_field_template("numeric", "average", analytics={"higherIsBetter": False})
        values = [10] * 5 + [11] * 5
        assert aggregate(template, entries_for(values)).field_analytics["f"].trend is TrendDirection.DECLINING

    def test_small_change_is_stable(self):
        values = [10] * 5 + [10.3] * 5
        field_result = aggregate(single_field_template("numeric", "average"), entries_for(values)).field_analytics["f"]
        assert field_result.trend is TrendDirection.STABLE

    def test_window_shrinks_with_few_entries(self):
        field_result = aggregate(single_field_template("numeric", "average"), entries_for([10, 5])).field_analytics["f"]
        assert field_result.trend is TrendDirection.DECLINING
        assert field_result.trend_percentage == -50.0

    def test_single_entry_has_no_trend(self):
        assert aggregate(single_field_template("numeric", "average"), entries_for([10])).field_analytics["f"].trend is None

    def test_entries_sorted_by_time(self):
        entries = [
            make_entry(0, {"s": {"f": 12}}, day_offset=5),
            make_entry(1, {"s": {"f": 10}}, day_offset=1),
        ]
        field_result = aggregate(single_field_template("numeric", "average"), entries).field_analytics["f"]
        assert field_result.trend is TrendDirection.IMPROVING

    def test_trend_type_uses_recent_window(self):
        values = [1, 1, 1, 9, 9]
        result = aggregate(single_field_template("numeric", "trend"), entries_for(values), trend_window=2)
        assert result.field_analytics["f"].value == 9.0

    def test_classify_from_zero(self):
        assert classify_trend(5, 0) == (TrendDirection.IMPROVING, None)
        assert classify_trend(0, 0) == (TrendDirection.STABLE, 0.0)

    def test_majority_trend(self):
        up, down, flat = TrendDirection.IMPROVING, TrendDirection.DECLINING, TrendDirection.STABLE
        assert majority_trend([up, up, down]) is up
        assert majority_trend([up, down]) is flat
        assert majority_trend([None, None]) is flat


class TestCategories:
    """Category rollups"""

    def test_distribution_excluded_from_rollup(self, sample_template):
        entries = [
            make_entry(0, {"session": {"effort": 6, "focus": "serve"}}),
            make_entry(1, {"session": {"effort": 8, "focus": "serve"}}),
        ]
        performance = aggregate(sample_template, entries).category_analytics["performance"]
        assert performance.field_ids == ["effort", "focus"]
        assert performance.field_count == 1
        assert performance.value == 7.0

    def test_rollup_averages_field_values(self):
        template = FormTemplate.model_validate({
            "name": "Two",
            "sections": [{"id": "s", "title": "S", "fields": [
                {"id": "a", "label": "A", "type": "numeric", "analytics": {"enabled": True, "type": "average", "category": "c"}},
                {"id": "b", "label": "B", "type": "numeric", "analytics": {"enabled": True, "type": "average", "category": "c"}},
            ]}],
        })
        entries = [make_entry(0, {"s": {"a": 2, "b": 6}})]
        assert aggregate(template, entries).category_analytics["c"].value == 5.0


class TestMalformedEntries:
    """Bad data is skipped and counted, never raised"""

    def test_unreadable_document(self, sample_template):
        good = make_entry(0, {"session": {"effort": 6}}).to_document()
        result = aggregate(sample_template, [good, {"responses": "nope"}, "garbage"])
        assert result.total_entries == 1
        assert result.warnings == 2
        assert result.partial_failure
        assert result.field_analytics["effort"].value == 6.0

    def test_malformed_sections(self, sample_template):
        entries = [
            make_entry(0, {"session": ["not", "a", "record"], "drills": {"reps": 4}}),
            make_entry(1, {"session": {"effort": 9}, "drills": [{"reps": 2}, "bad"]}),
        ]
        result = aggregate(sample_template, entries)
        assert result.warnings == 3
        assert result.field_analytics["effort"].value == 9.0
        assert result.field_analytics["reps"].value == 2.0

    def test_non_finite_numbers_skipped(self):
        result = aggregate(single_field_template("numeric", "average"), entries_for([float("nan"), "inf", 4]))
        assert result.field_analytics["f"].value == 4.0


class TestSessionsAndStreaks:
    """Session statistics, streaks and filtering"""

    def test_session_stats(self):
        entries = [make_entry(0, {}), make_entry(7, {}), make_entry(14, {}, is_complete=False)]
        stats = calculate_session_stats(entries)
        assert stats.total_sessions == 3
        assert stats.completed_sessions == 2
        assert stats.partial_sessions == 1
        assert stats.completion_rate == 67
        assert stats.average_sessions_per_week == 1.5

    def test_empty_session_stats(self):
        stats = calculate_session_stats([])
        assert stats.total_sessions == 0
        assert stats.first_session_date is None

    def test_streak(self):
        today = date(2026, 3, 10)
        days = [9, 8, 7, 4]  # offsets from START (March 1)
        entries = [make_entry(i, {}, day_offset=d) for i, d in enumerate(days)]
        streak = calculate_streak(entries, today=today)
        assert streak.current_streak == 3
        assert streak.longest_streak == 3
        assert streak.last_active_date == today

    def test_streak_survives_until_end_of_today(self):
        entries = [make_entry(0, {}, day_offset=8)]  # March 9
        assert calculate_streak(entries, today=date(2026, 3, 10)).current_streak == 1
        assert calculate_streak(entries, today=date(2026, 3, 11)).current_streak == 0

    def test_filter_entries(self):
        entries = [make_entry(0, {}), make_entry(1, {}, is_complete=False), make_entry(5, {})]
        assert [e.id for e in filter_entries(entries)] == ["e0", "e5"]
        assert [e.id for e in filter_entries(entries, include_partial=True)] == ["e0", "e1", "e5"]
        assert [e.id for e in filter_entries(entries, date_from=START + timedelta(days=2))] == ["e5"]


class TestAnalyticsService:
    """DynamicAnalyticsService over stored entries"""

    def test_student_analytics(self, container, sample_template):
        template = container.templates.create_template(sample_template, created_by="admin-1")
        for effort in (4, 6, 8):
            container.entries.submit_entry("s1", template.id, {"session": {"effort": effort, "attended": True}})
        container.entries.submit_entry("s2", template.id, {"session": {"effort": 1}})

        analytics = container.analytics.student_analytics("s1", template.id)
        assert analytics.aggregation.total_entries == 3
        assert analytics.aggregation.field_analytics["effort"].value == 6.0
        assert analytics.aggregation.field_analytics["attended"].value == 100.0
        assert analytics.session_stats.total_sessions == 3
        assert analytics.form_template_name == "Training Log"
        assert analytics.top_strengths[0] == "Attended warm-up"

    def test_unreadable_stored_entries_become_warnings(self, container, store, sample_template):
        template = container.templates.create_template(sample_template)
        container.entries.submit_entry("s1", template.id, {"session": {"effort": 5}})
        store.create(ENTRIES_COLLECTION, {"studentId": "s1", "formTemplateId": template.id, "responses": "broken"})

        analytics = container.analytics.student_analytics("s1", template.id)
        assert analytics.aggregation.total_entries == 1
        assert analytics.aggregation.warnings == 1
        assert analytics.aggregation.warning_messages == ["1 stored entries could not be read"]

    def test_no_entries(self, container, sample_template):
        template = container.templates.create_template(sample_template)
        analytics = container.analytics.student_analytics("nobody", template.id)
        assert analytics.aggregation.total_entries == 0
        assert analytics.overall_performance_score is None
        assert analytics.overall_trend is TrendDirection.STABLE

    def test_service_is_constructed_explicitly(self, container):
        assert isinstance(container.analytics, DynamicAnalyticsService)
        assert container.analytics.templates is container.templates
