"""Tests for feedback pattern analysis."""

from __future__ import annotations

from datetime import timedelta

import pytest

from deltascribe.errors import InsufficientDataError
from deltascribe.feedback.analyzer import FeedbackPatternAnalyzer, pearson, tier_for
from deltascribe.feedback.models import FeedbackRecord, PerformanceTier, Trend
from tests.conftest import BASE_TIME, make_feedback


@pytest.fixture
def analyzer() -> FeedbackPatternAnalyzer:
    return FeedbackPatternAnalyzer()


def _now_after(records: list[FeedbackRecord]):
    return max(r.created_at for r in records) + timedelta(hours=1)


@pytest.mark.parametrize("count", [0, 2])
def test_too_little_feedback_raises(analyzer: FeedbackPatternAnalyzer, count: int) -> None:
    with pytest.raises(InsufficientDataError) as exc_info:
        analyzer.analyze(make_feedback([4] * count))
    assert exc_info.value.available == count
    assert exc_info.value.required == 3


def test_three_records_is_enough(analyzer: FeedbackPatternAnalyzer) -> None:
    analysis = analyzer.analyze(make_feedback([3, 4, 5]), user_id="dr_lee")
    assert analysis.total_feedback_analyzed == 3
    assert analysis.user_id == "dr_lee"


def test_improving_trend(analyzer: FeedbackPatternAnalyzer) -> None:
    trends = analyzer.analyze(make_feedback([3, 3, 3, 3, 3, 4, 4, 4, 4, 4])).rating_trends
    assert trends.older_average == 3.0
    assert trends.recent_average == 4.0
    assert trends.trend == Trend.IMPROVING


def test_declining_and_stable_trends(analyzer: FeedbackPatternAnalyzer) -> None:
    declining = analyzer.analyze(make_feedback([5, 5, 5, 5, 3, 3, 3, 3])).rating_trends
    assert declining.trend == Trend.DECLINING

    stable = analyzer.analyze(make_feedback([4, 4, 4, 4, 4, 4])).rating_trends
    assert stable.trend == Trend.STABLE


def test_trend_uses_last_ten_for_long_history(analyzer: FeedbackPatternAnalyzer) -> None:
    ratings = [2] * 15 + [4] * 10
    trends = analyzer.analyze(make_feedback(ratings)).rating_trends
    assert trends.recent_average == 4.0
    assert trends.older_average == 2.0


def test_trend_uses_last_ten_just_past_window(analyzer: FeedbackPatternAnalyzer) -> None:
    ratings = [5, 5, 5, 5, 5, 2, 2, 2, 4, 4, 4, 4, 4, 4, 4]
    trends = analyzer.analyze(make_feedback(ratings)).rating_trends
    assert trends.recent_average == 3.4
    assert trends.older_average == 5.0
    assert trends.trend == Trend.DECLINING


def test_single_rating_window_has_no_consistency(analyzer: FeedbackPatternAnalyzer) -> None:
    trends = analyzer.analyze(make_feedback([4, 4, 4])).rating_trends
    assert trends.recent_average == 4.0
    assert trends.consistency_score == 0.0


def test_trend_orders_by_timestamp(analyzer: FeedbackPatternAnalyzer) -> None:
    records = make_feedback([3, 3, 3, 3, 3, 4, 4, 4, 4, 4])
    trends = analyzer.analyze(list(reversed(records))).rating_trends
    assert trends.trend == Trend.IMPROVING


def test_rating_distribution(analyzer: FeedbackPatternAnalyzer) -> None:
    trends = analyzer.analyze(make_feedback([5, 5, 4, 2])).rating_trends
    assert trends.rating_distribution == {1: 0, 2: 1, 3: 0, 4: 1, 5: 2}
    assert trends.average_rating == 4.0


def test_confidence_is_monotonic_in_volume_and_capped(analyzer: FeedbackPatternAnalyzer) -> None:
    previous = 0.0
    for count in range(5, 21):
        records = make_feedback([4] * count, spacing=timedelta(minutes=1))
        score = analyzer.analyze(records, now=_now_after(records)).confidence_score
        assert score >= previous
        assert score <= 0.95
        previous = score
    assert previous == 0.95


def test_confidence_rewards_recent_feedback(analyzer: FeedbackPatternAnalyzer) -> None:
    records = make_feedback([4] * 5)
    fresh = analyzer.analyze(records, now=_now_after(records)).confidence_score
    stale = analyzer.analyze(records, now=_now_after(records) + timedelta(days=30)).confidence_score
    assert fresh > stale


def test_issue_patterns_severity(analyzer: FeedbackPatternAnalyzer) -> None:
    records = [
        *make_feedback([2, 2], quality_issues=["too_long"]),
        *make_feedback([5, 5], start=BASE_TIME + timedelta(days=1)),
    ]
    patterns = analyzer.analyze(records).issue_patterns
    assert len(patterns) == 1
    pattern = patterns[0]
    assert pattern.issue == "too_long"
    assert pattern.frequency == 2
    assert pattern.percentage == 50.0
    assert pattern.average_rating == 2.0
    # 0.5 * 0.5 share + 0.5 * (5 - 2) / 4
    assert pattern.severity == pytest.approx(0.625)


def test_issue_patterns_sorted_by_severity(analyzer: FeedbackPatternAnalyzer) -> None:
    records = [
        *make_feedback([1, 1, 1], quality_issues=["medical_inaccuracy", "too_long"]),
        *make_feedback([4], quality_issues=["too_long"], start=BASE_TIME + timedelta(days=1)),
    ]
    patterns = analyzer.analyze(records).issue_patterns
    assert [p.issue for p in patterns] == ["too_long", "medical_inaccuracy"]
    assert patterns[0].severity >= patterns[1].severity


def test_quality_issues_are_normalized() -> None:
    record = FeedbackRecord(rating=3, quality_issues=["Too Long", "too_long", " wrong tone "])
    assert record.quality_issues == ["too_long", "wrong_tone"]


def test_zero_variance_correlation_is_zero(analyzer: FeedbackPatternAnalyzer) -> None:
    temporal = analyzer.analyze(make_feedback([2, 4, 5], time_to_review=60.0)).temporal_patterns
    assert temporal.review_time_correlation == 0.0
    assert temporal.average_review_time == 60.0


def test_pearson_bounds() -> None:
    assert pearson([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)
    assert pearson([1, 2, 3], [6, 4, 2]) == pytest.approx(-1.0)
    assert pearson([1], [1]) == 0.0
    assert pearson([1, 1, 1], [1, 2, 3]) == 0.0


def test_optimal_review_time_range(analyzer: FeedbackPatternAnalyzer) -> None:
    records = make_feedback([5, 4, 2])
    records = [r.model_copy(update={"time_to_review": t}) for r, t in zip(records, [30, 90, 300])]
    temporal = analyzer.analyze(records).temporal_patterns
    assert temporal.optimal_review_time_range == (30.0, 90.0)
    assert temporal.review_time_correlation < 0


def test_provider_recommended_when_clearly_better(analyzer: FeedbackPatternAnalyzer) -> None:
    records = [
        *make_feedback([5, 5, 4], ai_provider="claude"),
        *make_feedback([3, 3, 2], ai_provider="openai", start=BASE_TIME + timedelta(days=1)),
    ]
    providers = analyzer.analyze(records).provider_analysis
    assert providers.recommended_provider == "claude"
    assert providers.providers["openai"].count == 3


def test_provider_not_recommended_without_enough_samples(analyzer: FeedbackPatternAnalyzer) -> None:
    records = [
        *make_feedback([5, 5, 5], ai_provider="claude"),
        *make_feedback([2, 2], ai_provider="openai", start=BASE_TIME + timedelta(days=1)),
    ]
    assert analyzer.analyze(records).provider_analysis.recommended_provider is None


def test_provider_not_recommended_on_tie(analyzer: FeedbackPatternAnalyzer) -> None:
    records = [
        *make_feedback([4, 4, 4], ai_provider="claude"),
        *make_feedback([4, 4, 4], ai_provider="openai", start=BASE_TIME + timedelta(days=1)),
    ]
    assert analyzer.analyze(records).provider_analysis.recommended_provider is None


def test_content_analysis_best_and_worst(analyzer: FeedbackPatternAnalyzer) -> None:
    records = [
        *make_feedback([5, 5, 4], template_used="soap"),
        *make_feedback([2, 2, 1], template_used="progress", start=BASE_TIME + timedelta(days=1)),
    ]
    content = analyzer.analyze(records).content_analysis
    assert content.best_template == "soap"
    assert content.worst_template == "progress"
    assert content.templates["soap"].performance == PerformanceTier.EXCELLENT
    assert content.templates["progress"].performance == PerformanceTier.NEEDS_IMPROVEMENT


def test_tier_boundaries() -> None:
    assert tier_for(4.0) == PerformanceTier.EXCELLENT
    assert tier_for(3.0) == PerformanceTier.GOOD
    assert tier_for(2.99) == PerformanceTier.NEEDS_IMPROVEMENT


def test_analysis_is_deterministic(analyzer: FeedbackPatternAnalyzer) -> None:
    records = make_feedback([3, 4, 2, 5, 4], quality_issues=["too_long"])
    now = _now_after(records)
    assert analyzer.analyze(records, now=now) == analyzer.analyze(records, now=now)
