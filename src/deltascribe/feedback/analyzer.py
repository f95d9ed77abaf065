"""Statistical pattern analysis over a user's historical feedback."""

from __future__ import annotations

import math
import statistics
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Sequence

from deltascribe.config import Settings
from deltascribe.errors import InsufficientDataError
from deltascribe.feedback.models import (
    ContentAnalysis,
    FeedbackAnalysis,
    FeedbackRecord,
    IssuePattern,
    PerformanceTier,
    ProviderAnalysis,
    ProviderStats,
    RatingTrends,
    TemplateStats,
    TemporalPatterns,
    Trend,
)


def _mean(values: Sequence[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def _consistency(ratings: Sequence[float]) -> float:
    """1.0 for identical ratings, falling by half a point per rating of spread.

    A single rating says nothing about consistency and scores 0.
    """
    if len(ratings) < 2:
        return 0.0
    return max(0.0, 1 - statistics.pstdev(ratings) / 2)


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation, or 0.0 when it is undefined."""
    if len(xs) != len(ys) or len(xs) < 2:
        return 0.0
    mx, my = _mean(xs), _mean(ys)
    cov = sum((x - mx) * (y - my) for x, y in zip(xs, ys))
    vx = sum((x - mx) ** 2 for x in xs)
    vy = sum((y - my) ** 2 for y in ys)
    if vx == 0 or vy == 0:
        return 0.0
    r = cov / math.sqrt(vx * vy)
    return max(-1.0, min(1.0, r))


def tier_for(average: float) -> PerformanceTier:
    if average >= 4:
        return PerformanceTier.EXCELLENT
    if average >= 3:
        return PerformanceTier.GOOD
    return PerformanceTier.NEEDS_IMPROVEMENT


class FeedbackPatternAnalyzer:
    """Derives rating trends, issue patterns and confidence from feedback.

    The analyzer holds configuration only. ``analyze`` depends on nothing but
    its arguments, so running it twice on the same records gives the same result.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or Settings()
        self._min_feedback = settings.min_feedback
        self._recent_window = settings.recent_window
        self._trend_threshold = settings.trend_threshold
        self._provider_min_samples = settings.provider_min_samples
        self._high_rating = settings.high_rating_threshold
        self._recency_days = settings.recency_days

    def analyze(
        self,
        feedback: Sequence[FeedbackRecord],
        *,
        user_id: str = "default",
        now: datetime | None = None,
    ) -> FeedbackAnalysis:
        """Analyze a feedback set.

        Raises:
            InsufficientDataError: fewer than ``min_feedback`` records.
        """
        if len(feedback) < self._min_feedback:
            raise InsufficientDataError(len(feedback), self._min_feedback)

        records = sorted(feedback, key=lambda f: f.created_at)
        now = now or datetime.now()

        trends = self.rating_trends(records)
        confidence = self.confidence_score(records, trends.consistency_score, now)

        return FeedbackAnalysis(
            user_id=user_id,
            total_feedback_analyzed=len(records),
            rating_trends=trends,
            issue_patterns=self.issue_patterns(records),
            temporal_patterns=self.temporal_patterns(records),
            provider_analysis=self.provider_analysis(records),
            content_analysis=self.content_analysis(records),
            confidence_score=confidence,
        )

    def rating_trends(self, records: Sequence[FeedbackRecord]) -> RatingTrends:
        """Compare the most recent ratings to everything before them.

        The recent window is the last ``recent_window`` ratings. Histories no
        longer than the window are split in half instead.
        """
        ratings = [float(r.rating) for r in records]
        n = len(ratings)
        window = self._recent_window if n > self._recent_window else n // 2
        window = window or n
        recent = ratings[-window:]
        older = ratings[:-window]

        recent_avg = _mean(recent)
        older_avg = _mean(older) if older else recent_avg
        delta = recent_avg - older_avg
        if delta > self._trend_threshold:
            trend = Trend.IMPROVING
        elif delta < -self._trend_threshold:
            trend = Trend.DECLINING
        else:
            trend = Trend.STABLE

        counts = Counter(r.rating for r in records)
        return RatingTrends(
            average_rating=round(_mean(ratings), 3),
            recent_average=round(recent_avg, 3),
            older_average=round(older_avg, 3),
            trend=trend,
            consistency_score=round(_consistency(recent), 3),
            rating_distribution={rating: counts.get(rating, 0) for rating in range(1, 6)},
        )

    def issue_patterns(self, records: Sequence[FeedbackRecord]) -> list[IssuePattern]:
        """Group by reported issue; severity mixes prevalence and rating damage.

        severity = 0.5 * share_of_feedback + 0.5 * (5 - avg_rating) / 4
        """
        total = len(records)
        ratings_by_issue: dict[str, list[int]] = defaultdict(list)
        for record in records:
            for issue in record.quality_issues:
                ratings_by_issue[issue].append(record.rating)

        patterns = []
        for issue, ratings in ratings_by_issue.items():
            share = len(ratings) / total
            avg = _mean(ratings) if ratings else None
            damage = (5 - avg) / 4 if avg is not None else 0.0
            patterns.append(
                IssuePattern(
                    issue=issue,
                    frequency=len(ratings),
                    percentage=round(share * 100, 1),
                    average_rating=round(avg, 3) if avg is not None else None,
                    severity=round(0.5 * share + 0.5 * damage, 3),
                )
            )
        patterns.sort(key=lambda p: (-p.severity, -p.frequency, p.issue))
        return patterns

    def temporal_patterns(self, records: Sequence[FeedbackRecord]) -> TemporalPatterns:
        times = [r.time_to_review for r in records]
        ratings = [float(r.rating) for r in records]
        good_times = [r.time_to_review for r in records if r.rating >= self._high_rating]
        return TemporalPatterns(
            review_time_correlation=round(pearson(times, ratings), 3),
            average_review_time=round(_mean(times), 2),
            optimal_review_time_range=(min(good_times), max(good_times)) if good_times else None,
        )

    def provider_analysis(self, records: Sequence[FeedbackRecord]) -> ProviderAnalysis:
        """Per-provider stats; recommend a provider only when it clearly leads.

        A recommendation needs at least two providers with enough samples and
        a strictly higher average than every other eligible provider.
        """
        by_provider: dict[str, list[int]] = defaultdict(list)
        for record in records:
            by_provider[record.ai_provider].append(record.rating)

        providers = {
            name: ProviderStats(
                provider=name,
                average_rating=round(_mean(ratings), 3),
                count=len(ratings),
                consistency=round(_consistency(ratings), 3),
            )
            for name, ratings in sorted(by_provider.items())
        }

        eligible = sorted(
            (s for s in providers.values() if s.count >= self._provider_min_samples),
            key=lambda s: s.average_rating,
            reverse=True,
        )
        recommended = None
        if len(eligible) >= 2 and eligible[0].average_rating > eligible[1].average_rating:
            recommended = eligible[0].provider
        return ProviderAnalysis(providers=providers, recommended_provider=recommended)

    def content_analysis(self, records: Sequence[FeedbackRecord]) -> ContentAnalysis:
        by_template: dict[str, list[int]] = defaultdict(list)
        for record in records:
            by_template[record.template_used].append(record.rating)

        templates = {}
        for name, ratings in sorted(by_template.items()):
            avg = _mean(ratings)
            templates[name] = TemplateStats(
                template=name,
                average_rating=round(avg, 3),
                count=len(ratings),
                performance=tier_for(avg),
            )

        if not templates:
            return ContentAnalysis()
        ranked = sorted(templates.values(), key=lambda t: (-t.average_rating, t.template))
        return ContentAnalysis(
            templates=templates,
            best_template=ranked[0].template,
            worst_template=ranked[-1].template if len(ranked) > 1 else None,
        )

    def confidence_score(
        self, records: Sequence[FeedbackRecord], consistency: float, now: datetime
    ) -> float:
        """0.5 * volume + 0.3 * consistency + 0.2 * recency, capped at 0.95."""
        count = len(records)
        cutoff = now - timedelta(days=self._recency_days)
        recency = sum(1 for r in records if r.created_at >= cutoff) / count if count else 0.0
        score = 0.5 * min(count / 20, 1.0) + 0.3 * consistency + 0.2 * recency
        return round(min(score, 0.95), 3)
