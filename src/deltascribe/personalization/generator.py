"""Turn feedback analysis and a style profile into a personalized prompt."""

from __future__ import annotations

import statistics

from deltascribe.config import Settings
from deltascribe.feedback.models import FeedbackAnalysis, PerformanceTier, Trend
from deltascribe.llm.prompts import baseline_prompt, render
from deltascribe.personalization.models import (
    DirectiveType,
    GenerationContext,
    Personalization,
    PersonalizedPrompt,
)
from deltascribe.personalization.profile import ClinicianStyleProfile

ISSUE_INSTRUCTIONS: dict[str, str] = {
    "too_long": "Be concise: include only clinically relevant information and do not repeat details.",
    "too_brief": "Provide more comprehensive detail and clinical reasoning in each section.",
    "missing_details": (
        "Include specific clinical details: measurements, doses, frequencies and timelines."
    ),
    "wrong_tone": "Use a professional, clinical tone appropriate for the medical record.",
    "poor_structure": "Follow a standard note structure with clearly labeled sections.",
    "medical_inaccuracy": (
        "State only clinical facts supported by the encounter data; do not infer diagnoses or doses."
    ),
    "epic_syntax_errors": (
        "Preserve all markup tokens exactly: SmartPhrases (@PHRASE@), "
        "SmartLists ({List:123}) and wildcards (***)."
    ),
    "irrelevant_content": "Omit information that is not relevant to this encounter.",
    "formatting_issues": (
        "Use consistent formatting: plain section headers and one item per line in lists."
    ),
}

# Tie-break order when two directives have equal impact.
_TYPE_ORDER = {t: i for i, t in enumerate(DirectiveType)}


def instruction_for(issue: str) -> str:
    return ISSUE_INSTRUCTIONS.get(
        issue, f"Address recurring feedback about {issue.replace('_', ' ')}."
    )


class PromptPersonalizer:
    """Builds ranked directives from analysis and appends them to a base prompt.

    Output depends only on the arguments and the configured thresholds.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or Settings()
        self._severity_threshold = settings.severity_threshold
        self._max_personalizations = settings.max_personalizations

    def personalize(
        self,
        analysis: FeedbackAnalysis,
        profile: ClinicianStyleProfile | None = None,
        context: GenerationContext | None = None,
    ) -> PersonalizedPrompt:
        context = context or GenerationContext()
        profile = profile or ClinicianStyleProfile.default(analysis.user_id)

        directives = [
            *self.issue_directives(analysis),
            *self.trend_directives(analysis),
            *self.template_directives(analysis, context),
            *self.provider_directives(analysis),
            *self.style_directives(profile),
        ]
        ranked = self.rank(directives)

        base = context.base_prompt or baseline_prompt(context.template_type)
        prompt = render(
            "personalized_prompt.j2",
            base_prompt=base,
            personalizations=ranked,
            style_fragment=profile.to_prompt_fragment(),
        )
        comparison = 0.0
        if ranked:
            mean_impact = statistics.fmean(p.impact for p in ranked)
            comparison = round(analysis.confidence_score * 30 * mean_impact, 1)

        return PersonalizedPrompt(
            prompt=prompt,
            base_prompt=base,
            personalizations=ranked,
            confidence_score=analysis.confidence_score,
            baseline_comparison=comparison,
            based_on_feedback_count=analysis.total_feedback_analyzed,
            recommended_provider=analysis.provider_analysis.recommended_provider,
        )

    def rank(self, directives: list[Personalization]) -> list[Personalization]:
        """Sort by impact (descending), drop duplicate texts, keep the top N."""
        ordered = sorted(directives, key=lambda d: (-d.impact, _TYPE_ORDER[d.type], d.text))
        seen: set[str] = set()
        ranked = []
        for directive in ordered:
            if directive.text in seen:
                continue
            seen.add(directive.text)
            ranked.append(directive)
        return ranked[: self._max_personalizations]

    def issue_directives(self, analysis: FeedbackAnalysis) -> list[Personalization]:
        return [
            Personalization(
                type=DirectiveType.ISSUE,
                text=instruction_for(pattern.issue),
                reasoning=(
                    f"'{pattern.issue}' was reported in {pattern.percentage:.0f}% of feedback "
                    f"(severity {pattern.severity:.2f})"
                ),
                impact=min(1.0, pattern.severity),
                confidence=min(pattern.frequency / 10, 1.0),
            )
            for pattern in analysis.issue_patterns
            if pattern.severity > self._severity_threshold
        ]

    def trend_directives(self, analysis: FeedbackAnalysis) -> list[Personalization]:
        trends = analysis.rating_trends
        if trends.trend != Trend.DECLINING:
            return []
        drop = trends.older_average - trends.recent_average
        return [
            Personalization(
                type=DirectiveType.TREND,
                text=(
                    "Prioritize clinical accuracy and completeness; recent notes have "
                    "needed more correction than earlier ones."
                ),
                reasoning=(
                    f"Average rating fell from {trends.older_average:.1f} "
                    f"to {trends.recent_average:.1f}"
                ),
                impact=round(min(1.0, 0.5 + drop / 2), 3),
                confidence=analysis.confidence_score,
            )
        ]

    def template_directives(
        self, analysis: FeedbackAnalysis, context: GenerationContext
    ) -> list[Personalization]:
        content = analysis.content_analysis
        directives = []

        best = content.templates.get(content.best_template or "")
        if (
            best is not None
            and best.performance == PerformanceTier.EXCELLENT
            and best.template != context.template_type
        ):
            directives.append(
                Personalization(
                    type=DirectiveType.TEMPLATE,
                    text=(
                        f"Mirror the organization of the '{best.template}' notes, "
                        "which this clinician rates highest."
                    ),
                    reasoning=f"'{best.template}' averages {best.average_rating:.1f} over {best.count} notes",
                    impact=round(min(1.0, 0.3 + 0.1 * (best.average_rating - 3)), 3),
                    confidence=min(best.count / 10, 1.0),
                )
            )

        worst = content.templates.get(content.worst_template or "")
        if (
            worst is not None
            and worst.performance == PerformanceTier.NEEDS_IMPROVEMENT
            and worst.template == context.template_type
        ):
            directives.append(
                Personalization(
                    type=DirectiveType.TEMPLATE,
                    text=(
                        f"Notes from the '{worst.template}' template are rated lowest; "
                        "follow the standard section order and keep each section focused."
                    ),
                    reasoning=f"'{worst.template}' averages {worst.average_rating:.1f} over {worst.count} notes",
                    impact=round(min(1.0, 0.5 + (3 - worst.average_rating) / 4), 3),
                    confidence=min(worst.count / 10, 1.0),
                )
            )
        return directives

    def provider_directives(self, analysis: FeedbackAnalysis) -> list[Personalization]:
        provider = analysis.provider_analysis.recommended_provider
        if provider is None:
            return []
        stats = analysis.provider_analysis.providers[provider]
        return [
            Personalization(
                type=DirectiveType.PROVIDER,
                text=f"Match the style of notes produced by '{provider}', which rate highest.",
                reasoning=f"'{provider}' averages {stats.average_rating:.1f} over {stats.count} notes",
                impact=0.3,
                confidence=round(stats.consistency, 3),
            )
        ]

    def style_directives(self, profile: ClinicianStyleProfile) -> list[Personalization]:
        impact = round(0.3 + 0.2 * profile.confidence, 3)
        return [
            Personalization(
                type=DirectiveType.STYLE,
                text=text,
                reasoning="Stated clinician preference",
                impact=impact,
                confidence=profile.confidence,
            )
            for text in profile.style_instructions()
        ]
