"""Section aggregation and overall rating.

Rating rules, in order:

1. Red flag: a "No" anywhere in the red-flag section forces Misaligned.
2. Base score: 60% of the accountability section's yes rate plus 40% of the
   average yes rate over all answered sections, bucketed by thresholds that
   drop 5 points when fewer than 70% of questions were really assessed.
3. Adjustments: a weak depth/planning or action/implementation section
   (< 25% yes) costs one tier; two strong ones (> 75% yes) lift Aligning to
   Aligned.

The credibility score then nudges a per-rating base value by the yes rate and
the weighted score, so documents in the same bucket still rank apart.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass

from credibility.models import (
    Answer,
    QuestionEvaluation,
    Questionnaire,
    Rating,
    SectionResult,
    Verdict,
)

log = logging.getLogger(__name__)

RED_FLAG = "red_flag"
ACCOUNTABILITY = "accountability"
DEPTH = "depth"
ACTION = "action"

BASE_SECTION_WEIGHT = 0.6
AVERAGE_WEIGHT = 0.4

ALIGNED_THRESHOLD = 65
ALIGNING_THRESHOLD = 35
PARTIAL_THRESHOLD = 15
LOW_COMPLETENESS = 70
LOW_COMPLETENESS_RELIEF = 5

DOWNGRADE_BELOW = 25
UPGRADE_ABOVE = 75
UPGRADES_NEEDED = 2

CREDIBILITY_BASE = {
    Rating.ALIGNED: 88,
    Rating.ALIGNING: 72,
    Rating.PARTIALLY_ALIGNED: 52,
    Rating.MISALIGNED: 28,
}
YES_NUDGE = 0.25
SCORE_NUDGE = 0.15
FULL_COMPLETENESS = 95
MAX_COMPLETENESS_PENALTY = 5.0
CREDIBILITY_FLOOR = 25
CREDIBILITY_CEILING = 92


@dataclass(frozen=True)
class SectionRole:
    """Finds a section by case-insensitive substring match on its id or title."""

    name: str
    patterns: tuple[str, ...]

    def matches(self, section_id: str, section_title: str) -> bool:
        haystack = f"{section_id}\n{section_title}".lower()
        return any(pattern in haystack for pattern in self.patterns)


DEFAULT_ROLES: dict[str, SectionRole] = {
    RED_FLAG: SectionRole(RED_FLAG, ("red flag", "red_flag", "red-flag", "misaligned")),
    ACCOUNTABILITY: SectionRole(ACCOUNTABILITY, ("accountab",)),
    DEPTH: SectionRole(DEPTH, ("depth", "planning")),
    ACTION: SectionRole(ACTION, ("action", "implementation")),
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _percent(part: float, whole: float) -> int:
    return round_half_up(100 * part / whole) if whole > 0 else 0


def _section_key(evaluation: QuestionEvaluation) -> str:
    return evaluation.section_id or evaluation.section_title or "unknown_section"


def _build_section(
    section_id: str,
    section_title: str,
    evaluations: list[QuestionEvaluation],
    expected: int,
) -> SectionResult:
    yes = sum(1 for e in evaluations if e.response is Answer.YES)
    no = sum(1 for e in evaluations if e.response is Answer.NO)
    total = len(evaluations)
    processed = sum(1 for e in evaluations if not e.fallback)
    score = sum(e.score for e in evaluations)
    max_score = sum(e.max_score for e in evaluations)
    return SectionResult(
        section_id=section_id,
        section_title=section_title,
        questions=list(evaluations),
        yes_count=yes,
        no_count=no,
        na_count=total - yes - no,
        total=total,
        yes_percentage=_percent(yes, total),
        expected_questions=expected,
        processed_questions=processed,
        completeness=_percent(processed, expected),
        section_score=score,
        section_max_score=max_score,
        section_percentage=_percent(score, max_score),
    )


def aggregate(
    evaluations: Iterable[QuestionEvaluation],
    questionnaire: Questionnaire | None = None,
) -> list[SectionResult]:
    """Tally evaluations per section. Pure: same input, same output."""
    grouped: dict[str, list[QuestionEvaluation]] = {}
    titles: dict[str, str] = {}
    for evaluation in evaluations:
        key = _section_key(evaluation)
        grouped.setdefault(key, []).append(evaluation)
        titles.setdefault(key, evaluation.section_title or key)

    results: list[SectionResult] = []
    if questionnaire is not None:
        for section in questionnaire.sections:
            results.append(
                _build_section(
                    section.id,
                    section.title,
                    grouped.pop(section.id, []),
                    expected=len(section.questions),
                )
            )
    for key, items in grouped.items():
        results.append(_build_section(key, titles[key], items, expected=len(items)))
    return results


def find_section(
    sections: list[SectionResult],
    role: SectionRole,
    exclude: Iterable[str] = (),
) -> SectionResult | None:
    skipped = set(exclude)
    for section in sections:
        if section.section_id in skipped:
            continue
        if role.matches(section.section_id, section.section_title):
            return section
    return None


def rating_for_score(combined_score: int, completeness: int) -> Rating:
    relief = LOW_COMPLETENESS_RELIEF if completeness < LOW_COMPLETENESS else 0
    if combined_score >= ALIGNED_THRESHOLD - relief:
        return Rating.ALIGNED
    if combined_score >= ALIGNING_THRESHOLD - relief:
        return Rating.ALIGNING
    if combined_score >= PARTIAL_THRESHOLD:
        return Rating.PARTIALLY_ALIGNED
    return Rating.MISALIGNED


def downgrade(rating: Rating) -> Rating:
    if rating is Rating.ALIGNED:
        return Rating.ALIGNING
    if rating is Rating.ALIGNING:
        return Rating.PARTIALLY_ALIGNED
    return rating


def clamp_credibility(raw: float) -> int:
    return max(CREDIBILITY_FLOOR, min(CREDIBILITY_CEILING, round_half_up(raw)))


def credibility_score(
    rating: Rating,
    average_yes_percentage: float,
    overall_score: int,
    completeness: int,
) -> int:
    raw = CREDIBILITY_BASE[rating]
    raw += (average_yes_percentage - 50) * YES_NUDGE
    raw += (overall_score - 50) * SCORE_NUDGE
    if completeness < FULL_COMPLETENESS:
        raw -= min(MAX_COMPLETENESS_PENALTY, (FULL_COMPLETENESS - completeness) * 0.1)
    return clamp_credibility(raw)


def _base_section(
    sections: list[SectionResult],
    roles: dict[str, SectionRole],
) -> SectionResult | None:
    found = find_section(sections, roles[ACCOUNTABILITY])
    if found is not None:
        return found
    answered = [s for s in sections if s.total > 0]
    if not answered:
        return None
    fallback = max(answered, key=lambda s: s.total)
    log.warning(
        "No accountability section matched; using '%s' (%d questions) as base section",
        fallback.section_title,
        fallback.total,
    )
    return fallback


def finalize(
    sections: list[SectionResult],
    roles: dict[str, SectionRole] | None = None,
) -> Verdict:
    roles = roles or DEFAULT_ROLES
    answered = [s for s in sections if s.total > 0]
    total_score = sum(s.section_score for s in sections)
    max_possible = sum(s.section_max_score for s in sections)
    overall_score = _percent(total_score, max_possible)
    average_yes = (
        sum(s.yes_percentage for s in answered) / len(answered) if answered else 0.0
    )
    completeness = _percent(
        sum(s.processed_questions for s in sections),
        sum(s.expected_questions for s in sections),
    )

    def verdict(rating: Rating, combined: int, reasoning: str, flagged: list[str]) -> Verdict:
        return Verdict(
            overall_result=rating,
            credibility_score=credibility_score(rating, average_yes, overall_score, completeness),
            red_flag_triggered=bool(flagged),
            red_flag_questions=flagged,
            reasoning=reasoning,
            combined_score=combined,
            overall_score=overall_score,
            average_yes_percentage=round(average_yes, 2),
            completeness=completeness,
            total_score=total_score,
            max_possible_score=max_possible,
        )

    red_section = find_section(sections, roles[RED_FLAG])
    if red_section is not None:
        flagged = [e.question_text for e in red_section.questions if e.response is Answer.NO]
        if flagged:
            log.warning(
                "Red flag triggered by %d question(s) in '%s'",
                len(flagged),
                red_section.section_title,
            )
            reasoning = (
                f"Red flag triggered by {len(flagged)} critical issue(s) in "
                f"'{red_section.section_title}': {'; '.join(flagged)}. "
                f"Overall result forced to Misaligned. Completeness {completeness}%."
            )
            return verdict(Rating.MISALIGNED, 0, reasoning, flagged)

    base = _base_section(sections, roles)
    base_yes = base.yes_percentage if base is not None else 0
    combined = round_half_up(BASE_SECTION_WEIGHT * base_yes + AVERAGE_WEIGHT * average_yes)
    rating = rating_for_score(combined, completeness)
    parts = [
        f"Base score {combined} from "
        f"'{base.section_title if base is not None else 'no section'}' ({base_yes}% yes) "
        f"and {average_yes:.0f}% average yes across {len(answered)} section(s): {rating.value}."
    ]

    downgrades: list[str] = []
    upgrades: list[str] = []
    # The base section already drives the score; it never doubles as depth or action.
    used: list[str] = [base.section_id] if base is not None else []
    for role_name in (DEPTH, ACTION):
        section = find_section(sections, roles[role_name], exclude=used)
        if section is None or section.total == 0:
            continue
        used.append(section.section_id)
        if section.yes_percentage < DOWNGRADE_BELOW:
            before = rating
            rating = downgrade(rating)
            downgrades.append(f"'{section.section_title}' ({section.yes_percentage}% yes)")
            log.info(
                "Downgrade from %s to %s by '%s'",
                before.value,
                rating.value,
                section.section_title,
            )
        elif section.yes_percentage > UPGRADE_ABOVE:
            upgrades.append(f"'{section.section_title}' ({section.yes_percentage}% yes)")

    if downgrades:
        parts.append(f"Downgraded by {', '.join(downgrades)}.")
    if upgrades:
        parts.append(f"Upgrade signals from {', '.join(upgrades)}.")
    if len(upgrades) >= UPGRADES_NEEDED and not downgrades and rating is Rating.ALIGNING:
        rating = Rating.ALIGNED
        parts.append("Promoted to Aligned.")

    completeness_note = f"Completeness {completeness}%"
    if completeness < LOW_COMPLETENESS:
        completeness_note += f" (thresholds lowered by {LOW_COMPLETENESS_RELIEF} points)"
    parts.append(completeness_note + ".")
    return verdict(rating, combined, " ".join(parts), [])
