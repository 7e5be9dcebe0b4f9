"""Shared fixtures for credibility tests."""

from __future__ import annotations

import pytest

from credibility.config import AssessmentSettings
from credibility.progress import ProgressTracker
from credibility.store import InMemoryProgressStore, InMemoryReportStore


@pytest.fixture
def settings() -> AssessmentSettings:
    """Fast settings: no inter-question delay, small batches."""
    return AssessmentSettings(
        batch_size=2,
        strategy="single_best",
        question_delay_s=0.0,
        question_timeout_s=5.0,
        run_timeout_s=60.0,
    )


@pytest.fixture
def tracker() -> ProgressTracker:
    return ProgressTracker(InMemoryProgressStore(), InMemoryReportStore())


@pytest.fixture
def plan_text() -> str:
    """A transition plan long enough to pass document validation."""
    paragraphs = [
        "Our board of directors oversees the climate transition plan and reviews "
        "progress against targets every quarter.",
        "We have committed to net zero emissions by 2050, with an interim target to "
        "reduce scope 1 and 2 emissions by 50 percent by 2030 from a 2019 baseline.",
        "Executive remuneration is linked to emissions reduction milestones.",
        "Capital expenditure for renewable energy projects is set out in the annual "
        "budget and disclosed in the sustainability report.",
    ]
    return "\n\n".join(paragraphs)


@pytest.fixture
def questionnaire_payload() -> dict:
    """Accountability section with two questions and a one-question red-flag section."""
    return {
        "version": "2.1",
        "sections": [
            {
                "id": "accountability",
                "title": "Accountability & Governance",
                "questions": [
                    {"id": "a1", "text": "Does the board oversee the transition plan?"},
                    {"id": "a2", "text": "Is executive remuneration linked to climate targets?"},
                ],
            },
            {
                "id": "red_flags",
                "title": "Red Flags",
                "questions": [
                    {"id": "r1", "text": "Does the company avoid new coal capacity?"},
                ],
            },
        ],
    }
