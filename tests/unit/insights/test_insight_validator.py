"""Tests for InsightValidator candidate filtering."""

import pytest

from memory_insight_service.insights.generators import InsightValidator
from memory_insight_service.models.jobs import Insight


def candidate(**overrides) -> Insight:
    data = {
        "insight_type": "pattern",
        "insight_category": "technical",
        "title": "Retry storms after deploys",
        "summary": "Clients retry aggressively when the API restarts.",
        "confidence_score": 0.7,
    }
    data.update(overrides)
    return Insight(**data)


@pytest.fixture
def validator():
    return InsightValidator(min_confidence=0.3, min_summary_length=10)


class TestInsightValidator:
    """Confidence, completeness, and duplicate checks."""

    def test_accepts_and_marks_validated(self, validator):
        accepted = validator.validate([candidate()])

        assert len(accepted) == 1
        assert accepted[0].validation_status == "validated"

    def test_does_not_mutate_input(self, validator):
        original = candidate()
        validator.validate([original])
        assert original.validation_status == "pending"

    def test_low_confidence_rejected(self, validator):
        assert validator.validate([candidate(confidence_score=0.29)]) == []

    def test_confidence_boundary_accepted(self, validator):
        assert len(validator.validate([candidate(confidence_score=0.3)])) == 1

    @pytest.mark.parametrize("field_name", ["title", "summary", "insight_type", "insight_category"])
    def test_missing_field_rejected(self, validator, field_name):
        assert validator.validate([candidate(**{field_name: "   "})]) == []

    def test_short_summary_rejected(self, validator):
        assert validator.validate([candidate(summary="too short")]) == []

    def test_duplicates_dropped(self, validator):
        first = candidate(title="Retry Storms after deploys")
        second = candidate(title="retry storms after-deploys", summary="Another phrasing of the same finding.")

        accepted = validator.validate([first, second])

        assert [i.title for i in accepted] == ["Retry Storms after deploys"]

    def test_rejected_candidate_does_not_block_duplicate(self, validator):
        rejected = candidate(confidence_score=0.1)
        accepted = validator.validate([rejected, candidate()])
        assert len(accepted) == 1

    def test_none_is_empty(self, validator):
        assert validator.validate(None) == []

    def test_rejection_reason(self, validator):
        assert validator.rejection_reason(candidate(), set()) is None
        assert validator.rejection_reason(candidate(summary="short"), set()) == "summary too short"
