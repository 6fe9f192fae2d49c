"""Confidence scoring by recovered-field count and prompt variant."""

import pytest

from bills_ai.core.ai.parsing import PromptVariant, score_confidence


@pytest.mark.parametrize(
    "variant,expected",
    [
        (PromptVariant.IMAGE, 0.8),
        (PromptVariant.FILE, 0.7),
        (PromptVariant.TEXT_FALLBACK, 0.7),
        (PromptVariant.STRICT_RETRY, 0.7),
    ],
)
def test_recovered_fields(variant, expected):
    assert score_confidence(3, variant) == expected


@pytest.mark.parametrize("variant", list(PromptVariant))
def test_empty_fields_low_confidence(variant):
    assert score_confidence(0, variant) == 0.4
