"""
Reason Code Taxonomy Tests.
"""

import pytest

from smart_execution.errors import (
    REASON_CODES,
    ErrorCategory,
    ReasonCode,
    category_of,
    get_reason_info,
    is_policy_denial,
    is_pre_submission,
)


class TestReasonCodeRegistry:
    """Tests for the reason code registry."""

    def test_every_code_registered(self):
        assert set(REASON_CODES) == set(ReasonCode)

    def test_every_entry_has_guidance(self):
        for info in REASON_CODES.values():
            assert info.description
            assert info.recommended_action

    @pytest.mark.parametrize("code,category", [
        (ReasonCode.INVALID_NOTIONAL, ErrorCategory.VALIDATION),
        (ReasonCode.TIER_LIMIT_EXCEEDED, ErrorCategory.POLICY),
        (ReasonCode.EXCEEDS_LTV, ErrorCategory.POLICY),
        (ReasonCode.EMPTY_PLAN, ErrorCategory.PLANNING),
        (ReasonCode.SIGNER_ERROR, ErrorCategory.SUBMISSION),
        (ReasonCode.CONFIRMATION_TIMEOUT, ErrorCategory.CONFIRMATION),
        (ReasonCode.EXECUTION_IN_PROGRESS, ErrorCategory.CONCURRENCY),
        (ReasonCode.QUOTE_UNAVAILABLE, ErrorCategory.EXTERNAL),
        (ReasonCode.CANCELLED, ErrorCategory.CANCELLATION),
    ])
    def test_categories(self, code, category):
        assert category_of(code) == category

    def test_lookup_by_string(self):
        assert get_reason_info("EXCEEDS_LTV").code == ReasonCode.EXCEEDS_LTV

    def test_policy_denials(self):
        assert is_policy_denial(ReasonCode.TIER_LIMIT_EXCEEDED) is True
        assert is_policy_denial(ReasonCode.INVALID_NOTIONAL) is False
        assert is_policy_denial(None) is False

    @pytest.mark.parametrize("code,expected", [
        (ReasonCode.INVALID_NOTIONAL, True),
        (ReasonCode.TIER_LIMIT_EXCEEDED, True),
        (ReasonCode.INVALID_PLAN, True),
        (ReasonCode.QUOTE_UNAVAILABLE, True),
        (ReasonCode.SUBMISSION_REJECTED, False),
        (ReasonCode.CONFIRMATION_FAILED, False),
        (ReasonCode.CANCELLED, False),
        (None, False),
    ])
    def test_pre_submission(self, code, expected):
        assert is_pre_submission(code) is expected
