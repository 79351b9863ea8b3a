"""
Unit tests for fraud scoring.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from marketplace_payments.config import Settings
from marketplace_payments.core.enums import FraudRecommendation, PaymentMethod
from marketplace_payments.core.exceptions import PaymentValidationError
from marketplace_payments.core.fraud import FraudContext, FraudPolicy, FraudScorer
from marketplace_payments.core.validation import is_valid_phone, validate_customer_phone

VALID_PHONE = "+22670000001"


class TestFraudScorer:
    """Test suite for FraudScorer with the default policy."""

    @pytest.mark.unit
    def test_clean_payment_is_approved(self) -> None:
        assessment = FraudScorer().assess(
            Decimal("10000"), VALID_PHONE, PaymentMethod.ORANGE_MONEY
        )

        assert assessment.risk_score == 0
        assert assessment.flags == []
        assert assessment.recommendation == FraudRecommendation.APPROVE
        assert not assessment.is_blocked

    @pytest.mark.unit
    def test_high_amount(self) -> None:
        assessment = FraudScorer().assess(
            Decimal("2000000"), VALID_PHONE, PaymentMethod.BANK_TRANSFER
        )

        assert assessment.risk_score == 30
        assert assessment.flags == ["high_amount"]
        assert assessment.recommendation == FraudRecommendation.APPROVE

    @pytest.mark.unit
    def test_threshold_amount_is_not_high(self) -> None:
        """Test the high-amount rule is strictly greater-than."""
        assessment = FraudScorer().assess(
            Decimal("1000000"), VALID_PHONE, PaymentMethod.BANK_TRANSFER
        )
        assert assessment.risk_score == 0

    @pytest.mark.unit
    def test_invalid_phone_format(self) -> None:
        assessment = FraudScorer().assess(Decimal("5000"), "70000001", PaymentMethod.BANK_TRANSFER)

        assert assessment.risk_score == 10
        assert assessment.flags == ["invalid_phone_format"]

    @pytest.mark.unit
    def test_missing_phone_is_not_flagged(self) -> None:
        assessment = FraudScorer().assess(Decimal("5000"), None, PaymentMethod.CASH_ON_DELIVERY)
        assert assessment.flags == []

    @pytest.mark.unit
    def test_score_at_review_threshold_is_approved(self) -> None:
        """Test 40 (high amount + bad phone) does not exceed the review threshold."""
        assessment = FraudScorer().assess(
            Decimal("2000000"), "12345", PaymentMethod.BANK_TRANSFER
        )

        assert assessment.risk_score == 40
        assert assessment.flags == ["high_amount", "invalid_phone_format"]
        assert assessment.recommendation == FraudRecommendation.APPROVE

    @pytest.mark.unit
    def test_repeated_failures_push_into_review(self) -> None:
        assessment = FraudScorer().assess(
            Decimal("2000000"),
            "12345",
            PaymentMethod.BANK_TRANSFER,
            FraudContext(previous_failed_attempts=3),
        )

        assert assessment.risk_score == 60
        assert "repeated_failures" in assessment.flags
        assert assessment.recommendation == FraudRecommendation.REVIEW

    @pytest.mark.unit
    def test_failures_below_threshold_are_ignored(self) -> None:
        assessment = FraudScorer().assess(
            Decimal("5000"),
            VALID_PHONE,
            PaymentMethod.ORANGE_MONEY,
            FraudContext(previous_failed_attempts=2),
        )
        assert assessment.risk_score == 0

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "score,expected",
        [
            (0, FraudRecommendation.APPROVE),
            (40, FraudRecommendation.APPROVE),
            (41, FraudRecommendation.REVIEW),
            (70, FraudRecommendation.REVIEW),
            (71, FraudRecommendation.BLOCK),
            (100, FraudRecommendation.BLOCK),
        ],
    )
    def test_recommendation_boundaries(self, score: int, expected: FraudRecommendation) -> None:
        assert FraudScorer().recommend(score) == expected


class TestFraudPolicy:
    """Test suite for configurable fraud policy."""

    @pytest.mark.unit
    def test_heavier_policy_blocks(self) -> None:
        scorer = FraudScorer(FraudPolicy(high_amount_weight=65))
        assessment = scorer.assess(Decimal("2000000"), "12345", PaymentMethod.BANK_TRANSFER)

        assert assessment.risk_score == 75
        assert assessment.is_blocked

    @pytest.mark.unit
    def test_score_is_clamped(self) -> None:
        policy = FraudPolicy(
            high_amount_weight=60, invalid_phone_weight=60, block_threshold=90
        )
        assessment = FraudScorer(policy).assess(
            Decimal("2000000"), "bad", PaymentMethod.BANK_TRANSFER
        )
        assert assessment.risk_score == 100

    @pytest.mark.unit
    def test_review_above_block_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FraudPolicy(review_threshold=80, block_threshold=70)

    @pytest.mark.unit
    def test_from_settings(self) -> None:
        settings = Settings(
            payment_webhook_secret="secret",
            fraud_high_amount_threshold=Decimal("500000"),
            fraud_block_threshold=60,
        )
        policy = FraudPolicy.from_settings(settings)

        assert policy.high_amount_threshold == Decimal("500000")
        assert policy.block_threshold == 60
        assert policy.review_threshold == 40


class TestPhoneValidation:
    """Test suite for method-specific phone rules."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "phone,valid",
        [
            ("+22670000001", True),
            ("+2267000000", False),
            ("+226700000011", False),
            ("22670000001", False),
            ("+22570000001", False),
            ("", False),
            (None, False),
        ],
    )
    def test_phone_format(self, phone: str, valid: bool) -> None:
        assert is_valid_phone(phone) is valid

    @pytest.mark.unit
    def test_orange_money_requires_phone(self) -> None:
        with pytest.raises(PaymentValidationError, match="required"):
            validate_customer_phone(PaymentMethod.ORANGE_MONEY, None)

    @pytest.mark.unit
    def test_orange_money_rejects_malformed_phone(self) -> None:
        with pytest.raises(PaymentValidationError, match=r"\+226XXXXXXXX"):
            validate_customer_phone(PaymentMethod.ORANGE_MONEY, "70000001")

    @pytest.mark.unit
    def test_other_methods_accept_any_phone(self) -> None:
        validate_customer_phone(PaymentMethod.BANK_TRANSFER, "70000001")
        validate_customer_phone(PaymentMethod.CASH_ON_DELIVERY, None)
