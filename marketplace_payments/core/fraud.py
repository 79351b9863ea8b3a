"""
Rule-based fraud scoring for payment initiation.

Each rule adds a weight to the score and names a flag; the clamped total is
compared against the review and block thresholds. Weights and thresholds are
policy, built from settings.
"""
from decimal import Decimal
from typing import List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field, model_validator

from marketplace_payments.config import Settings
from marketplace_payments.core.enums import FraudRecommendation, PaymentMethod
from marketplace_payments.core.validation import is_valid_phone

logger = structlog.get_logger(__name__)

MAX_SCORE = 100


class FraudPolicy(BaseModel):
    """Weights and thresholds for fraud scoring."""

    high_amount_threshold: Decimal = Decimal("1000000")
    high_amount_weight: int = Field(default=30, ge=0, le=MAX_SCORE)
    invalid_phone_weight: int = Field(default=10, ge=0, le=MAX_SCORE)
    repeated_failure_weight: int = Field(default=20, ge=0, le=MAX_SCORE)
    repeated_failure_threshold: int = Field(default=3, ge=1)
    review_threshold: int = Field(default=40, ge=0, le=MAX_SCORE)
    block_threshold: int = Field(default=70, ge=0, le=MAX_SCORE)

    @model_validator(mode="after")
    def check_threshold_order(self) -> "FraudPolicy":
        if self.review_threshold > self.block_threshold:
            raise ValueError("review_threshold must not exceed block_threshold")
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> "FraudPolicy":
        """Build the policy from application settings."""
        return cls(
            high_amount_threshold=settings.fraud_high_amount_threshold,
            high_amount_weight=settings.fraud_high_amount_weight,
            invalid_phone_weight=settings.fraud_invalid_phone_weight,
            repeated_failure_weight=settings.fraud_repeated_failure_weight,
            repeated_failure_threshold=settings.fraud_repeated_failure_threshold,
            review_threshold=settings.fraud_review_threshold,
            block_threshold=settings.fraud_block_threshold,
        )


class FraudContext(BaseModel):
    """Historical signals about the order being paid."""

    previous_failed_attempts: int = Field(default=0, ge=0)


class FraudAssessment(BaseModel):
    """Result of fraud screening."""

    risk_score: int = Field(ge=0, le=MAX_SCORE)
    flags: List[str] = Field(default_factory=list)
    recommendation: FraudRecommendation

    @property
    def is_blocked(self) -> bool:
        return self.recommendation == FraudRecommendation.BLOCK


class FraudScorer:
    """
    Weighted rule-based fraud scorer.

    Rules:
    - amount above the high-value threshold → ``high_amount``
    - phone present but not +226XXXXXXXX → ``invalid_phone_format``
    - repeated failed payments on the same order → ``repeated_failures``
    """

    def __init__(self, policy: Optional[FraudPolicy] = None) -> None:
        self.policy = policy or FraudPolicy()

    def assess(
        self,
        amount: Decimal,
        customer_phone: Optional[str],
        method: PaymentMethod,
        context: Optional[FraudContext] = None,
    ) -> FraudAssessment:
        """
        Score a payment attempt.

        Args:
            amount: Payment amount
            customer_phone: Customer phone, if any
            method: Payment method
            context: Optional order history signals

        Returns:
            FraudAssessment: Clamped score, triggered flags and recommendation
        """
        context = context or FraudContext()
        score = 0
        flags: List[str] = []

        for weight, flag in (
            self._score_amount(amount),
            self._score_phone(customer_phone),
            self._score_history(context),
        ):
            if flag:
                score += weight
                flags.append(flag)

        score = max(0, min(MAX_SCORE, score))
        recommendation = self.recommend(score)

        logger.info(
            "fraud_assessment_completed",
            method=PaymentMethod(method).value,
            risk_score=score,
            flags=flags,
            recommendation=recommendation.value,
        )

        return FraudAssessment(risk_score=score, flags=flags, recommendation=recommendation)

    def recommend(self, risk_score: int) -> FraudRecommendation:
        """Convert a risk score to a recommendation."""
        if risk_score > self.policy.block_threshold:
            return FraudRecommendation.BLOCK
        if risk_score > self.policy.review_threshold:
            return FraudRecommendation.REVIEW
        return FraudRecommendation.APPROVE

    def _score_amount(self, amount: Decimal) -> Tuple[int, Optional[str]]:
        if Decimal(amount) > self.policy.high_amount_threshold:
            return self.policy.high_amount_weight, "high_amount"
        return 0, None

    def _score_phone(self, phone: Optional[str]) -> Tuple[int, Optional[str]]:
        # A missing phone is not suspicious by itself
        if phone and not is_valid_phone(phone):
            return self.policy.invalid_phone_weight, "invalid_phone_format"
        return 0, None

    def _score_history(self, context: FraudContext) -> Tuple[int, Optional[str]]:
        if context.previous_failed_attempts >= self.policy.repeated_failure_threshold:
            return self.policy.repeated_failure_weight, "repeated_failures"
        return 0, None
