"""
Threshold evaluator.

Compares a resolved metric value with a rule's threshold using the rule's
comparison operator.

Key Features:
    - Six operators: gt, lt, gte, lte, eq, neq
    - Exact comparison for eq/neq (no epsilon)
    - Threshold kind is carried but not interpreted: percentage thresholds
      are compared as raw numbers

Example:
    >>> evaluator = ThresholdEvaluator()
    >>> evaluator.evaluate(5.0001, ComparisonOperator.GT, 5)
    True
    >>> evaluator.evaluate(5, ComparisonOperator.GT, 5)
    False
"""

from typing import Union

import structlog

from stream_alerts.models.alerts import AlertRule, ComparisonOperator

logger = structlog.get_logger(__name__)


class ThresholdEvaluator:
    """
    Stateless threshold comparison.

    Example:
        >>> evaluator = ThresholdEvaluator()
        >>> evaluator.evaluate(5.0, "eq", 5)
        True
    """

    def evaluate(
        self,
        value: float,
        operator: Union[ComparisonOperator, str],
        threshold: float,
    ) -> bool:
        """
        Check whether value compared to threshold breaches.

        Args:
            value: Resolved metric value.
            operator: Comparison operator (enum or its string value).
            threshold: Threshold value.

        Returns:
            bool: True if the comparison holds.

        Raises:
            ValueError: If the operator is unknown.
        """
        return ComparisonOperator(operator).evaluate(value, threshold)

    def evaluate_rule(self, rule: AlertRule, value: float) -> bool:
        """
        Evaluate a rule against a resolved value.

        Args:
            rule: The rule being evaluated.
            value: Resolved metric value.

        Returns:
            bool: True if the rule's condition is breached.
        """
        breached = self.evaluate(
            value,
            rule.condition.operator,
            rule.threshold.value,
        )

        logger.debug(
            "threshold_evaluated",
            rule_id=rule.id,
            metric_value=value,
            operator=rule.condition.operator.value,
            threshold=rule.threshold.value,
            threshold_kind=rule.threshold.kind.value,
            breached=breached,
        )

        return breached


def create_evaluator() -> ThresholdEvaluator:
    """
    Factory function to create a ThresholdEvaluator.

    Returns:
        ThresholdEvaluator: A new evaluator instance.
    """
    return ThresholdEvaluator()
