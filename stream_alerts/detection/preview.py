"""
Side-effect free rule check.

Answers "would this rule fire right now" without touching incidents,
runtime state, notifications or the realtime bridge. Used by the manual
test endpoints.

Example:
    >>> result = await preview_rule(rule, resolver, evaluator)
    >>> result.to_response()
    {'success': True, 'wouldFire': True, 'metricValue': 1500.0, 'threshold': 1000.0}
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from stream_alerts.detection.errors import ResolutionUnavailable
from stream_alerts.detection.evaluator import ThresholdEvaluator
from stream_alerts.detection.resolver import MetricResolver
from stream_alerts.models.alerts import AlertRule
from stream_alerts.models.incidents import RuleTestResult

logger = structlog.get_logger(__name__)


async def preview_rule(
    rule: AlertRule,
    resolver: MetricResolver,
    evaluator: ThresholdEvaluator,
    now: Optional[datetime] = None,
) -> RuleTestResult:
    """
    Evaluate a rule once without side effects.

    Never raises: every failure is reported in the result's error field.

    Args:
        rule: Rule to check (stored or ad-hoc).
        resolver: Metric resolver.
        evaluator: Threshold evaluator.
        now: Evaluation time (defaults to current UTC time).

    Returns:
        RuleTestResult: Comparison result or error.
    """
    now = now or datetime.now(timezone.utc)

    try:
        value = await resolver.resolve_or_raise(rule, now)
    except ResolutionUnavailable as e:
        return RuleTestResult(error=str(e))
    except Exception as e:
        logger.error(
            "rule_preview_failed",
            rule_id=rule.id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return RuleTestResult(error=f"Failed to test rule: {e}")

    would_fire = evaluator.evaluate(value, rule.condition.operator, rule.threshold.value)

    logger.info(
        "rule_previewed",
        rule_id=rule.id,
        metric_value=value,
        threshold=rule.threshold.value,
        would_fire=would_fire,
    )

    return RuleTestResult(
        would_fire=would_fire,
        metric_value=value,
        threshold=rule.threshold.value,
    )
