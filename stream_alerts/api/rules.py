"""
Rule test API endpoints.

Provides:
    POST /rules/test           - Check an ad-hoc rule body
    POST /rules/{rule_id}/test - Check a stored rule

Both answer "would this rule fire right now" without opening incidents or
sending notifications. Failures are reported as {success: false, error}.
"""

from typing import Any, Dict, Optional
from uuid import uuid4

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from stream_alerts.api.app import AppState, get_app_state
from stream_alerts.detection.preview import preview_rule
from stream_alerts.models.alerts import (
    AggregationFunction,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertThreshold,
    ComparisonOperator,
    ThresholdKind,
)
from stream_alerts.storage.postgres_client import PostgresClientError

logger = structlog.get_logger(__name__)

router = APIRouter()


class ConditionBody(BaseModel):
    """Rule condition as sent by API clients."""

    metric: str = Field(..., min_length=1)
    operator: ComparisonOperator
    window: int = Field(default=300, ge=1, description="Window in seconds")
    aggregation: AggregationFunction = AggregationFunction.AVG


class ThresholdBody(BaseModel):
    """Rule threshold as sent by API clients."""

    value: float
    type: ThresholdKind = ThresholdKind.ABSOLUTE


class RuleTestRequest(BaseModel):
    """Ad-hoc rule to check."""

    name: str = "Ad-hoc rule"
    orgId: str = "adhoc"
    clusterId: Optional[str] = None
    condition: ConditionBody
    threshold: ThresholdBody
    severity: AlertSeverity = AlertSeverity.WARNING

    def to_rule(self) -> AlertRule:
        """Build the domain rule checked by preview_rule."""
        return AlertRule(
            id=f"adhoc-{uuid4()}",
            org_id=self.orgId,
            cluster_id=self.clusterId,
            name=self.name,
            condition=AlertCondition(
                metric_path=self.condition.metric,
                operator=self.condition.operator,
                window_seconds=self.condition.window,
                aggregation=self.condition.aggregation,
            ),
            threshold=AlertThreshold(
                value=self.threshold.value,
                kind=self.threshold.type,
            ),
            severity=self.severity,
        )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post("/rules/test", summary="Check an ad-hoc rule")
async def test_rule_body(
    body: RuleTestRequest,
    state: AppState = Depends(get_app_state),
) -> Dict[str, Any]:
    """
    Check whether an ad-hoc rule would fire now.

    Returns:
        Dict[str, Any]: {success, wouldFire, metricValue, threshold} or
        {success: false, error}.
    """
    try:
        rule = body.to_rule()
    except ValidationError as e:
        return _error(400, f"Invalid rule: {e.errors()[0]['msg']}")

    result = await preview_rule(rule, state.resolver, state.evaluator)
    return result.to_response()


@router.post("/rules/{rule_id}/test", summary="Check a stored rule")
async def test_stored_rule(
    rule_id: str,
    state: AppState = Depends(get_app_state),
) -> Dict[str, Any]:
    """
    Check whether a stored rule would fire now.

    Returns:
        Dict[str, Any]: Preview result; 404 if the rule does not exist.
    """
    if state.rule_store is None:
        return _error(503, "Rule store unavailable")

    try:
        rule = await state.rule_store.get_rule(rule_id)
    except PostgresClientError as e:
        logger.error("rule_lookup_failed", rule_id=rule_id, error=str(e))
        return _error(503, "Rule store unavailable")

    if rule is None:
        return _error(404, "Rule not found")

    result = await preview_rule(rule, state.resolver, state.evaluator)
    return result.to_response()
