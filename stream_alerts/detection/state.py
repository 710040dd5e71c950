"""
Per-rule runtime state.

Tracks when each rule last fired and whether it is currently firing. The
state lives in process memory only and is lost on restart; the rule store
remains the authority for whether an incident is open.

Key Features:
    - Cooldown check: elapsed when the rule never fired, or when
      now - last_fired_at >= cooldown
    - Only a fire sets last_fired_at; resolving never resets the cooldown
    - Snapshot for the health endpoint

Note:
    State is per process. Running more than one scheduler instance against
    the same rule store gives each its own cooldown map.

Example:
    >>> registry = RuleStateRegistry()
    >>> registry.cooldown_elapsed("r1", cooldown_seconds=300, now=now)
    True
    >>> registry.record_fire("r1", now)
    >>> registry.cooldown_elapsed("r1", cooldown_seconds=300, now=now)
    False
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RuleRuntimeState:
    """
    Ephemeral state for one rule.

    Attributes:
        last_fired_at: When the rule last opened an incident.
        is_firing: Whether the rule's last transition was a fire.
    """

    last_fired_at: Optional[datetime] = None
    is_firing: bool = False


class RuleStateRegistry:
    """
    Map of rule id to RuleRuntimeState.

    Each evaluation touches only its own rule's entry, so concurrent
    evaluations of different rules do not contend.

    Attributes:
        _states: Dictionary mapping rule ids to runtime state.
    """

    def __init__(self) -> None:
        self._states: Dict[str, RuleRuntimeState] = {}

        logger.debug("rule_state_registry_initialized")

    def get(self, rule_id: str) -> RuleRuntimeState:
        """
        Return the rule's state, creating an idle entry if absent.

        Args:
            rule_id: Rule identifier.

        Returns:
            RuleRuntimeState: The mutable state entry.
        """
        state = self._states.get(rule_id)
        if state is None:
            state = RuleRuntimeState()
            self._states[rule_id] = state
        return state

    def cooldown_elapsed(
        self,
        rule_id: str,
        cooldown_seconds: float,
        now: datetime,
    ) -> bool:
        """
        Check whether the rule may fire again.

        Args:
            rule_id: Rule identifier.
            cooldown_seconds: Rule cooldown.
            now: Evaluation time.

        Returns:
            bool: True if the rule never fired or the cooldown has passed.
        """
        state = self._states.get(rule_id)
        if state is None or state.last_fired_at is None:
            return True
        return (now - state.last_fired_at).total_seconds() >= cooldown_seconds

    def record_fire(self, rule_id: str, now: datetime) -> None:
        """Record that the rule opened an incident at now."""
        state = self.get(rule_id)
        state.last_fired_at = now
        state.is_firing = True

        logger.debug("rule_state_fired", rule_id=rule_id, fired_at=now.isoformat())

    def record_resolve(self, rule_id: str) -> None:
        """Record that the rule's incident resolved. Cooldown is untouched."""
        state = self.get(rule_id)
        state.is_firing = False

        logger.debug("rule_state_resolved", rule_id=rule_id)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """
        JSON-ready copy of all entries.

        Returns:
            Dict[str, Dict[str, Any]]: rule id to {lastFiredAt, isFiring}.
        """
        return {
            rule_id: {
                "lastFiredAt": state.last_fired_at.isoformat() if state.last_fired_at else None,
                "isFiring": state.is_firing,
            }
            for rule_id, state in self._states.items()
        }

    def __len__(self) -> int:
        return len(self._states)


def create_rule_state_registry() -> RuleStateRegistry:
    """
    Factory function to create a RuleStateRegistry.

    Returns:
        RuleStateRegistry: A new, empty registry.
    """
    return RuleStateRegistry()
