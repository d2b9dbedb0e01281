"""Recurring schedule state machine.

This module implements the ScheduleStateMachine that governs the schedule
status of recurring orders. It validates transitions against a fixed table,
runs guards and applies side effects to the order in memory. It performs no
I/O; persisting the order and recomputing delivery dates belong to the
caller.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from recurring_orders.core.logging import get_logger
from recurring_orders.services.orders.enums import ScheduleStatus
from recurring_orders.services.orders.exceptions import InvalidScheduleTransitionError

logger = get_logger(__name__)

SCHEDULE_TRANSITIONS: Dict[ScheduleStatus, frozenset[ScheduleStatus]] = {
    ScheduleStatus.ACTIVE: frozenset({ScheduleStatus.PAUSED, ScheduleStatus.ENDED}),
    ScheduleStatus.PAUSED: frozenset({ScheduleStatus.ACTIVE, ScheduleStatus.ENDED}),
    ScheduleStatus.ENDED: frozenset(),
}


@dataclass(frozen=True)
class ScheduleTransition:
    """Outcome of a schedule status change request."""

    previous: ScheduleStatus
    current: ScheduleStatus

    @property
    def changed(self) -> bool:
        return self.previous != self.current

    @property
    def resumed(self) -> bool:
        """True when the schedule moved back into the active state."""
        return self.changed and self.current == ScheduleStatus.ACTIVE


class ScheduleStateMachine:
    """State machine for recurring schedule transitions.

    ACTIVE and PAUSED may move to each other or to ENDED; ENDED is terminal.
    Requesting the state an order is already in is a no-op, which makes
    every transition safe to retry.
    """

    def __init__(self) -> None:
        self._transition_guards: Dict[
            ScheduleStatus, Callable[[Any], Optional[str]]
        ] = {
            ScheduleStatus.ACTIVE: self._guard_has_rule,
        }
        self._side_effects: Dict[ScheduleStatus, Callable[[Any], None]] = {
            ScheduleStatus.ENDED: self._effect_ended,
        }

    @staticmethod
    def can_transition(current: ScheduleStatus, target: ScheduleStatus) -> bool:
        """Check the transition table; same-state requests are always allowed."""
        return current == target or target in SCHEDULE_TRANSITIONS[current]

    def validate_transition(self, order: Any, target: ScheduleStatus) -> ScheduleStatus:
        """Validate that ``order`` may move to ``target``.

        Args:
            order: Recurring order
            target: Desired schedule status

        Returns:
            The order's current schedule status

        Raises:
            InvalidScheduleTransitionError: If the order is not recurring, the
                transition is not in the table, or a guard rejects it
        """
        current = order.schedule_status
        if not order.is_recurring or current is None:
            raise InvalidScheduleTransitionError(
                "Order does not have a recurring schedule",
                current_state=None,
                target_state=target.value,
                order_id=str(order.id),
            )

        if not self.can_transition(current, target):
            raise InvalidScheduleTransitionError(
                f"Invalid schedule transition from {current.value} to {target.value}",
                current_state=current.value,
                target_state=target.value,
                order_id=str(order.id),
                allowed_transitions=sorted(s.value for s in SCHEDULE_TRANSITIONS[current]),
            )

        if current != target and target in self._transition_guards:
            failure = self._transition_guards[target](order)
            if failure:
                raise InvalidScheduleTransitionError(
                    failure,
                    current_state=current.value,
                    target_state=target.value,
                    order_id=str(order.id),
                    guard_failed=True,
                )

        return current

    def apply_transition(self, order: Any, target: ScheduleStatus) -> ScheduleTransition:
        """Move ``order`` to ``target`` and run the target's side effects.

        Raises:
            InvalidScheduleTransitionError: If the transition is not permitted
        """
        current = self.validate_transition(order, target)
        if current == target:
            logger.debug(
                "Schedule transition is a no-op",
                order_id=str(order.id),
                schedule_status=current.value,
            )
            return ScheduleTransition(previous=current, current=current)

        order.schedule_status = target
        side_effect = self._side_effects.get(target)
        if side_effect is not None:
            side_effect(order)

        logger.info(
            "Schedule transition applied",
            order_id=str(order.id),
            transition=f"{current.value}->{target.value}",
        )
        return ScheduleTransition(previous=current, current=target)

    def _guard_has_rule(self, order: Any) -> Optional[str]:
        if not order.recurrence:
            return "Cannot activate a schedule without a recurrence rule"
        return None

    def _effect_ended(self, order: Any) -> None:
        order.next_delivery_at = None


_state_machine = ScheduleStateMachine()


def get_schedule_state_machine() -> ScheduleStateMachine:
    """Get the shared schedule state machine instance."""
    return _state_machine
