"""
Helper for running django-fsm transitions from services.

Services call transitions through apply_transition so a disallowed
transition surfaces as the domain's InvalidStateTransitionError instead of
django-fsm's TransitionNotAllowed.

Usage:
    from settlement.state_machines.transitions import apply_transition

    apply_transition(payout, "complete", external_transaction_id="tr_123")
    payout.save()
"""

from __future__ import annotations

from typing import Any

from django_fsm import TransitionNotAllowed

from settlement.exceptions import InvalidStateTransitionError


def apply_transition(instance: Any, name: str, *args: Any, field: str = "status", **kwargs: Any) -> None:
    """
    Call transition ``name`` on ``instance`` (without saving).

    Raises:
        InvalidStateTransitionError: If the transition is not allowed from
            the current state
    """
    current = getattr(instance, field)
    try:
        getattr(instance, name)(*args, **kwargs)
    except TransitionNotAllowed as e:
        raise InvalidStateTransitionError(
            f"Cannot {name} {instance.__class__.__name__} from '{current}' state",
            details={
                "id": str(instance.pk),
                "current_state": str(current),
                "transition": name,
            },
        ) from e
