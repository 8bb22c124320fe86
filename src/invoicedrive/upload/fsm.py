"""Storage status lifecycle state machine.

Each status change is validated against a fresh FSM positioned at the
record's current status.  The FSM is purely a validation tool -- it does
NOT perform DB writes.  :class:`~invoicedrive.upload.state.StorageStatusStore`
persists the resulting status.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from invoicedrive.models import StorageStatus
from invoicedrive.upload.exceptions import InvalidTransitionError


class StorageLifecycleSM(StateMachine):
    """Four-state lifecycle of an archived invoice.

    States:
        pending  -- Record created, upload not yet settled.
        stored   -- Uploaded; terminal for this artifact version.
        failed   -- Last attempt failed; re-enterable via ``retry``.
        disabled -- Storage was switched off when the artifact was generated.
    """

    pending = State("pending", initial=True, value="pending")
    stored = State("stored", final=True, value="stored")
    failed = State("failed", value="failed")
    disabled = State("disabled", final=True, value="disabled")

    store = pending.to(stored)
    fail = pending.to(failed)
    disable = pending.to(disabled)
    retry = failed.to(pending)


_EVENT_FOR_TARGET = {
    StorageStatus.STORED: "store",
    StorageStatus.FAILED: "fail",
    StorageStatus.DISABLED: "disable",
    StorageStatus.PENDING: "retry",
}


def create_fsm(current_state: str | StorageStatus) -> StorageLifecycleSM:
    """Create an FSM instance at the given status."""
    return StorageLifecycleSM(start_value=StorageStatus(current_state).value)


def next_status(current: StorageStatus, target: StorageStatus) -> StorageStatus:
    """Validate ``current -> target`` and return *target*.

    Raises:
        InvalidTransitionError: If the lifecycle forbids the move.
    """
    current = StorageStatus(current)
    target = StorageStatus(target)
    fsm = create_fsm(current)
    try:
        fsm.send(_EVENT_FOR_TARGET[target])
    except TransitionNotAllowed as exc:
        raise InvalidTransitionError(
            f"Cannot move from {current.value} to {target.value}"
        ) from exc
    return StorageStatus(fsm.current_state_value)
