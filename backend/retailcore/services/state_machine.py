# Overview: Transition tables for every document lifecycle in the core.

"""
One explicit table per entity. Services ask this module whether a move is
legal instead of comparing status strings themselves, so IllegalTransitionError
is raised uniformly with the entity, id, current and attempted state.
"""

from __future__ import annotations

from ..exceptions import IllegalTransitionError
from ..models.sales import SALE_STATUS_PAID, SALE_STATUS_VOIDED
from ..models.documents import (
    RETURN_STATUS_PENDING,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_REJECTED,
    REPLENISHMENT_STATUS_PENDING,
    REPLENISHMENT_STATUS_APPROVED,
    REPLENISHMENT_STATUS_ORDERED,
    REPLENISHMENT_STATUS_PARTIALLY_RECEIVED,
    REPLENISHMENT_STATUS_COMPLETED,
    REPLENISHMENT_STATUS_CANCELLED,
)


SALE_TRANSITIONS = {
    SALE_STATUS_PAID: {SALE_STATUS_VOIDED},
    SALE_STATUS_VOIDED: set(),
}

RETURN_TRANSITIONS = {
    RETURN_STATUS_PENDING: {RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED},
    RETURN_STATUS_APPROVED: {RETURN_STATUS_COMPLETED},
    RETURN_STATUS_COMPLETED: set(),
    RETURN_STATUS_REJECTED: set(),
}

REPLENISHMENT_TRANSITIONS = {
    REPLENISHMENT_STATUS_PENDING: {REPLENISHMENT_STATUS_APPROVED, REPLENISHMENT_STATUS_CANCELLED},
    REPLENISHMENT_STATUS_APPROVED: {REPLENISHMENT_STATUS_ORDERED, REPLENISHMENT_STATUS_CANCELLED},
    REPLENISHMENT_STATUS_ORDERED: {
        REPLENISHMENT_STATUS_PARTIALLY_RECEIVED,
        REPLENISHMENT_STATUS_COMPLETED,
        REPLENISHMENT_STATUS_CANCELLED,
    },
    # Further partial receipts keep the order in PARTIALLY_RECEIVED
    REPLENISHMENT_STATUS_PARTIALLY_RECEIVED: {
        REPLENISHMENT_STATUS_PARTIALLY_RECEIVED,
        REPLENISHMENT_STATUS_COMPLETED,
        REPLENISHMENT_STATUS_CANCELLED,
    },
    REPLENISHMENT_STATUS_COMPLETED: set(),
    REPLENISHMENT_STATUS_CANCELLED: set(),
}

MACHINES = {
    "sale": SALE_TRANSITIONS,
    "return": RETURN_TRANSITIONS,
    "replenishment": REPLENISHMENT_TRANSITIONS,
}


def _table(entity: str) -> dict:
    try:
        return MACHINES[entity]
    except KeyError:
        raise ValueError(f"Unknown state machine: {entity}")


def can_transition(entity: str, current: str, target: str) -> bool:
    return target in _table(entity).get(current, set())


def is_terminal(entity: str, state: str) -> bool:
    return not _table(entity).get(state)


def require_transition(entity: str, current: str, target: str, *, entity_id=None) -> str:
    """Return target if current -> target is legal, else raise IllegalTransitionError."""
    if can_transition(entity, current, target):
        return target
    label = entity if entity_id is None else f"{entity} {entity_id}"
    raise IllegalTransitionError(
        f"Cannot move {label} from {current} to {target}",
        details={
            "entity": entity,
            "id": entity_id,
            "current_status": current,
            "target_status": target,
            "allowed": sorted(_table(entity).get(current, set())),
        },
    )
