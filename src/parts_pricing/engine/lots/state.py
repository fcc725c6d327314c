from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable

from parts_pricing.engine.lots.models import LotState, RepricingLot
from parts_pricing.util.errors import ConflictError

ALLOWED_TRANSITIONS: Dict[LotState, FrozenSet[LotState]] = {
    LotState.DRAFT: frozenset({LotState.SIMULATED, LotState.APPLIED}),
    LotState.SIMULATED: frozenset({LotState.SIMULATED, LotState.APPLIED}),
    LotState.APPLIED: frozenset({LotState.REVERTED}),
    LotState.REVERTED: frozenset(),
}


def predecessors(target: LotState) -> FrozenSet[LotState]:
    return frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def can_transition(current: LotState, target: LotState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_state(lot: RepricingLot, allowed: Iterable[LotState], operation: str) -> None:
    allowed = frozenset(allowed)
    if lot.state not in allowed:
        expected = ", ".join(sorted(state.value for state in allowed))
        raise ConflictError(
            f"cannot {operation} lot {lot.id} in state {lot.state.value} (expected {expected})"
        )


def transition(lot: RepricingLot, target: LotState, **updates: Any) -> RepricingLot:
    """Return ``lot`` moved to ``target``; the result is re-validated."""
    if not can_transition(lot.state, target):
        raise ConflictError(f"lot {lot.id} cannot move from {lot.state.value} to {target.value}")
    data = lot.model_dump()
    data.update(updates)
    data["state"] = target
    return RepricingLot.model_validate(data)
