"""
Promotion State Machine

    REQUESTED
        │
        ▼
    VALIDATING ──────────────► REJECTED
        │
        ▼
    DEPLOYING ───────────────────────────┐
        │                                │
        ▼                                │
    CREATING_EXTERNAL_PRODUCT ───────────┤
        │                                │
        ▼                                ▼
    CREATING_EXTERNAL_PRICE ─────────► FAILED
        │                                ▲
        ▼                                │
    PERSISTING ──────────────────────────┘
        │
        ▼
    COMPLETED

REJECTED, COMPLETED and FAILED are terminal. Only transitions listed in
VALID_TRANSITIONS are allowed; anything else is a programming error.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import structlog

from promotion.errors import InvalidTransitionError

logger = structlog.get_logger()


class PromotionState(str, Enum):
    REQUESTED = "requested"
    VALIDATING = "validating"
    REJECTED = "rejected"
    DEPLOYING = "deploying"
    CREATING_EXTERNAL_PRODUCT = "creating_external_product"
    CREATING_EXTERNAL_PRICE = "creating_external_price"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_TRANSITIONS: dict[PromotionState, set[PromotionState]] = {
    PromotionState.REQUESTED: {PromotionState.VALIDATING, PromotionState.REJECTED},
    PromotionState.VALIDATING: {PromotionState.DEPLOYING, PromotionState.REJECTED},
    PromotionState.DEPLOYING: {PromotionState.CREATING_EXTERNAL_PRODUCT, PromotionState.FAILED},
    PromotionState.CREATING_EXTERNAL_PRODUCT: {PromotionState.CREATING_EXTERNAL_PRICE, PromotionState.FAILED},
    PromotionState.CREATING_EXTERNAL_PRICE: {PromotionState.PERSISTING, PromotionState.FAILED},
    PromotionState.PERSISTING: {PromotionState.COMPLETED, PromotionState.FAILED},
    # Terminal states - no transitions out
    PromotionState.REJECTED: set(),
    PromotionState.COMPLETED: set(),
    PromotionState.FAILED: set(),
}

TERMINAL_STATES = frozenset(state for state, targets in VALID_TRANSITIONS.items() if not targets)

# Progress reported on the deployment record while in each state
STATE_PROGRESS: dict[PromotionState, tuple[int, str]] = {
    PromotionState.DEPLOYING: (20, "Preparing production deployment..."),
    PromotionState.CREATING_EXTERNAL_PRODUCT: (40, "Creating product in production environment..."),
    PromotionState.CREATING_EXTERNAL_PRICE: (60, "Creating price in production environment..."),
    PromotionState.PERSISTING: (80, "Linking production identifiers..."),
    PromotionState.COMPLETED: (100, "Product successfully deployed to production"),
}


def can_transition(from_state: PromotionState, to_state: PromotionState) -> bool:
    return to_state in VALID_TRANSITIONS[from_state]


@dataclass
class StateTransition:
    from_state: PromotionState
    to_state: PromotionState
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: str = ""


class PromotionStateMachine:
    """Tracks one promotion attempt and refuses illegal transitions."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        self.state = PromotionState.REQUESTED
        self.history: list[StateTransition] = []

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, to_state: PromotionState, reason: str = "") -> StateTransition:
        if not can_transition(self.state, to_state):
            raise InvalidTransitionError(
                f"Invalid promotion transition {self.state.value} -> {to_state.value}",
                product_id=self.product_id,
            )
        event = StateTransition(from_state=self.state, to_state=to_state, reason=reason)
        self.history.append(event)
        logger.debug(
            "promotion.transition",
            product_id=self.product_id,
            from_state=self.state.value,
            to_state=to_state.value,
            reason=reason,
        )
        self.state = to_state
        return event
