"""
Order fulfillment state machine.

Orders move strictly forward through
``pending -> confirmed -> processing -> shipped -> completed``.
The move into ``processing`` mints the exchange code that the buyer later
hands to the seller; ``shipped -> completed`` is only reachable by presenting
that code (see :func:`complete_with_handshake`).

Every function here is pure. Orders are frozen models and each transition
returns a new value for the caller to merge into its own collection.
"""
import random
import secrets
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

EXCHANGE_CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_EXCHANGE_CODE_LENGTH = 6
DEFAULT_SELLER_PENDING_LIMIT = 5


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"


# Progression order; index + 1 is the only legal successor
STATUS_FLOW: List[OrderStatus] = list(OrderStatus)

# Statuses during which the exchange code exists
CODE_BEARING_STATUSES = frozenset({
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.COMPLETED,
})

OPEN_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
})


class DeliveryType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class Role(str, Enum):
    SELLER = "seller"
    BUYER = "buyer"


class ActionKind(str, Enum):
    ADVANCE = "advance"
    COMPLETE_WITH_HANDSHAKE = "complete_with_handshake"
    VIEW_EXCHANGE_CODE = "view_exchange_code"
    ADD_REVIEW = "add_review"


class Order(BaseModel):
    """
    An order as seen by one party.

    ``buyer``/``buyer_phone`` are populated in the seller's view,
    ``supplier``/``supplier_phone`` in the buyer's view.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    buyer: Optional[str] = None
    buyer_phone: Optional[str] = None
    supplier: Optional[str] = None
    supplier_phone: Optional[str] = None

    product: str
    quantity: str
    total_price: float = Field(..., ge=0)

    status: OrderStatus = OrderStatus.PENDING
    delivery_type: DeliveryType = DeliveryType.PICKUP
    delivery_address: Optional[str] = None

    exchange_code: Optional[str] = None
    review_id: Optional[str] = None
    order_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_invariants(self) -> "Order":
        if self.delivery_type == DeliveryType.DELIVERY and not (self.delivery_address or "").strip():
            raise ValueError("delivery orders require a delivery_address")
        has_code = self.exchange_code is not None
        if has_code != (self.status in CODE_BEARING_STATUSES):
            raise ValueError(f"exchange_code must be set exactly when status is processing, shipped or completed (status={self.status.value})")
        return self


class NextAction(BaseModel):
    """The single action a role may take on an order right now."""
    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    label: str
    target: Optional[OrderStatus] = None

    @property
    def changes_state(self) -> bool:
        return self.kind in (ActionKind.ADVANCE, ActionKind.COMPLETE_WITH_HANDSHAKE)


class TimelineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: str
    description: str


class SellerCapacity(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_pending: int
    limit: int
    can_accept_more: bool
    message: str


class OrderSummary(BaseModel):
    counts: Dict[OrderStatus, int]
    total_orders: int
    total_amount: float


# --- Errors ---

class OrderWorkflowError(Exception):
    """Base class for rejected order operations."""
    reason = "workflow error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownOrder(OrderWorkflowError):
    reason = "unknown order"


class InvalidTransition(OrderWorkflowError):
    reason = "invalid transition"


class HandshakeMismatch(OrderWorkflowError):
    reason = "code mismatch"


# --- Exchange code ---

def generate_exchange_code(length: int = DEFAULT_EXCHANGE_CODE_LENGTH, rng: Optional[random.Random] = None) -> str:
    """
    Mint a short uppercase alphanumeric code.

    It is a per-order shared secret, not a global identifier. ``rng`` lets
    deterministic hosts (Temporal workflows) supply their own randomness.
    """
    if rng is None:
        return "".join(secrets.choice(EXCHANGE_CODE_ALPHABET) for _ in range(length))
    return "".join(rng.choice(EXCHANGE_CODE_ALPHABET) for _ in range(length))


# --- Next action ---

def _seller_action(order: Order) -> Optional[NextAction]:
    if order.status == OrderStatus.CONFIRMED:
        return NextAction(kind=ActionKind.ADVANCE, label="Mark as Processing", target=OrderStatus.PROCESSING)
    if order.status == OrderStatus.PROCESSING:
        return NextAction(kind=ActionKind.ADVANCE, label="Mark as Shipped", target=OrderStatus.SHIPPED)
    if order.status == OrderStatus.SHIPPED:
        return NextAction(kind=ActionKind.COMPLETE_WITH_HANDSHAKE, label="Complete Order", target=OrderStatus.COMPLETED)
    return None


def _buyer_action(order: Order) -> Optional[NextAction]:
    if order.status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED):
        return NextAction(kind=ActionKind.VIEW_EXCHANGE_CODE, label="View Exchange Code")
    if order.status == OrderStatus.COMPLETED and order.review_id is None:
        return NextAction(kind=ActionKind.ADD_REVIEW, label="Add Review")
    return None


_ACTIONS_BY_ROLE: Dict[Role, Callable[[Order], Optional[NextAction]]] = {
    Role.SELLER: _seller_action,
    Role.BUYER: _buyer_action,
}


def next_action(order: Order, role: Role) -> Optional[NextAction]:
    """Return the action available to ``role`` on ``order``, or None."""
    return _ACTIONS_BY_ROLE[Role(role)](order)


# --- Transitions ---

def successor(status: OrderStatus) -> Optional[OrderStatus]:
    idx = STATUS_FLOW.index(status)
    if idx + 1 < len(STATUS_FLOW):
        return STATUS_FLOW[idx + 1]
    return None


def check_advance(order: Optional[Order], target: OrderStatus) -> Order:
    """Raise unless ``advance(order, target)`` would succeed."""
    if order is None:
        raise UnknownOrder("Order not found")

    target = OrderStatus(target)
    if successor(order.status) != target:
        raise InvalidTransition(f"Cannot move order {order.id} from {order.status.value} to {target.value}")
    if target == OrderStatus.COMPLETED:
        raise InvalidTransition(f"Order {order.id} can only be completed with the buyer's exchange code")
    return order


def advance(
    order: Optional[Order],
    target: OrderStatus,
    *,
    code_factory: Optional[Callable[[], str]] = None,
) -> Order:
    """
    Move ``order`` to ``target``, which must be the immediate successor of
    its status.

    Entering ``processing`` mints the exchange code. Completion is not
    reachable here; use :func:`complete_with_handshake`.

    Raises:
        UnknownOrder: ``order`` is None.
        InvalidTransition: ``target`` does not follow the current status.
    """
    order = check_advance(order, target)
    target = OrderStatus(target)

    update: Dict[str, object] = {"status": target}
    if target == OrderStatus.PROCESSING and order.exchange_code is None:
        update["exchange_code"] = (code_factory or generate_exchange_code)()
    return order.model_copy(update=update)


def complete_with_handshake(order: Optional[Order], supplied_code: Optional[str]) -> Order:
    """
    Complete a shipped order when ``supplied_code`` equals its exchange code.

    The comparison is exact and case-sensitive. On failure the caller's
    order value is left as it was.

    Raises:
        UnknownOrder: ``order`` is None.
        InvalidTransition: the order is not ``shipped``.
        HandshakeMismatch: the code does not match.
    """
    if order is None:
        raise UnknownOrder("Order not found")
    if order.status != OrderStatus.SHIPPED:
        raise InvalidTransition(f"Cannot complete order {order.id} with status {order.status.value}")
    if supplied_code is None or supplied_code != order.exchange_code:
        raise HandshakeMismatch("Invalid exchange code. Please enter the correct code provided by the buyer.")
    return order.model_copy(update={"status": OrderStatus.COMPLETED})


def view_exchange_code(order: Order, role: Role) -> Optional[str]:
    """The buyer's read-only view of the code; sellers never read it here."""
    if Role(role) != Role.BUYER:
        return None
    return order.exchange_code


def merge_order(orders: Iterable[Order], updated: Order) -> List[Order]:
    """Return a new list with ``updated`` replacing the order with the same id."""
    merged = []
    found = False
    for existing in orders:
        if existing.id == updated.id:
            merged.append(updated)
            found = True
        else:
            merged.append(existing)
    if not found:
        raise UnknownOrder(f"Order {updated.id} not found")
    return merged


# --- Read models ---

def timeline(order: Order) -> List[TimelineEntry]:
    reached = STATUS_FLOW.index(order.status)
    placed_by = order.buyer or "buyer"
    accepted_by = order.supplier or "seller"
    milestones = [
        TimelineEntry(stage="placed", description=f"Order placed by {placed_by}"),
        TimelineEntry(stage="accepted", description=f"Order accepted by {accepted_by}"),
        TimelineEntry(stage="processing", description="Order moved to processing. Exchange code generated."),
        TimelineEntry(stage="shipped", description="Order shipped"),
        TimelineEntry(stage="completed", description="Order completed with exchange code verification"),
    ]
    return milestones[: reached + 1]


def seller_capacity(orders: Iterable[Order], limit: int = DEFAULT_SELLER_PENDING_LIMIT) -> SellerCapacity:
    pending = sum(1 for o in orders if o.status in OPEN_STATUSES)
    can_accept = pending < limit
    if can_accept:
        message = "Seller can accept more orders"
    else:
        message = f"Seller has reached maximum pending orders limit ({limit})"
    return SellerCapacity(current_pending=pending, limit=limit, can_accept_more=can_accept, message=message)


def summarize_orders(orders: Iterable[Order]) -> OrderSummary:
    counts = {status: 0 for status in OrderStatus}
    total_amount = 0.0
    total = 0
    for o in orders:
        counts[o.status] += 1
        total_amount += o.total_price
        total += 1
    return OrderSummary(counts=counts, total_orders=total, total_amount=total_amount)
