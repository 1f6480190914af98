"""
Order status workflow

The closed set of order statuses, the two tracks an order can follow and the
single transition check every mutating route goes through.
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Tuple

from errors import InvalidTransitionError


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED_TO_MANAGER = "assigned_to_manager"
    ASSIGNED_TO_DESIGNER = "assigned_to_designer"
    DESIGNER_ACCEPTED = "designer_accepted"
    IN_PRODUCTION = "in_production"
    PRODUCTION_COMPLETED = "production_completed"
    READY_FOR_DELIVERY = "ready_for_delivery"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


S = OrderStatus

READYMADE_TRACK: Tuple[OrderStatus, ...] = (
    S.PENDING,
    S.ASSIGNED_TO_MANAGER,
    S.READY_FOR_DELIVERY,
    S.OUT_FOR_DELIVERY,
    S.DELIVERED,
)

CUSTOM_TRACK: Tuple[OrderStatus, ...] = (
    S.PENDING,
    S.ASSIGNED_TO_MANAGER,
    S.ASSIGNED_TO_DESIGNER,
    S.DESIGNER_ACCEPTED,
    S.IN_PRODUCTION,
    S.PRODUCTION_COMPLETED,
    S.READY_FOR_DELIVERY,
    S.OUT_FOR_DELIVERY,
    S.DELIVERED,
)

TERMINAL: FrozenSet[OrderStatus] = frozenset({S.DELIVERED, S.CANCELLED})

# Statuses in which a custom order carries its designer link
DESIGNER_LINKED: FrozenSet[OrderStatus] = frozenset(CUSTOM_TRACK[2:])

# Roles allowed to drive an order into each status. Designer and delivery
# transitions are further restricted to the assignee by the lifecycle code.
TRANSITION_ROLES: Mapping[OrderStatus, FrozenSet[str]] = {
    S.ASSIGNED_TO_MANAGER: frozenset({"manager", "admin"}),
    S.ASSIGNED_TO_DESIGNER: frozenset({"manager", "admin"}),
    S.DESIGNER_ACCEPTED: frozenset({"designer"}),
    S.IN_PRODUCTION: frozenset({"designer"}),
    S.PRODUCTION_COMPLETED: frozenset({"designer"}),
    S.READY_FOR_DELIVERY: frozenset({"manager", "admin"}),
    S.OUT_FOR_DELIVERY: frozenset({"delivery", "manager", "admin"}),
    S.DELIVERED: frozenset({"delivery", "manager", "admin"}),
    S.CANCELLED: frozenset({"manager", "admin"}),
}


def _successor_map(track: Tuple[OrderStatus, ...]) -> Dict[OrderStatus, FrozenSet[OrderStatus]]:
    edges = {}
    for current, nxt in zip(track, track[1:]):
        successors = {nxt}
        if current not in TERMINAL:
            successors.add(S.CANCELLED)
        edges[current] = frozenset(successors)
    edges[track[-1]] = frozenset()
    edges[S.CANCELLED] = frozenset()
    return edges


_EDGES = {
    False: _successor_map(READYMADE_TRACK),
    True: _successor_map(CUSTOM_TRACK),
}


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown order status '{value}'")


def is_custom_order(order: Mapping) -> bool:
    """An order is custom when any line carries a design and no product."""
    if order.get("order_type") == "custom":
        return True
    return any(item.get("design_id") and not item.get("product_id") for item in order.get("items", []))


def track_for(custom: bool) -> Tuple[OrderStatus, ...]:
    return CUSTOM_TRACK if custom else READYMADE_TRACK


def allowed_next(current, custom: bool) -> List[OrderStatus]:
    current = parse_status(current)
    track = track_for(custom)
    if current not in track and current is not S.CANCELLED:
        return []
    return sorted(_EDGES[custom][current], key=lambda s: (s is S.CANCELLED, s.value))


def validate_transition(current, target, custom: bool) -> OrderStatus:
    """Return the parsed target status or raise InvalidTransitionError."""
    current = parse_status(current)
    target = parse_status(target)
    if current in TERMINAL:
        raise InvalidTransitionError(f"Order is already {current.value}")
    if target not in allowed_next(current, custom):
        kind = "custom" if custom else "readymade"
        raise InvalidTransitionError(
            f"Cannot move a {kind} order from {current.value} to {target.value}"
        )
    return target


def role_may_transition(role: str, target) -> bool:
    return role in TRANSITION_ROLES.get(parse_status(target), frozenset())
