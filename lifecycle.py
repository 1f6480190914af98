"""
Order lifecycle operations.

Each operation validates the move with ``workflow.validate_transition`` and
then applies it as one conditional write that matches the status it was
validated against. A writer that loses a race gets InvalidTransitionError
(status moved on) or AlreadyAssignedError (slot taken), never a silent
overwrite. Notifications are sent after the write and cannot fail it.
"""
import logging
import secrets
import time
from typing import List, Optional, get_args

from pymongo import ReturnDocument

import ledger
import store
from access import ensure_assignee
from assignment import display_name, resolve_delivery_person, resolve_designer
from database import collection, find_by_id, get_documents, utcnow
from errors import (
    AlreadyAssignedError,
    InvalidTransitionError,
    NotFoundError,
    OTPValidationError,
    RoleMismatchError,
    ValidationError,
)
from notifications import notify, short_ref
from schemas import DeliverySlot, Milestone, ProductionMilestone, TimelineEntry
from workflow import (
    OrderStatus,
    is_custom_order,
    parse_status,
    role_may_transition,
    track_for,
    validate_transition,
)

logger = logging.getLogger(__name__)

S = OrderStatus
MILESTONE_ORDER = list(get_args(Milestone))


def generate_otp() -> str:
    return str(1000 + secrets.randbelow(9000))


def generate_tracking_number(prefix: str = "DD") -> str:
    stamp = format(int(time.time() * 1000), "x").upper()
    return f"{prefix}{stamp}{secrets.token_hex(3).upper()}"


def load_order(order_id: str) -> dict:
    order = find_by_id("order", order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def _timeline_entry(status: str, note: Optional[str], actor: dict) -> dict:
    return TimelineEntry(status=status, note=note, at=utcnow(), by=actor.get("_id"),
                         by_role=actor.get("role")).model_dump()


def _lost_write(order_id, expected_status: str, slot: Optional[str] = None):
    current = load_order(str(order_id))
    if slot and current.get(slot):
        raise AlreadyAssignedError()
    if current["status"] != expected_status:
        raise InvalidTransitionError(
            f"Order status changed to {current['status']} before this update was applied; refresh and retry"
        )
    raise InvalidTransitionError("Order changed before this update was applied; refresh and retry")


def _advance(order: dict, target: OrderStatus, actor: dict, note: Optional[str] = None,
             fields: Optional[dict] = None, guard: Optional[dict] = None, slot: Optional[str] = None,
             check_role: bool = True) -> dict:
    target = validate_transition(order["status"], target, is_custom_order(order))
    if check_role and not role_may_transition(actor.get("role"), target):
        raise RoleMismatchError(f"Role '{actor.get('role')}' cannot move an order to {target.value}")

    query = {"_id": order["_id"], "status": order["status"]}
    query.update(guard or {})
    update = {
        "$set": {"status": target.value, "updated_at": utcnow(), **(fields or {})},
        "$push": {"timeline": _timeline_entry(target.value, note, actor)},
    }
    updated = collection("order").find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    if updated is None:
        _lost_write(order["_id"], order["status"], slot)
    logger.info("order %s: %s -> %s by %s %s", order["_id"], order["status"], target.value,
                actor.get("role"), actor.get("_id"))
    return updated


# Manager side

def claim(order_id: str, actor: dict) -> dict:
    order = load_order(order_id)
    updated = _advance(order, S.ASSIGNED_TO_MANAGER, actor,
                       note=f"Assigned to manager {display_name(actor)}",
                       fields={"manager_id": actor["_id"], "manager_assigned_at": utcnow()})
    notify(order["user_id"], order_id, f"Your order {short_ref(order)} has been confirmed")
    return updated


def assign_designer(order_id: str, designer_id: str, actor: dict) -> dict:
    order = load_order(order_id)
    if not is_custom_order(order):
        raise InvalidTransitionError("Cannot assign a designer to a shop order")
    if order.get("designer_id"):
        raise AlreadyAssignedError("A designer is already assigned to this order")
    designer = resolve_designer(designer_id)
    designer_id = str(designer["_id"])

    updated = _advance(order, S.ASSIGNED_TO_DESIGNER, actor,
                       note=f"Assigned to designer {display_name(designer)}",
                       fields={"designer_id": designer_id, "designer_assigned_at": utcnow()},
                       guard={"designer_id": None}, slot="designer_id")
    notify(designer_id, order_id, f"New custom design order {short_ref(order)} assigned to you")
    notify(order["user_id"], order_id, "Your custom order has been assigned to a designer")
    return updated


def assign_delivery(order_id: str, delivery_person_id: str, actor: dict,
                    delivery_slot: Optional[dict] = None) -> dict:
    order = load_order(order_id)
    if order.get("delivery_person_id"):
        raise AlreadyAssignedError("A delivery person is already assigned to this order")
    person = resolve_delivery_person(delivery_person_id)
    person_id = str(person["_id"])

    otp = generate_otp()
    fields = {"delivery_person_id": person_id, "delivery_assigned_at": utcnow(), "otp": otp, "otp_verified": False}
    if delivery_slot:
        fields["delivery_slot"] = DeliverySlot(**delivery_slot).model_dump()
    updated = _advance(order, S.READY_FOR_DELIVERY, actor,
                       note=f"Assigned to delivery person {display_name(person)}",
                       fields=fields, guard={"delivery_person_id": None}, slot="delivery_person_id")
    notify(person_id, order_id, f"Order {short_ref(order)} assigned to you for delivery")
    notify(order["user_id"], order_id, f"Your order is ready for delivery. Delivery OTP: {otp}", "success")
    return updated


# Designer side

def accept(order_id: str, actor: dict) -> dict:
    order = load_order(order_id)
    ensure_assignee(order, actor)
    if order["status"] == S.DESIGNER_ACCEPTED.value:
        return order
    try:
        updated = _advance(order, S.DESIGNER_ACCEPTED, actor, note="Designer accepted the order",
                           fields={"designer_accepted_at": utcnow()})
    except InvalidTransitionError:
        current = load_order(order_id)
        if current["status"] == S.DESIGNER_ACCEPTED.value:
            return current
        raise
    notify(order.get("manager_id"), order_id, f"Designer accepted order {short_ref(order)}", "success")
    notify(order["user_id"], order_id, "A designer has accepted your custom order", "success")
    return updated


def start_production(order_id: str, actor: dict) -> dict:
    order = load_order(order_id)
    ensure_assignee(order, actor)
    updated = _advance(order, S.IN_PRODUCTION, actor, note="Designer started production",
                       fields={"progress_percentage": 0, "production_started_at": utcnow()})
    notify(order["user_id"], order_id, "The designer has started working on your order")
    return updated


def _parse_progress(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValidationError("Progress must be a whole number between 0 and 100")
    value = int(value)
    if not 0 <= value <= 100:
        raise ValidationError("Progress must be between 0 and 100")
    return value


def update_progress(order_id: str, actor: dict, progress_percentage, note: Optional[str] = None) -> dict:
    progress = _parse_progress(progress_percentage)
    order = load_order(order_id)
    ensure_assignee(order, actor)
    if order["status"] != S.IN_PRODUCTION.value:
        raise InvalidTransitionError("Progress can only be updated while the order is in production")
    previous = order.get("progress_percentage", 0)
    if progress < previous:
        raise ValidationError(f"Progress cannot go back from {previous}% to {progress}%")

    update = {"$set": {"progress_percentage": progress, "updated_at": utcnow()}}
    if note:
        update["$push"] = {"timeline": _timeline_entry(S.IN_PRODUCTION.value, note, actor)}
    updated = collection("order").find_one_and_update(
        {"_id": order["_id"], "status": S.IN_PRODUCTION.value, "progress_percentage": {"$lte": progress}},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        current = load_order(order_id)
        if current["status"] != S.IN_PRODUCTION.value:
            raise InvalidTransitionError("Order is no longer in production")
        raise ValidationError(f"Progress is already at {current.get('progress_percentage')}%")

    if progress != previous and progress > 0 and progress % 25 == 0:
        notify(order["user_id"], order_id, f"Your order is {progress}% complete")
    return updated


def milestone_progress(milestone: str, status: str) -> int:
    """Share of the milestone sequence finished once milestone reaches status."""
    done = MILESTONE_ORDER.index(milestone) + (1 if status == "completed" else 0)
    return round(done / len(MILESTONE_ORDER) * 100)


def record_milestone(order_id: str, actor: dict, milestone: str, status: str = "in_progress",
                     notes: Optional[str] = None, images: Optional[List[str]] = None) -> dict:
    order = load_order(order_id)
    ensure_assignee(order, actor)
    if order["status"] != S.IN_PRODUCTION.value:
        raise InvalidTransitionError("Milestones can only be recorded while the order is in production")
    entry = ProductionMilestone(order_id=str(order["_id"]), designer_id=actor["_id"], milestone=milestone,
                                status=status, notes=notes, images=images or [],
                                completed_at=utcnow() if status == "completed" else None)

    now = utcnow()
    fields = {"designer_id": entry.designer_id, "status": entry.status, "notes": entry.notes,
              "completed_at": entry.completed_at, "updated_at": now}
    if images is not None:
        fields["images"] = entry.images
    collection("productionmilestone").update_one(
        {"order_id": entry.order_id, "milestone": entry.milestone},
        {"$set": fields, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )

    progress = milestone_progress(entry.milestone, entry.status)
    label = entry.milestone.replace("_", " ")
    note = f"{label.upper()}: {entry.status}" + (f" - {entry.notes}" if entry.notes else "")
    updated = collection("order").find_one_and_update(
        {"_id": order["_id"], "status": S.IN_PRODUCTION.value},
        {
            "$set": {"current_milestone": entry.milestone, "updated_at": now},
            "$max": {"progress_percentage": progress},
            "$push": {"timeline": _timeline_entry(S.IN_PRODUCTION.value, note, actor)},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidTransitionError("Order is no longer in production")

    logger.info("order %s milestone %s %s by %s", order_id, entry.milestone, entry.status, actor["_id"])
    notify(order["user_id"], order_id,
           f"Progress update: {label} - {entry.status}. "
           f"Your order is {updated['progress_percentage']}% complete!")
    return updated


def list_milestones(order_id: str, viewer: dict) -> List[dict]:
    order = load_order(order_id)
    role = viewer.get("role")
    allowed = (
        role in ("manager", "admin")
        or (role == "customer" and order.get("user_id") == viewer["_id"])
        or (role == "designer" and order.get("designer_id") == viewer["_id"])
    )
    if not allowed:
        raise RoleMismatchError("You may not view this order's milestones")
    rows = get_documents("productionmilestone", {"order_id": str(order["_id"])})
    rows.sort(key=lambda r: MILESTONE_ORDER.index(r["milestone"]))
    return rows


def complete_production(order_id: str, actor: dict, note: Optional[str] = None) -> dict:
    order = load_order(order_id)
    ensure_assignee(order, actor)
    validate_transition(order["status"], S.PRODUCTION_COMPLETED, is_custom_order(order))
    if order.get("progress_percentage", 0) < 100:
        raise ValidationError("Progress must reach 100% before production can be completed")
    updated = _advance(order, S.PRODUCTION_COMPLETED, actor, note=note or "Production completed by designer",
                       fields={"production_completed_at": utcnow()},
                       guard={"progress_percentage": {"$gte": 100}})
    try:
        ledger.record_earning(updated)
    except Exception:
        logger.exception("failed to record earning for order %s", order_id)
    notify(order.get("manager_id"), order_id,
           f"Order {short_ref(order)} production completed, ready to assign for delivery", "success")
    notify(order["user_id"], order_id, "Your custom order is ready! Waiting for delivery assignment", "success")
    return updated


# Delivery side

def ship(order_id: str, actor: dict, tracking_number: Optional[str] = None) -> dict:
    order = load_order(order_id)
    ensure_assignee(order, actor)
    tracking = tracking_number or order.get("tracking_number") or generate_tracking_number()
    updated = _advance(order, S.OUT_FOR_DELIVERY, actor, note=f"Out for delivery. Tracking: {tracking}",
                       fields={"tracking_number": tracking, "out_for_delivery_at": utcnow()})
    notify(order["user_id"], order_id,
           f"Your order is out for delivery! Keep your OTP ready: {order.get('otp')}")
    return updated


def deliver(order_id: str, actor: dict, otp: Optional[str]) -> dict:
    order = load_order(order_id)
    ensure_assignee(order, actor)
    validate_transition(order["status"], S.DELIVERED, is_custom_order(order))
    expected = order.get("otp")
    if not expected or not otp or not secrets.compare_digest(str(otp).strip(), expected):
        logger.warning("wrong delivery OTP for order %s from %s", order_id, actor.get("_id"))
        raise OTPValidationError()

    now = utcnow()
    updated = _advance(order, S.DELIVERED, actor, note="Delivered, OTP verified",
                       fields={"delivered_at": now, "otp_verified": True, "otp_verified_at": now,
                               "payment_status": "paid"},
                       guard={"otp": expected})
    notify(order["user_id"], order_id, "Your order has been delivered. Thank you for shopping with DesignDen!",
           "success")
    notify(order.get("manager_id"), order_id, f"Order {short_ref(order)} delivered", "success")
    return updated


# Cancellation and admin override

def cancel(order_id: str, actor: dict, reason: Optional[str] = None) -> dict:
    order = load_order(order_id)
    if actor.get("role") == "customer":
        if order.get("user_id") != actor["_id"]:
            raise NotFoundError("Order not found")
        if order["status"] != S.PENDING.value:
            raise InvalidTransitionError("Order can only be cancelled while it is pending")
        check_role = False
    else:
        check_role = True

    now = utcnow()
    updated = _advance(order, S.CANCELLED, actor, note=reason or "Order cancelled",
                       fields={"cancelled_at": now, "cancel_reason": reason}, check_role=check_role)

    held = ledger.hold_earnings_for_order(str(order["_id"]))
    if held:
        logger.info("order %s cancelled after production; %d earning(s) put on hold", order_id, held)
    for item in order.get("items", []):
        if item.get("product_id"):
            store.release_stock(item["product_id"], item["quantity"])

    message = f"Order {short_ref(order)} was cancelled"
    if reason:
        message += f": {reason}"
    for user_id in {order.get("user_id"), order.get("designer_id"), order.get("delivery_person_id")}:
        if user_id and user_id != actor["_id"]:
            notify(user_id, order_id, message, "warning")
    return updated


def set_status(order_id: str, actor: dict, status: str, otp: Optional[str] = None,
               note: Optional[str] = None) -> dict:
    """Admin override; only moves to the next status, through the same rules as the dedicated routes."""
    order = load_order(order_id)
    target = validate_transition(order["status"], parse_status(status), is_custom_order(order))
    if target is S.ASSIGNED_TO_MANAGER:
        return claim(order_id, actor)
    if target is S.OUT_FOR_DELIVERY:
        return ship(order_id, actor)
    if target is S.DELIVERED:
        return deliver(order_id, actor, otp)
    if target is S.CANCELLED:
        return cancel(order_id, actor, note)
    if target in (S.ASSIGNED_TO_DESIGNER, S.READY_FOR_DELIVERY):
        raise ValidationError(f"Use the assignment route to move an order to {target.value}")
    raise RoleMismatchError(f"Only the assigned designer can move an order to {target.value}")


# Views

def order_view(order: dict, viewer: dict) -> dict:
    """Serialized order; the delivery OTP is only shown to the customer who placed it."""
    d = dict(order)
    d["_id"] = str(d["_id"])
    if viewer.get("_id") != d.get("user_id"):
        d.pop("otp", None)
    return d


def list_orders(status: Optional[str] = None, **filters) -> List[dict]:
    filt = {k: v for k, v in filters.items() if v is not None}
    if status:
        try:
            filt["status"] = parse_status(status).value
        except InvalidTransitionError:
            raise ValidationError(f"Unknown status filter '{status}'") from None
    return get_documents("order", filt, sort=[("created_at", -1)])


def tracking(order: dict) -> dict:
    custom = is_custom_order(order)
    steps = track_for(custom)
    current = order["status"]
    reached = {entry["status"] for entry in order.get("timeline", [])} | {S.PENDING.value}
    return {
        "orderNumber": order.get("order_number"),
        "orderType": "custom" if custom else "shop",
        "status": current,
        "progressPercentage": order.get("progress_percentage", 0),
        "trackingNumber": order.get("tracking_number"),
        "steps": [{"status": s.value, "completed": s.value in reached, "current": s.value == current}
                  for s in steps],
        "timeline": order.get("timeline", []),
    }
