"""
Designer earnings and payout ledger.

An Earning row is written when a designer completes production on an order.
It becomes payable once the order has been delivered for PAYOUT_HOLD_DAYS;
availability is computed when read, nothing runs on a schedule.

Payout requests move pending -> approved -> processing -> completed, or
pending -> rejected. Completing a request settles matured earnings oldest
first; when a request covers only part of an earning the row is split so the
ledger always sums to what the designer has earned.
"""
import logging
import secrets
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import COMMISSION_TIERS, MINIMUM_PAYOUT, PAYOUT_HOLD_DAYS
from database import as_utc, collection, create_document, get_documents, to_object_id, utcnow
from errors import InsufficientBalanceError, InvalidTransitionError, NotFoundError, ValidationError
from notifications import notify
from schemas import DesignerLedger, Earning, PayoutRequest
from workflow import OrderStatus

logger = logging.getLogger(__name__)

UNPAID = ("pending", "processing")
OPEN_PAYOUTS = ("pending", "approved", "processing")

# action -> (required current status, new status)
PAYOUT_ACTIONS = {
    "approve": ("pending", "approved"),
    "reject": ("pending", "rejected"),
    "process": ("approved", "processing"),
    "complete": ("processing", "completed"),
}

# Orders past this point have finished production and owe the designer
EARNING_STATUSES = (
    OrderStatus.PRODUCTION_COMPLETED.value,
    OrderStatus.READY_FOR_DELIVERY.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
    OrderStatus.DELIVERED.value,
)


def _money(value) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def commission_rate_for(lifetime_earnings: float) -> float:
    rate = COMMISSION_TIERS[0]["designerRate"]
    for tier in COMMISSION_TIERS:
        if lifetime_earnings >= tier["minEarnings"]:
            rate = tier["designerRate"]
    return rate


def designer_share(order_amount: float, commission_rate: float) -> float:
    """Designer's cut of an order, rounded half up to whole currency units."""
    share = Decimal(str(order_amount)) * Decimal(str(commission_rate)) / Decimal(100)
    return float(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def lifetime_earnings(designer_id: str) -> float:
    rows = get_documents("earning", {"designer_id": designer_id, "status": {"$ne": "on_hold"}})
    return _money(sum(r.get("designer_earning", 0) for r in rows))


def _earnings():
    col = collection("earning")
    # one primary row per order; rows split off by partial payouts carry split_of
    col.create_index([("order_id", 1), ("split_of", 1), ("payout_request_id", 1)],
                     unique=True, name="one_earning_per_order")
    return col


def record_earning(order: dict) -> dict:
    """Create the Earning for a completed order; returns the existing one if already recorded."""
    order_id = str(order["_id"])
    designer_id = order.get("designer_id")
    if not designer_id:
        raise ValidationError("Order has no designer to credit")

    rate = commission_rate_for(lifetime_earnings(designer_id))
    amount = float(order.get("total_amount", 0))
    earning = Earning(
        designer_id=designer_id,
        order_id=order_id,
        order_amount=amount,
        commission_rate=rate,
        designer_earning=designer_share(amount, rate),
    )
    now = utcnow()
    doc = earning.model_dump(exclude={"order_id", "split_of"})
    doc.update(created_at=now, updated_at=now)
    key = {"order_id": order_id, "split_of": None}
    try:
        existing = _earnings().find_one_and_update(key, {"$setOnInsert": doc}, upsert=True)
    except DuplicateKeyError:
        # another writer inserted between our match and upsert
        existing = collection("earning").find_one(key)
    if existing is not None:
        return existing
    row = collection("earning").find_one(key)
    logger.info("recorded earning %s for designer %s on order %s: %.2f at %s%%",
                row["_id"], designer_id, order_id, earning.designer_earning, rate)
    return row


def backfill_earnings(designer_id: str) -> int:
    """Record earnings that a failed side effect left missing."""
    orders = get_documents("order", {"designer_id": designer_id, "status": {"$in": list(EARNING_STATUSES)}})
    if not orders:
        return 0
    recorded = {e["order_id"] for e in get_documents("earning", {"designer_id": designer_id})}
    created = 0
    for order in orders:
        if str(order["_id"]) not in recorded:
            record_earning(order)
            created += 1
    if created:
        logger.warning("backfilled %d earnings for designer %s", created, designer_id)
    return created


def hold_earnings_for_order(order_id: str) -> int:
    res = collection("earning").update_many(
        {"order_id": order_id, "status": {"$in": list(UNPAID)}},
        {"$set": {"status": "on_hold", "updated_at": utcnow()}},
    )
    return res.modified_count


def _delivered_at(order_ids: List[str]) -> Dict[str, Optional[object]]:
    oids = [oid for oid in (to_object_id(i) for i in order_ids) if oid is not None]
    if not oids:
        return {}
    delivered = {}
    for order in collection("order").find({"_id": {"$in": oids}}):
        if order.get("status") == OrderStatus.DELIVERED.value:
            delivered[str(order["_id"])] = as_utc(order.get("delivered_at"))
    return delivered


def matured_earnings(designer_id: str, now=None) -> List[dict]:
    """Unpaid earnings whose order was delivered at least PAYOUT_HOLD_DAYS ago, oldest first."""
    now = now or utcnow()
    cutoff = now - timedelta(days=PAYOUT_HOLD_DAYS)
    rows = get_documents("earning", {"designer_id": designer_id, "status": {"$in": list(UNPAID)}})
    delivered = _delivered_at([r["order_id"] for r in rows])
    matured = []
    for row in rows:
        at = delivered.get(row["order_id"])
        if at is not None and at <= cutoff:
            row["delivered_at"] = at
            matured.append(row)
    matured.sort(key=lambda r: (r["delivered_at"], str(r["_id"])))
    return matured


def open_payout_total(designer_id: str) -> float:
    rows = get_documents("payoutrequest", {"designer_id": designer_id, "status": {"$in": list(OPEN_PAYOUTS)}})
    return _money(sum(r.get("amount", 0) for r in rows))


def available_balance(designer_id: str, now=None) -> float:
    matured = sum(r.get("designer_earning", 0) for r in matured_earnings(designer_id, now))
    return max(0.0, _money(matured - open_payout_total(designer_id)))


def earnings_summary(designer_id: str, now=None) -> dict:
    backfill_earnings(designer_id)
    rows = get_documents("earning", {"designer_id": designer_id}, sort=[("created_at", -1)])
    totals = {"pending": 0.0, "processing": 0.0, "paid": 0.0, "on_hold": 0.0}
    for row in rows:
        totals[row.get("status", "pending")] += row.get("designer_earning", 0)
    lifetime = _money(totals["pending"] + totals["processing"] + totals["paid"])
    rate = commission_rate_for(lifetime)
    next_tier = next((t for t in COMMISSION_TIERS if t["minEarnings"] > lifetime), None)
    return {
        "totalEarnings": lifetime,
        "paidOut": _money(totals["paid"]),
        "onHold": _money(totals["on_hold"]),
        "availableBalance": available_balance(designer_id, now),
        "pendingPayouts": open_payout_total(designer_id),
        "currentRate": rate,
        "nextTier": next_tier,
        "earnings": rows,
    }


def commission_info() -> dict:
    rate = COMMISSION_TIERS[0]["designerRate"]
    return {
        "designerRate": rate,
        "platformRate": 100 - rate,
        "minimumPayout": MINIMUM_PAYOUT,
        "holdDays": PAYOUT_HOLD_DAYS,
        "tiers": COMMISSION_TIERS,
    }


def _reserve(designer_id: str, amount: float) -> bool:
    """Hold amount against matured earnings; False when the designer cannot cover it."""
    ledger = collection("designerledger")
    seed = DesignerLedger(reserved=open_payout_total(designer_id)).model_dump()
    ledger.update_one({"_id": designer_id}, {"$setOnInsert": seed}, upsert=True)
    matured = sum(r.get("designer_earning", 0) for r in matured_earnings(designer_id))
    held = ledger.find_one_and_update(
        {"_id": designer_id, "reserved": {"$lte": _money(matured - amount) + 0.005}},
        {"$inc": {"reserved": amount}},
        return_document=ReturnDocument.AFTER,
    )
    return held is not None


def _release(designer_id: str, amount: float) -> None:
    collection("designerledger").update_one({"_id": designer_id}, {"$inc": {"reserved": -amount}})


def create_payout_request(designer_id: str, amount: float, payment_method: str, payment_details: dict) -> dict:
    amount = _money(amount)
    if amount < MINIMUM_PAYOUT:
        raise InsufficientBalanceError(f"Minimum payout amount is {MINIMUM_PAYOUT:g}")
    backfill_earnings(designer_id)
    balance = available_balance(designer_id)
    if amount > balance:
        raise InsufficientBalanceError(f"Requested {amount:g} exceeds available balance {balance:g}")
    if not _reserve(designer_id, amount):
        logger.warning("payout reservation of %.2f failed for designer %s", amount, designer_id)
        raise InsufficientBalanceError(f"Requested {amount:g} exceeds available balance")

    request = PayoutRequest(
        designer_id=designer_id,
        amount=amount,
        payment_method=payment_method,
        payment_details=payment_details or {},
    )
    try:
        request_id = create_document("payoutrequest", request)
    except Exception:
        _release(designer_id, amount)
        raise
    logger.info("designer %s requested payout %s of %.2f", designer_id, request_id, amount)
    return collection("payoutrequest").find_one({"_id": to_object_id(request_id)})


def list_payout_requests(designer_id: Optional[str] = None, status: Optional[str] = None) -> List[dict]:
    filt = {}
    if designer_id:
        filt["designer_id"] = designer_id
    if status:
        filt["status"] = status
    return get_documents("payoutrequest", filt, sort=[("created_at", -1)])


def settle_earnings(designer_id: str, amount: float, request_id: str, now=None) -> float:
    """Mark matured earnings paid against a completed payout. Returns any uncovered remainder."""
    remaining = Decimal(str(amount))
    stamp = utcnow()
    for row in matured_earnings(designer_id, now):
        if remaining <= 0:
            break
        value = Decimal(str(row.get("designer_earning", 0)))
        if value <= remaining:
            collection("earning").update_one(
                {"_id": row["_id"]},
                {"$set": {"status": "paid", "payout_request_id": request_id, "updated_at": stamp}},
            )
            remaining -= value
            continue
        collection("earning").update_one(
            {"_id": row["_id"]},
            {"$set": {"designer_earning": float(value - remaining), "updated_at": stamp}},
        )
        create_document("earning", Earning(
            designer_id=designer_id,
            order_id=row["order_id"],
            order_amount=row.get("order_amount", 0),
            commission_rate=row.get("commission_rate", 0),
            designer_earning=float(remaining),
            status="paid",
            payout_request_id=request_id,
            split_of=str(row["_id"]),
        ))
        remaining = Decimal(0)
    if remaining > 0:
        logger.warning("payout %s left %.2f not covered by matured earnings", request_id, remaining)
    return float(remaining)


def process_payout(request_id: str, action: str, actor: dict, reason: Optional[str] = None,
                   transaction_id: Optional[str] = None) -> dict:
    if action not in PAYOUT_ACTIONS:
        raise ValidationError(f"Unknown payout action '{action}'")
    oid = to_object_id(request_id)
    if oid is None:
        raise NotFoundError("Payout request not found")
    if action == "reject" and not (reason and reason.strip()):
        raise ValidationError("A reason is required to reject a payout")

    current, new = PAYOUT_ACTIONS[action]
    now = utcnow()
    fields = {"status": new, "processed_by": actor["_id"], "updated_at": now, f"{new}_at": now}
    if action == "reject":
        fields["rejection_reason"] = reason.strip()
    if action == "complete":
        fields["transaction_id"] = transaction_id or f"TXN{secrets.token_hex(6).upper()}"

    updated = collection("payoutrequest").find_one_and_update(
        {"_id": oid, "status": current},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        existing = collection("payoutrequest").find_one({"_id": oid})
        if not existing:
            raise NotFoundError("Payout request not found")
        raise InvalidTransitionError(f"Cannot {action} a payout request that is {existing['status']}")

    logger.info("payout %s %s by %s", request_id, new, actor["_id"])
    if new == "completed":
        settle_earnings(updated["designer_id"], updated["amount"], str(updated["_id"]))
    if new in ("completed", "rejected"):
        _release(updated["designer_id"], updated["amount"])
    message = f"Your payout request of {updated['amount']:g} is {new}"
    if new == "rejected":
        message += f": {updated['rejection_reason']}"
    notify(updated["designer_id"], None, message, "error" if new == "rejected" else "info")
    return updated
