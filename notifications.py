"""
Notifications and the order chat side channel.

Notifications are side effects of lifecycle writes: a failure here is
logged and never undoes the write that triggered it.
"""
import logging
from typing import List, Optional

from database import collection, create_document, get_documents, to_object_id, utcnow
from errors import NotFoundError, RoleMismatchError, ValidationError
from schemas import Message, Notification

logger = logging.getLogger(__name__)


def short_ref(order: dict) -> str:
    return order.get("order_number") or str(order["_id"])[:8]


def notify(user_id: Optional[str], order_id: Optional[str], message: str, type: str = "info") -> Optional[str]:
    if not user_id:
        return None
    try:
        return create_document("notification", Notification(user_id=user_id, order_id=order_id, message=message, type=type))
    except Exception:
        logger.exception("failed to notify user %s about order %s", user_id, order_id)
        return None


def list_notifications(user_id: str, unread_only: bool = False) -> List[dict]:
    filt = {"user_id": user_id}
    if unread_only:
        filt["read"] = False
    return get_documents("notification", filt, limit=100, sort=[("created_at", -1)])


def mark_read(notification_id: str, user_id: str) -> bool:
    oid = to_object_id(notification_id)
    if oid is None:
        raise NotFoundError("Notification not found")
    res = collection("notification").update_one({"_id": oid, "user_id": user_id}, {"$set": {"read": True}})
    if res.matched_count == 0:
        raise NotFoundError("Notification not found")
    return True


# Chat

def _chat_order(order_id: str) -> dict:
    oid = to_object_id(order_id)
    order = collection("order").find_one({"_id": oid}) if oid else None
    if not order or not order.get("chat_enabled"):
        raise NotFoundError("Chat not available")
    return order


def _ensure_participant(order: dict, user: dict) -> None:
    uid = user["_id"]
    if uid not in (order.get("user_id"), order.get("designer_id")):
        raise RoleMismatchError("Not authorized to view this chat")


def get_messages(order_id: str, user: dict) -> List[dict]:
    order = _chat_order(order_id)
    _ensure_participant(order, user)
    messages = get_documents("message", {"order_id": order_id}, sort=[("created_at", 1)])
    collection("message").update_many(
        {"order_id": order_id, "receiver_id": user["_id"], "read": False},
        {"$set": {"read": True, "read_at": utcnow()}},
    )
    return messages


def send_message(order_id: str, user: dict, text: str) -> dict:
    order = _chat_order(order_id)
    _ensure_participant(order, user)
    if not text or not text.strip():
        raise ValidationError("Message cannot be empty")

    if user["role"] == "customer":
        receiver_id, receiver_role = order.get("designer_id"), "designer"
    else:
        receiver_id, receiver_role = order.get("user_id"), "customer"
    if not receiver_id:
        raise ValidationError("No designer assigned yet")

    msg = Message(
        order_id=order_id,
        sender_id=user["_id"],
        sender_role=user["role"],
        receiver_id=receiver_id,
        receiver_role=receiver_role,
        message=text.strip(),
    )
    msg_id = create_document("message", msg)
    notify(receiver_id, order_id, f'New message from {user["role"]}: "{msg.message[:50]}"')
    return {"_id": msg_id, **msg.model_dump()}


def unread_count(order_id: str, user_id: str) -> int:
    return collection("message").count_documents({"order_id": order_id, "receiver_id": user_id, "read": False})
