"""
Assignment coordinator: who may be put on an order.

Managers pick personnel by hand; this module only decides eligibility and
resolves ids to users.
"""
from typing import List

from database import find_by_id, get_documents
from errors import NotFoundError, RoleMismatchError, ValidationError


def eligible_designers(include_busy: bool = True) -> List[dict]:
    filt = {"role": "designer", "approved": {"$ne": False}, "is_active": {"$ne": False}}
    statuses = ["available", "busy"] if include_busy else ["available"]
    filt["$or"] = [
        {"designer_profile": None},
        {"designer_profile.availability_status": {"$in": statuses}},
    ]
    return get_documents("user", filt, sort=[("name", 1)])


def eligible_delivery_persons() -> List[dict]:
    return get_documents("user", {"role": "delivery", "is_active": {"$ne": False}}, sort=[("name", 1)])


def _resolve(user_id: str, role: str, label: str) -> dict:
    user = find_by_id("user", user_id)
    if not user:
        raise NotFoundError(f"{label} not found")
    if user.get("role") != role:
        raise RoleMismatchError(f"User {user_id} is not a {role}")
    return user


def resolve_designer(designer_id: str) -> dict:
    designer = _resolve(designer_id, "designer", "Designer")
    if not designer.get("approved", True):
        raise ValidationError("Designer is not approved")
    profile = designer.get("designer_profile") or {}
    if profile.get("availability_status") == "not_accepting":
        raise ValidationError("Designer is not accepting new orders")
    return designer


def resolve_delivery_person(person_id: str) -> dict:
    person = _resolve(person_id, "delivery", "Delivery person")
    if person.get("is_active") is False:
        raise ValidationError("Delivery person is not active")
    return person


def display_name(user: dict) -> str:
    return user.get("name") or user.get("email") or str(user.get("_id"))
