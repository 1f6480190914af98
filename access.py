"""
Authentication and capability checks.

Every gated route depends on ``require(action)``; the PERMISSIONS table is
the one place that says which roles may perform which action.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from passlib.context import CryptContext

from config import JWT_SECRET, JWT_ALG, TOKEN_EXPIRE_MIN
from database import find_by_id, serialize
from errors import RoleMismatchError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)

STAFF = {"manager", "admin"}

PERMISSIONS = {
    # order lifecycle
    "order.view_all": STAFF,
    "order.claim": STAFF,
    "order.assign_designer": STAFF,
    "order.assign_delivery": STAFF,
    "order.ship": STAFF | {"delivery"},
    "order.deliver": STAFF | {"delivery"},
    "order.cancel": STAFF,
    "order.set_status": {"admin"},
    "order.design_work": {"designer"},
    "order.milestones": STAFF | {"customer", "designer"},
    "order.delivery_work": {"delivery"},
    # people
    "staff.list": STAFF,
    "user.manage": {"admin"},
    "designer.availability": {"designer"},
    # ledger
    "earnings.view": {"designer"},
    "payout.request": {"designer"},
    "payout.process": STAFF,
    # storefront
    "product.manage": STAFF | {"designer"},
    "stock.manage": STAFF,
    "cart.use": {"customer"},
    "checkout": {"customer"},
    "design.save": {"customer"},
    "wishlist.use": {"customer"},
    "address.manage": {"customer"},
    "review.write": {"customer"},
    "review.moderate": {"customer", "admin"},
    "review.vote": {"customer", "designer", "manager", "admin", "delivery"},
    "order.customer": {"customer"},
    "feedback.view": STAFF,
    "chat": {"customer", "designer"},
}

# Roles whose accounts must be approved before they can act
APPROVAL_GATED = {"designer", "manager"}


def create_access_token(data: dict, expires_minutes: int = TOKEN_EXPIRE_MIN):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = credentials.credentials
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = find_by_id("user", user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    return serialize(user)


async def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)) -> Optional[dict]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if credentials is None:
        return None
    return await get_current_user(credentials)


def check_permission(user: dict, action: str) -> None:
    role = user.get("role")
    if role not in PERMISSIONS[action]:
        logger.info("denied %s to user %s (role %s)", action, user.get("_id"), role)
        raise RoleMismatchError(f"Role '{role}' may not perform {action}")
    if role in APPROVAL_GATED and not user.get("approved", True):
        raise RoleMismatchError("Your account is awaiting approval")


def require(action: str):
    if action not in PERMISSIONS:
        raise KeyError(f"Unknown action {action}")

    async def dependency(user: dict = Depends(get_current_user)) -> dict:
        check_permission(user, action)
        return user

    return dependency


def ensure_assignee(order: dict, actor: dict) -> None:
    """Designers and delivery persons may only touch orders assigned to them."""
    role = actor.get("role")
    if role == "designer" and order.get("designer_id") != actor["_id"]:
        raise RoleMismatchError("This order is not assigned to you")
    if role == "delivery" and order.get("delivery_person_id") != actor["_id"]:
        raise RoleMismatchError("This order is not assigned to you")
