"""
Storefront: catalog, stock, designs, wishlists, carts, addresses, checkout,
reviews and feedback.

Stock is only ever taken with a guarded decrement, so concurrent checkouts
cannot push a product below zero.
"""
import logging
import uuid
from typing import List, Optional

from pymongo import ReturnDocument

from config import DEFAULT_DESIGN_PRICE
from database import collection, create_document, find_by_id, get_documents, serialize, to_object_id, utcnow
from errors import NotFoundError, OutOfStockError, RoleMismatchError, ValidationError
from workflow import OrderStatus
from schemas import (Cart, CartItem, Design, Feedback, Order, OrderItem, Product, Review, SavedAddress,
                     ShippingAddress, Wishlist)

logger = logging.getLogger(__name__)


# Catalog

def list_products(q: Optional[str] = None, category: Optional[str] = None, gender: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  in_stock: Optional[bool] = None, designer_id: Optional[str] = None) -> List[dict]:
    filter_q = {}
    if q:
        filter_q["name"] = {"$regex": q, "$options": "i"}
    if category:
        filter_q["category"] = category
    if gender:
        filter_q["gender"] = gender
    if in_stock is not None:
        filter_q["in_stock"] = in_stock
    if designer_id:
        filter_q["designer_id"] = designer_id
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = float(min_price)
        if max_price is not None:
            price_filter["$lte"] = float(max_price)
        filter_q["price"] = price_filter
    return get_documents("product", filter_q)


def featured_products(limit: int = 6) -> List[dict]:
    return get_documents("product", {"featured": True}, limit=limit)


def get_product(product_id: str) -> dict:
    product = find_by_id("product", product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def create_product(data: dict, actor: dict) -> str:
    if actor["role"] == "designer":
        data["designer_id"] = actor["_id"]
    data["in_stock"] = data.get("stock_quantity", 0) > 0
    return create_document("product", Product(**data))


def update_product(product_id: str, updates: dict, actor: dict) -> dict:
    product = get_product(product_id)
    if actor["role"] == "designer" and product.get("designer_id") != actor["_id"]:
        raise RoleMismatchError("You can only edit your own products")
    updates = {k: v for k, v in updates.items() if v is not None}
    if "stock_quantity" in updates:
        updates["in_stock"] = updates["stock_quantity"] > 0
    updates["updated_at"] = utcnow()
    collection("product").update_one({"_id": product["_id"]}, {"$set": updates})
    return get_product(product_id)


def delete_product(product_id: str) -> bool:
    product = get_product(product_id)
    return collection("product").delete_one({"_id": product["_id"]}).deleted_count == 1


def set_stock(product_id: str, quantity: int) -> dict:
    if quantity < 0:
        raise ValidationError("Stock quantity cannot be negative")
    product = get_product(product_id)
    collection("product").update_one(
        {"_id": product["_id"]},
        {"$set": {"stock_quantity": quantity, "in_stock": quantity > 0, "updated_at": utcnow()}},
    )
    return get_product(product_id)


def reserve_stock(product_id: str, quantity: int) -> dict:
    oid = to_object_id(product_id)
    if oid is None:
        raise NotFoundError("Product not found")
    updated = collection("product").find_one_and_update(
        {"_id": oid, "stock_quantity": {"$gte": quantity}},
        {"$inc": {"stock_quantity": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        product = get_product(product_id)
        logger.warning("stock reservation of %d failed for product %s", quantity, product_id)
        raise OutOfStockError(
            f"Insufficient stock for {product.get('name')}. Only {product.get('stock_quantity', 0)} available."
        )
    if updated["stock_quantity"] <= 0:
        collection("product").update_one({"_id": oid, "stock_quantity": {"$lte": 0}}, {"$set": {"in_stock": False}})
    return updated


def release_stock(product_id: str, quantity: int) -> None:
    oid = to_object_id(product_id)
    if oid is None:
        return
    collection("product").update_one(
        {"_id": oid},
        {"$inc": {"stock_quantity": quantity}, "$set": {"in_stock": True, "updated_at": utcnow()}},
    )


# Designs

def save_design(user_id: str, data: dict) -> str:
    return create_document("design", Design(user_id=user_id, **data))


def list_designs(user_id: str) -> List[dict]:
    return get_documents("design", {"user_id": user_id}, sort=[("created_at", -1)])


def get_design(design_id: str, user_id: str) -> dict:
    design = find_by_id("design", design_id)
    if not design or design.get("user_id") != user_id:
        raise NotFoundError("Design not found")
    return design


def design_price(design: dict) -> float:
    return float(design.get("estimated_price") or design.get("base_price") or DEFAULT_DESIGN_PRICE)


# Wishlist

def add_to_wishlist(user_id: str, product_id: Optional[str] = None, design_id: Optional[str] = None) -> dict:
    if bool(product_id) == bool(design_id):
        raise ValidationError("Provide exactly one of product_id or design_id")
    if product_id:
        get_product(product_id)
    else:
        get_design(design_id, user_id)
    item = Wishlist(user_id=user_id, product_id=product_id, design_id=design_id)
    now = utcnow()
    # prevent duplicates
    res = collection("wishlist").update_one(
        item.model_dump(),
        {"$setOnInsert": {"created_at": now, "updated_at": now}},
        upsert=True,
    )
    if res.upserted_id is None:
        return {"added": False}
    return {"added": True, "_id": str(res.upserted_id)}


def list_wishlist(user_id: str) -> List[dict]:
    rows = get_documents("wishlist", {"user_id": user_id}, sort=[("created_at", -1)])
    for row in rows:
        if row.get("product_id"):
            row["product"] = serialize(find_by_id("product", row["product_id"]))
        if row.get("design_id"):
            row["design"] = serialize(find_by_id("design", row["design_id"]))
    return rows


def remove_from_wishlist(user_id: str, wish_id: str) -> bool:
    oid = to_object_id(wish_id)
    if oid is None:
        raise ValidationError("Invalid id")
    return collection("wishlist").delete_one({"_id": oid, "user_id": user_id}).deleted_count == 1


# Cart

def get_cart(user_id: str) -> dict:
    cart = collection("cart").find_one({"user_id": user_id})
    return cart or {"user_id": user_id, "items": []}


def _save_items(user_id: str, items: List[dict]) -> dict:
    now = utcnow()
    cart = Cart(user_id=user_id, items=items)
    collection("cart").update_one(
        {"user_id": user_id},
        {"$set": {"items": cart.model_dump()["items"], "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )
    return get_cart(user_id)


def add_to_cart(user_id: str, product_id: Optional[str] = None, design_id: Optional[str] = None,
                quantity: int = 1, size: Optional[str] = None, color: Optional[str] = None) -> dict:
    if bool(product_id) == bool(design_id):
        raise ValidationError("Provide exactly one of product_id or design_id")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    if product_id:
        product = get_product(product_id)
        if product.get("stock_quantity", 0) < quantity:
            raise OutOfStockError(f"Only {product.get('stock_quantity', 0)} of {product.get('name')} available")
    else:
        get_design(design_id, user_id)

    items = get_cart(user_id).get("items", [])
    for item in items:
        if (item.get("product_id"), item.get("design_id"), item.get("size"), item.get("color")) == \
                (product_id, design_id, size, color):
            item["quantity"] += quantity
            break
    else:
        items.append(CartItem(item_id=uuid.uuid4().hex, product_id=product_id, design_id=design_id,
                              quantity=quantity, size=size, color=color).model_dump())
    return _save_items(user_id, items)


def update_cart_item(user_id: str, item_id: str, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    items = get_cart(user_id).get("items", [])
    for item in items:
        if item["item_id"] == item_id:
            item["quantity"] = quantity
            return _save_items(user_id, items)
    raise NotFoundError("Cart item not found")


def remove_cart_item(user_id: str, item_id: str) -> dict:
    items = get_cart(user_id).get("items", [])
    kept = [it for it in items if it["item_id"] != item_id]
    if len(kept) == len(items):
        raise NotFoundError("Cart item not found")
    return _save_items(user_id, kept)


def clear_cart(user_id: str) -> None:
    collection("cart").update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utcnow()}})


# Saved addresses

def _user_doc(user_id: str) -> dict:
    user = find_by_id("user", user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def list_addresses(user_id: str) -> List[dict]:
    return _user_doc(user_id).get("addresses", [])


def _store_addresses(user: dict, addresses: List[dict]) -> List[dict]:
    collection("user").update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})
    return addresses


def add_address(user_id: str, data: dict) -> List[dict]:
    user = _user_doc(user_id)
    address = SavedAddress(address_id=uuid.uuid4().hex, **data).model_dump()
    addresses = user.get("addresses", [])
    if address["is_default"]:
        for other in addresses:
            other["is_default"] = False
    addresses.append(address)
    return _store_addresses(user, addresses)


def update_address(user_id: str, address_id: str, data: dict) -> List[dict]:
    user = _user_doc(user_id)
    addresses = user.get("addresses", [])
    for i, current in enumerate(addresses):
        if current.get("address_id") == address_id:
            break
    else:
        raise NotFoundError("Address not found")
    updated = SavedAddress(**{**current, **data, "address_id": address_id}).model_dump()
    if updated["is_default"]:
        for other in addresses:
            other["is_default"] = False
    addresses[i] = updated
    return _store_addresses(user, addresses)


def delete_address(user_id: str, address_id: str) -> List[dict]:
    user = _user_doc(user_id)
    addresses = user.get("addresses", [])
    kept = [a for a in addresses if a.get("address_id") != address_id]
    if len(kept) == len(addresses):
        raise NotFoundError("Address not found")
    return _store_addresses(user, kept)


def default_address(user_id: str) -> Optional[dict]:
    """The customer's default saved address as shipping fields, if they have one."""
    user = find_by_id("user", user_id) or {}
    for address in user.get("addresses", []):
        if address.get("is_default"):
            return {k: v for k, v in address.items() if k not in ("address_id", "is_default")}
    return None


# Checkout

def next_order_number(now=None) -> str:
    now = now or utcnow()
    day = now.strftime("%Y%m%d")
    counter = collection("counter").find_one_and_update(
        {"_id": f"order-{day}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"DD-{day}-{counter['seq']:04d}"


def _order_lines(user_id: str, cart_items: List[dict]) -> List[OrderItem]:
    lines = []
    for item in cart_items:
        if item.get("product_id"):
            product = get_product(item["product_id"])
            lines.append(OrderItem(product_id=item["product_id"], name=product.get("name"),
                                   quantity=item["quantity"], size=item.get("size"),
                                   color=item.get("color"), price=float(product.get("price", 0))))
        else:
            design = get_design(item["design_id"], user_id)
            lines.append(OrderItem(design_id=item["design_id"], name=design.get("name"),
                                   quantity=item["quantity"], size=item.get("size"),
                                   color=item.get("color"), price=design_price(design)))
    return lines


def checkout(user: dict, shipping_address: Optional[dict] = None, payment_method: str = "card") -> dict:
    cart = get_cart(user["_id"])
    if not cart.get("items"):
        raise ValidationError("Cart is empty")

    lines = _order_lines(user["_id"], cart["items"])
    if not shipping_address:
        shipping_address = default_address(user["_id"])
    custom = any(line.design_id and not line.product_id for line in lines)
    total = round(sum(line.price * line.quantity for line in lines), 2)
    reserved = []
    try:
        for line in lines:
            if line.product_id:
                reserve_stock(line.product_id, line.quantity)
                reserved.append(line)
        order = Order(
            order_number=next_order_number(),
            user_id=user["_id"],
            items=lines,
            total_amount=total,
            order_type="custom" if custom else "shop",
            payment_method=payment_method,
            shipping_address=ShippingAddress(**shipping_address) if shipping_address else None,
            chat_enabled=custom,
        )
        order_id = create_document("order", order)
    except Exception:
        for line in reserved:
            release_stock(line.product_id, line.quantity)
        raise
    clear_cart(user["_id"])
    logger.info("order %s (%s) placed by %s for %.2f", order.order_number, order.order_type, user["_id"], total)
    return find_by_id("order", order_id)


# Reviews

def _delivered_order_with(user_id: str, product_id: str, order_id: Optional[str] = None) -> Optional[dict]:
    filt = {"user_id": user_id, "items.product_id": product_id, "status": OrderStatus.DELIVERED.value}
    if order_id:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        filt["_id"] = oid
    return collection("order").find_one(filt)


def review_stats(product_id: str) -> dict:
    ratings = [r["rating"] for r in collection("review").find({"product_id": product_id}, {"rating": 1})]
    distribution = {str(star): ratings.count(star) for star in (5, 4, 3, 2, 1)}
    return {
        "averageRating": round(sum(ratings) / len(ratings), 2) if ratings else 0,
        "totalReviews": len(ratings),
        "distribution": distribution,
    }


def list_reviews(product_id: str, limit: int = 20) -> dict:
    get_product(product_id)
    reviews = get_documents("review", {"product_id": product_id}, sort=[("created_at", -1)], limit=limit)
    for review in reviews:
        author = find_by_id("user", review["user_id"])
        review["author"] = author.get("name") if author else None
        review["helpful_count"] = len(review.get("helpful", []))
    return {"reviews": reviews, "stats": review_stats(product_id)}


def review_eligibility(user: Optional[dict], product_id: str) -> dict:
    if user is None:
        return {"canReview": False, "reason": "not_logged_in"}
    if user.get("role") != "customer":
        return {"canReview": False, "reason": "not_customer"}
    if collection("review").find_one({"product_id": product_id, "user_id": user["_id"]}):
        return {"canReview": False, "reason": "already_reviewed"}
    delivered = _delivered_order_with(user["_id"], product_id)
    if delivered:
        return {"canReview": True, "reason": "eligible", "orderId": str(delivered["_id"])}
    open_order = collection("order").find_one({
        "user_id": user["_id"],
        "items.product_id": product_id,
        "status": {"$nin": [OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value]},
    })
    if open_order:
        return {"canReview": False, "reason": "order_not_delivered", "orderStatus": open_order["status"]}
    return {"canReview": False, "reason": "not_ordered"}


def create_review(user: dict, product_id: str, rating: int, title: Optional[str] = None,
                  comment: Optional[str] = None, order_id: Optional[str] = None) -> dict:
    get_product(product_id)
    verified = bool(order_id) and _delivered_order_with(user["_id"], product_id, order_id) is not None
    review = Review(product_id=product_id, user_id=user["_id"], order_id=order_id, rating=rating,
                    title=title, comment=comment, verified=verified)
    now = utcnow()
    doc = review.model_dump(exclude={"product_id", "user_id"})
    doc.update(created_at=now, updated_at=now)
    before = collection("review").find_one_and_update(
        {"product_id": product_id, "user_id": user["_id"]},
        {"$setOnInsert": doc},
        upsert=True,
        return_document=ReturnDocument.BEFORE,
    )
    if before is not None:
        raise ValidationError("You have already reviewed this product")
    logger.info("user %s reviewed product %s (%d stars, verified=%s)", user["_id"], product_id, rating, verified)
    return collection("review").find_one({"product_id": product_id, "user_id": user["_id"]})


def _review(review_id: str) -> dict:
    review = find_by_id("review", review_id)
    if not review:
        raise NotFoundError("Review not found")
    return review


def update_review(user: dict, review_id: str, rating: int, title: Optional[str] = None,
                  comment: Optional[str] = None) -> dict:
    review = _review(review_id)
    if review["user_id"] != user["_id"]:
        raise NotFoundError("Review not found")
    checked = Review(**{**review, "rating": rating, "title": title, "comment": comment})
    collection("review").update_one(
        {"_id": review["_id"]},
        {"$set": {"rating": checked.rating, "title": checked.title, "comment": checked.comment,
                  "updated_at": utcnow()}},
    )
    return _review(review_id)


def delete_review(user: dict, review_id: str) -> bool:
    review = _review(review_id)
    if review["user_id"] != user["_id"] and user.get("role") != "admin":
        raise NotFoundError("Review not found")
    return collection("review").delete_one({"_id": review["_id"]}).deleted_count == 1


def toggle_helpful(user_id: str, review_id: str) -> int:
    review = _review(review_id)
    res = collection("review").update_one(
        {"_id": review["_id"], "helpful": {"$ne": user_id}},
        {"$addToSet": {"helpful": user_id}},
    )
    if res.modified_count == 0:
        collection("review").update_one({"_id": review["_id"]}, {"$pull": {"helpful": user_id}})
    return len(_review(review_id).get("helpful", []))


# Feedback

def submit_feedback(user: dict, rating: int, comment: str, order_id: Optional[str] = None) -> str:
    if order_id:
        order = find_by_id("order", order_id)
        if not order or order.get("user_id") != user["_id"]:
            raise NotFoundError("Order not found")
    return create_document("feedback", Feedback(user_id=user["_id"], order_id=order_id, rating=rating, comment=comment))


def list_feedback() -> List[dict]:
    return get_documents("feedback", sort=[("created_at", -1)])
