from datetime import datetime, timezone

import pytest
from bson import ObjectId

import store
from errors import OutOfStockError, ValidationError


@pytest.fixture
def product(staff):
    def _make(name="Linen shirt", price=999.0, stock=5, **extra):
        return store.create_product(dict(name=name, price=price, stock_quantity=stock, **extra), staff["manager"])
    return _make


def _stock(mongo, product_id):
    return mongo["product"].find_one({"_id": ObjectId(product_id)})["stock_quantity"]


def test_catalog_filters(client, product):
    product("Indigo kurta", price=1499, category="ethnic", gender="men")
    product("Floral dress", price=2499, category="tops", gender="women")
    product("Sold out hoodie", price=1999, stock=0)

    def names(response):
        return sorted(p["name"] for p in response.json())

    assert names(client.get("/api/shop/products", params={"q": "kurta"})) == ["Indigo kurta"]
    assert names(client.get("/api/shop/products", params={"gender": "women"})) == ["Floral dress"]
    assert names(client.get("/api/shop/products", params={"min_price": 1500, "max_price": 2000})) == \
        ["Sold out hoodie"]
    assert "Sold out hoodie" not in names(client.get("/api/shop/products", params={"in_stock": True}))


def test_designers_manage_only_their_products(client, staff, make_user):
    designer = staff["designer"]
    r = client.post("/manager/api/product", json={"name": "Print tee", "price": 699, "stock_quantity": 3},
                    headers=designer["headers"])
    product_id = r.json()["_id"]
    mine = client.get("/api/designer/products", headers=designer["headers"]).json()
    assert [p["_id"] for p in mine] == [product_id]

    other = make_user("designer")
    r = client.put(f"/manager/api/product/{product_id}", json={"price": 1}, headers=other["headers"])
    assert r.status_code == 403
    r = client.put(f"/manager/api/product/{product_id}", json={"price": 749}, headers=designer["headers"])
    assert r.json()["product"]["price"] == 749

    assert client.put(f"/manager/api/product/{product_id}/stock", json={"stockQuantity": 9},
                      headers=designer["headers"]).status_code == 403


def test_stock_updates_keep_in_stock_flag(client, mongo, staff, product):
    product_id = product(stock=2)
    r = client.put(f"/manager/api/product/{product_id}/stock", json={"stock_quantity": 0},
                   headers=staff["manager"]["headers"])
    assert r.json()["product"]["in_stock"] is False
    with pytest.raises(ValidationError):
        store.set_stock(product_id, -1)
    r = client.delete(f"/manager/api/product/{product_id}", headers=staff["admin"]["headers"])
    assert r.json()["deleted"] is True
    assert client.get(f"/api/shop/products/{product_id}").status_code == 404


def test_reserve_stock_never_goes_negative(mongo, product):
    product_id = product(name="Denim jacket", stock=3)
    store.reserve_stock(product_id, 2)
    with pytest.raises(OutOfStockError) as exc:
        store.reserve_stock(product_id, 2)
    assert exc.value.message == "Insufficient stock for Denim jacket. Only 1 available."
    store.reserve_stock(product_id, 1)
    doc = mongo["product"].find_one({"_id": ObjectId(product_id)})
    assert (doc["stock_quantity"], doc["in_stock"]) == (0, False)


def test_cart_merges_and_edits_lines(client, staff, product):
    headers = staff["customer"]["headers"]
    product_id = product(stock=10)
    client.post("/api/customer/cart", json={"productId": product_id, "size": "M"}, headers=headers)
    client.post("/api/customer/cart", json={"productId": product_id, "size": "M", "quantity": 2}, headers=headers)
    r = client.post("/api/customer/cart", json={"productId": product_id, "size": "L"}, headers=headers)
    items = r.json()["cart"]["items"]
    assert [(i["size"], i["quantity"]) for i in items] == [("M", 3), ("L", 1)]

    r = client.put(f"/api/customer/cart/{items[0]['item_id']}", json={"quantity": 5}, headers=headers)
    assert r.json()["cart"]["items"][0]["quantity"] == 5
    r = client.delete(f"/api/customer/cart/{items[1]['item_id']}", headers=headers)
    assert len(r.json()["cart"]["items"]) == 1
    assert client.delete("/api/customer/cart/missing", headers=headers).status_code == 404


def test_cart_line_needs_exactly_one_target(client, staff, product):
    headers = staff["customer"]["headers"]
    assert client.post("/api/customer/cart", json={}, headers=headers).status_code == 400
    r = client.post("/api/customer/cart", json={"productId": product(stock=1), "quantity": 2}, headers=headers)
    assert r.status_code == 409


def test_checkout_reserves_stock_and_clears_cart(client, mongo, staff, product):
    customer = staff["customer"]
    product_id = product(price=999, stock=5)
    client.post("/api/customer/cart", json={"productId": product_id, "quantity": 2}, headers=customer["headers"])

    r = client.post("/customer/checkout", json={"paymentMethod": "cod", "shipping_address": {"city": "Pune"}},
                    headers=customer["headers"])
    order = r.json()["order"]
    assert order["order_type"] == "shop"
    assert order["total_amount"] == 1998
    assert order["chat_enabled"] is False
    assert order["shipping_address"]["city"] == "Pune"
    assert order["payment_method"] == "cod"
    assert _stock(mongo, product_id) == 3
    assert client.get("/api/customer/cart", headers=customer["headers"]).json()["cart"]["items"] == []

    orders = client.get("/customer/orders", headers=customer["headers"]).json()["orders"]
    assert [o["_id"] for o in orders] == [order["_id"]]


def test_checkout_releases_reservations_when_a_line_fails(client, mongo, staff, product):
    customer = staff["customer"]
    shirt = product(name="Shirt", stock=5)
    scarf = product(name="Scarf", stock=1)
    client.post("/api/customer/cart", json={"productId": shirt, "quantity": 2}, headers=customer["headers"])
    client.post("/api/customer/cart", json={"productId": scarf}, headers=customer["headers"])
    store.set_stock(scarf, 0)

    r = client.post("/customer/checkout", json={}, headers=customer["headers"])
    assert r.status_code == 409
    assert r.json()["message"] == "Insufficient stock for Scarf. Only 0 available."
    assert _stock(mongo, shirt) == 5
    assert mongo["order"].count_documents({}) == 0
    assert len(store.get_cart(customer["_id"])["items"]) == 2


def test_empty_cart_cannot_check_out(client, staff):
    r = client.post("/customer/checkout", json={}, headers=staff["customer"]["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Cart is empty"


def test_cancelled_shop_order_restocks(client, mongo, staff, product):
    customer = staff["customer"]
    product_id = product(stock=4)
    client.post("/api/customer/cart", json={"productId": product_id, "quantity": 3}, headers=customer["headers"])
    order_id = client.post("/customer/checkout", json={}, headers=customer["headers"]).json()["order"]["_id"]
    assert _stock(mongo, product_id) == 1
    client.post(f"/customer/order/{order_id}/cancel", json={"reason": "ordered by mistake"},
                headers=customer["headers"])
    assert _stock(mongo, product_id) == 4


def test_order_numbers_count_per_day():
    day = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)
    assert store.next_order_number(day) == "DD-20261019-0001"
    assert store.next_order_number(day) == "DD-20261019-0002"
    assert store.next_order_number(datetime(2026, 10, 20, tzinfo=timezone.utc)) == "DD-20261020-0001"


def test_designs_are_private(client, staff, make_user):
    customer = staff["customer"]
    design_id = client.post("/customer/designs", json={"name": "Mehendi lehenga"},
                            headers=customer["headers"]).json()["_id"]
    assert [d["_id"] for d in client.get("/customer/designs", headers=customer["headers"]).json()["designs"]] == \
        [design_id]
    other = make_user("customer")
    r = client.post("/api/customer/cart", json={"designId": design_id}, headers=other["headers"])
    assert r.status_code == 404


def test_design_price_falls_back_to_base_price():
    assert store.design_price({"estimated_price": 1200, "base_price": 500}) == 1200
    assert store.design_price({"estimated_price": None, "base_price": 650}) == 650
    assert store.design_price({}) == 500


def test_order_chat(client, staff, make_user, make_order):
    customer, designer = staff["customer"], staff["designer"]
    unassigned = make_order(customer)
    r = client.post(f"/api/order/{unassigned}/messages", json={"message": "Hello?"}, headers=customer["headers"])
    assert r.status_code == 400

    order_id = make_order(customer, status="in_production", designer_id=designer["_id"])
    url = f"/api/order/{order_id}/messages"
    r = client.post(url, json={"message": "Can the sleeves be longer?"}, headers=customer["headers"])
    assert r.json()["message"]["receiver_id"] == designer["_id"]
    assert client.get(f"{url}/unread", headers=designer["headers"]).json()["unreadCount"] == 1

    messages = client.get(url, headers=designer["headers"]).json()["messages"]
    assert [m["message"] for m in messages] == ["Can the sleeves be longer?"]
    assert client.get(f"{url}/unread", headers=designer["headers"]).json()["unreadCount"] == 0

    assert client.get(url, headers=make_user("designer")["headers"]).status_code == 403
    assert client.post(url, json={"message": "   "}, headers=designer["headers"]).status_code == 400
    assert client.post(url, json={"message": "x" * 2001}, headers=designer["headers"]).status_code == 422

    shop_order = make_order(customer, custom=False)
    assert client.get(f"/api/order/{shop_order}/messages", headers=customer["headers"]).status_code == 404


def test_notifications_are_per_user(client, staff, make_order):
    customer = staff["customer"]
    order_id = make_order(customer)
    client.post(f"/manager/order/{order_id}/claim", headers=staff["manager"]["headers"])

    items = client.get("/api/notifications", params={"unread": True}, headers=customer["headers"]).json()
    notification_id = items["notifications"][0]["_id"]
    assert client.post(f"/api/notifications/{notification_id}/read",
                       headers=staff["manager"]["headers"]).status_code == 404
    assert client.post(f"/api/notifications/{notification_id}/read",
                       headers=customer["headers"]).json()["read"] is True
    assert client.get("/api/notifications", params={"unread": True},
                      headers=customer["headers"]).json()["notifications"] == []


def test_feedback(client, staff, make_user, make_order):
    customer = staff["customer"]
    order_id = make_order(customer, status="delivered")
    r = client.post("/feedback/submit", json={"rating": 5, "comment": "Perfect fit", "orderId": order_id},
                    headers=customer["headers"])
    assert r.status_code == 200

    other = make_user("customer")
    r = client.post("/feedback/submit", json={"rating": 4, "comment": "Nice", "orderId": order_id},
                    headers=other["headers"])
    assert r.status_code == 404
    assert client.post("/feedback/submit", json={"rating": 6, "comment": "x"},
                       headers=customer["headers"]).status_code == 422

    feedbacks = client.get("/admin/feedbacks", headers=staff["manager"]["headers"]).json()["feedbacks"]
    assert [(f["rating"], f["order_id"]) for f in feedbacks] == [(5, order_id)]
    assert client.get("/admin/feedbacks", headers=customer["headers"]).status_code == 403


def test_checkout_releases_reservations_when_order_creation_fails(monkeypatch, mongo, staff, product):
    customer = staff["customer"]
    shirt = product(name="Shirt", stock=5)
    store.add_to_cart(customer["_id"], product_id=shirt, quantity=2)

    def broken_counter(now=None):
        raise RuntimeError("counter unavailable")

    monkeypatch.setattr(store, "next_order_number", broken_counter)
    with pytest.raises(RuntimeError):
        store.checkout(customer)
    assert _stock(mongo, shirt) == 5
    assert mongo["order"].count_documents({}) == 0
    assert len(store.get_cart(customer["_id"])["items"]) == 1


def test_featured_products(client, product):
    for n in range(8):
        product(f"Featured {n}", featured=True)
    product("Plain tee")
    products = client.get("/api/shop/featured").json()["products"]
    assert len(products) == 6
    assert all(p["featured"] for p in products)


def test_wishlist(client, staff, product):
    headers = staff["customer"]["headers"]
    product_id = product()
    r = client.post("/customer/wishlist/add", json={"productId": product_id}, headers=headers)
    assert r.json()["added"] is True
    wish_id = r.json()["_id"]
    assert client.post("/customer/wishlist/add", json={"product_id": product_id},
                       headers=headers).json()["added"] is False
    assert client.post("/customer/wishlist/add", json={}, headers=headers).status_code == 400

    items = client.get("/customer/wishlist/list", headers=headers).json()["wishlist"]
    assert [w["_id"] for w in items] == [wish_id]
    assert items[0]["product"]["_id"] == product_id

    assert client.get("/customer/wishlist/list", headers=staff["designer"]["headers"]).status_code == 403
    assert client.delete(f"/customer/wishlist/remove/{wish_id}", headers=headers).json()["deleted"] is True
    assert client.get("/customer/wishlist/list", headers=headers).json()["wishlist"] == []


def test_saved_addresses_keep_one_default(client, staff):
    headers = staff["customer"]["headers"]
    url = "/api/customer/addresses"
    home = client.post(url, json={"street": "1 MG Road", "city": "Pune", "pincode": "411001", "isDefault": True},
                       headers=headers).json()["addresses"][0]
    assert home["zip_code"] == "411001"
    assert home["is_default"] is True

    addresses = client.post(url, json={"city": "Mumbai", "is_default": True}, headers=headers).json()["addresses"]
    assert [a["is_default"] for a in addresses] == [False, True]

    r = client.put(f"{url}/{home['address_id']}", json={"city": "Nagpur", "isDefault": True}, headers=headers)
    addresses = r.json()["addresses"]
    assert [(a["city"], a["is_default"]) for a in addresses] == [("Nagpur", True), ("Mumbai", False)]
    assert addresses[0]["street"] == "1 MG Road"

    assert client.delete(f"{url}/nope", headers=headers).status_code == 404
    r = client.delete(f"{url}/{home['address_id']}", headers=headers)
    assert [a["city"] for a in r.json()["addresses"]] == ["Mumbai"]
    assert client.get(url, headers=staff["designer"]["headers"]).status_code == 403


def test_checkout_falls_back_to_default_address(client, staff, product):
    headers = staff["customer"]["headers"]
    client.post("/api/customer/addresses", json={"city": "Chennai", "pincode": "600001", "isDefault": True},
                headers=headers)
    client.post("/api/customer/cart", json={"productId": product()}, headers=headers)
    order = client.post("/customer/checkout", json={}, headers=headers).json()["order"]
    assert order["shipping_address"]["city"] == "Chennai"
    assert order["shipping_address"]["zip_code"] == "600001"
