import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from access import create_access_token
from main import app, rate_store

_seq = itertools.count(1)


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    db = mongomock.MongoClient().designden_test
    monkeypatch.setattr(database, "db", db)
    rate_store.clear()
    return db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(mongo):
    def _make(role="customer", **extra):
        n = next(_seq)
        doc = {
            "name": f"{role.title()} {n}",
            "email": f"{role}{n}@example.com",
            "password_hash": "not-a-real-hash",
            "role": role,
            "approved": True,
            "is_active": True,
        }
        doc.update(extra)
        user_id = str(mongo["user"].insert_one(doc).inserted_id)
        doc["_id"] = user_id
        doc["headers"] = {"Authorization": f"Bearer {create_access_token({'sub': user_id, 'role': role})}"}
        return doc
    return _make


@pytest.fixture
def make_order(mongo):
    def _make(customer, custom=True, total=1000.0, status="pending", **extra):
        if custom:
            items = [{"design_id": "d" * 24, "name": "Custom kurta", "quantity": 1, "price": total}]
        else:
            items = [{"product_id": "p" * 24, "name": "Linen shirt", "quantity": 1, "price": total}]
        doc = {
            "order_number": f"DD-20260101-{next(_seq):04d}",
            "user_id": customer["_id"],
            "items": items,
            "total_amount": total,
            "order_type": "custom" if custom else "shop",
            "status": status,
            "payment_status": "pending",
            "progress_percentage": 0,
            "chat_enabled": custom,
            "timeline": [],
            "designer_id": None,
            "delivery_person_id": None,
        }
        doc.update(extra)
        return str(mongo["order"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def staff(make_user):
    return {
        "customer": make_user("customer"),
        "manager": make_user("manager"),
        "admin": make_user("admin"),
        "designer": make_user("designer", designer_profile={"availability_status": "available"}),
        "delivery": make_user("delivery"),
    }
