import main
from access import create_access_token
from config import RATE_LIMIT_MAX_ATTEMPTS


def test_health(client):
    assert client.get("/").json() == {"message": "DesignDen API running"}
    r = client.get("/test")
    assert r.json()["database"] == "✅ Available"


def test_register_login_session(client):
    r = client.post("/api/auth/register", json={"name": "Asha Rao", "email": "asha@example.com",
                                                "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "customer"

    r = client.post("/api/auth/register", json={"name": "Asha Rao", "email": "asha@example.com",
                                                "password": "secret123"})
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Email already registered"}

    assert client.post("/api/auth/login", json={"email": "asha@example.com", "password": "wrong-pass"}
                       ).status_code == 401
    r = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "secret123"})
    token = r.json()["token"]

    r = client.get("/api/auth/session", headers={"Authorization": f"Bearer {token}"})
    user = r.json()["user"]
    assert user["email"] == "asha@example.com"
    assert "password_hash" not in user


def test_staff_roles_cannot_self_register(client):
    r = client.post("/api/auth/register", json={"name": "Mallory", "email": "m@example.com",
                                                "password": "secret123", "role": "admin"})
    assert r.status_code == 422


def test_registered_designer_gets_a_profile(client, mongo):
    client.post("/api/auth/register", json={"name": "Kabir Sen", "email": "kabir@example.com",
                                            "password": "secret123", "role": "designer"})
    designer = mongo["user"].find_one({"email": "kabir@example.com"})
    assert designer["designer_profile"]["availability_status"] == "available"


def test_invalid_and_missing_tokens(client):
    assert client.get("/api/auth/session").status_code == 401
    r = client.get("/api/auth/session", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token"


def test_disabled_account_is_rejected(client, make_user):
    user = make_user("customer", is_active=False)
    assert client.get("/api/auth/session", headers=user["headers"]).status_code == 403


def test_unapproved_designer_is_blocked(client, staff):
    designer, admin = staff["designer"], staff["admin"]
    r = client.put(f"/admin/users/{designer['_id']}/approval", json={"approved": False}, headers=admin["headers"])
    assert r.json()["user"]["approved"] is False

    r = client.get("/designer/orders", headers=designer["headers"])
    assert r.status_code == 403
    assert r.json()["message"] == "Your account is awaiting approval"

    r = client.put(f"/admin/users/{staff['customer']['_id']}/approval", json={"approved": False},
                   headers=admin["headers"])
    assert r.status_code == 400


def test_designer_availability(client, mongo, staff, make_user):
    r = client.put("/designer/availability", json={"availabilityStatus": "not_accepting"},
                   headers=staff["designer"]["headers"])
    assert r.json()["designer"]["designer_profile"]["availability_status"] == "not_accepting"

    bare = make_user("designer", designer_profile=None)
    r = client.put("/designer/availability", json={"availability_status": "busy"}, headers=bare["headers"])
    assert r.json()["designer"]["designer_profile"]["availability_status"] == "busy"


def test_admin_lists_users_by_role(client, staff):
    r = client.get("/admin/users", params={"role": "delivery"}, headers=staff["admin"]["headers"])
    assert [u["_id"] for u in r.json()["users"]] == [staff["delivery"]["_id"]]
    assert client.get("/admin/users", headers=staff["manager"]["headers"]).status_code == 403


def test_login_rate_limit(client):
    body = {"email": "nobody@example.com", "password": "whatever"}
    for _ in range(RATE_LIMIT_MAX_ATTEMPTS):
        assert client.post("/api/auth/login", json=body).status_code == 401
    r = client.post("/api/auth/login", json=body)
    assert r.status_code == 429
    assert r.json()["success"] is False


def test_seed_is_idempotent_for_staff(client, mongo):
    first = client.post("/api/auth/seed").json()["created"]
    assert first["admin"] == 1
    assert first["designer"] == 5
    assert first["product"] == 8

    admin_id = str(mongo["user"].find_one({"role": "admin"})["_id"])
    headers = {"Authorization": f"Bearer {create_access_token({'sub': admin_id, 'role': 'admin'})}"}
    assert client.post("/api/auth/seed", headers=headers).json()["created"] == {}
    assert mongo["user"].count_documents({"role": "delivery"}) == 3


def test_reseed_needs_an_admin(client, staff):
    r = client.post("/api/auth/seed")
    assert r.status_code == 403
    assert r.json()["success"] is False
    assert client.post("/api/auth/seed", headers=staff["manager"]["headers"]).status_code == 403
    assert client.post("/api/auth/seed", headers=staff["admin"]["headers"]).status_code == 200


def test_seed_can_be_disabled(client, mongo, monkeypatch):
    monkeypatch.setattr(main, "ALLOW_SEED", False)
    assert client.post("/api/auth/seed").status_code == 403
    assert mongo["user"].count_documents({}) == 0


def test_register_rejects_short_name(client, mongo):
    r = client.post("/api/auth/register", json={"name": "A", "email": "a@example.com", "password": "secret123"})
    assert r.status_code == 422
    assert mongo["user"].count_documents({}) == 0
