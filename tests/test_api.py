from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from database import init_db, make_engine, make_session_factory
from main import app, get_db


def make_client() -> TestClient:
    engine = make_engine("sqlite+pysqlite://", poolclass=StaticPool)
    init_db(engine)
    TestingSession = make_session_factory(engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def register(client: TestClient, email: str) -> dict[str, str]:
    resp = client.post(
        "/api/v1/register",
        json={
            "name": email.split("@")[0],
            "email": email,
            "password": "password123",
            "password_confirmation": "password123",
        },
    )
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def make_category(client, headers, name="Food", type_="expense") -> int:
    resp = client.post(
        "/api/v1/categories", json={"name": name, "type": type_}, headers=headers
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def test_register_login_me_logout() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")

    me = client.get("/api/v1/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "alice@example.com"
    assert "password_hash" not in me.json()

    login = client.post(
        "/api/v1/login",
        json={"email": "alice@example.com", "password": "password123"},
    )
    assert login.status_code == 200
    assert login.json()["token"]

    logout = client.post("/api/v1/logout", headers=headers)
    assert logout.status_code == 200
    assert client.get("/api/v1/me", headers=headers).status_code == 401


def test_register_rejects_duplicate_email_and_mismatched_password() -> None:
    client = make_client()
    register(client, "alice@example.com")

    dup = client.post(
        "/api/v1/register",
        json={
            "name": "Other",
            "email": "alice@example.com",
            "password": "password123",
            "password_confirmation": "password123",
        },
    )
    assert dup.status_code == 400
    assert "email" in dup.json()["errors"]

    mismatch = client.post(
        "/api/v1/register",
        json={
            "name": "Bob",
            "email": "bob@example.com",
            "password": "password123",
            "password_confirmation": "different123",
        },
    )
    assert mismatch.status_code == 400
    assert "password" in mismatch.json()["errors"]


def test_login_with_wrong_password_fails_on_email_field() -> None:
    client = make_client()
    register(client, "alice@example.com")

    resp = client.post(
        "/api/v1/login", json={"email": "alice@example.com", "password": "wrongpass"}
    )
    assert resp.status_code == 400
    assert "email" in resp.json()["errors"]


def test_protected_routes_require_a_token() -> None:
    client = make_client()
    for path in ("/api/v1/me", "/api/v1/budgets", "/api/v1/budgets/reports", "/api/v1/transactions", "/api/v1/categories"):
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.json() == {"message": "Unauthenticated."}

    bad = client.get("/api/v1/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


def test_transaction_round_trip_and_listing() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")
    category_id = make_category(client, headers)

    created = client.post(
        "/api/v1/transactions",
        json={
            "category_id": category_id,
            "amount": "-42.50",
            "description": "Groceries",
            "date": "2025-03-01",
        },
        headers=headers,
    )
    assert created.status_code == 201
    txn_id = created.json()["id"]

    fetched = client.get(f"/api/v1/transactions/{txn_id}", headers=headers).json()
    assert Decimal(fetched["amount"]) == Decimal("-42.50")
    assert fetched["description"] == "Groceries"
    assert fetched["date"] == "2025-03-01"
    assert fetched["category_id"] == category_id

    listing = client.get(
        "/api/v1/transactions",
        params={"type": "expense", "start_date": "2025-03-01", "per_page": 5},
        headers=headers,
    ).json()
    assert listing["total_count"] == 1
    assert listing["current_page"] == 1
    assert listing["per_page"] == 5
    assert listing["total_pages"] == 1
    assert listing["data"][0]["id"] == txn_id

    income = client.get(
        "/api/v1/transactions", params={"type": "income"}, headers=headers
    ).json()
    assert income["data"] == []


def test_transaction_listing_rejects_malformed_date() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")

    resp = client.get(
        "/api/v1/transactions", params={"end_date": "31/12/2025"}, headers=headers
    )
    assert resp.status_code == 400
    assert "end_date" in resp.json()["errors"]


def test_transaction_listing_rejects_non_numeric_category() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")
    category_id = make_category(client, headers)
    client.post(
        "/api/v1/transactions",
        json={"category_id": category_id, "amount": 10, "date": "2025-01-01"},
        headers=headers,
    )

    resp = client.get(
        "/api/v1/transactions", params={"category_id": "abc"}, headers=headers
    )
    assert resp.status_code == 400
    assert "category_id" in resp.json()["errors"]


def test_bad_page_gives_same_error_shape_on_every_listing() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")

    for path in ("/api/v1/transactions", "/api/v1/budgets/reports"):
        resp = client.get(path, params={"page": "two"}, headers=headers)
        assert resp.status_code == 400
        body = resp.json()
        assert body["message"] == "The page must be an integer"
        assert body["errors"] == {"page": ["The page must be an integer"]}


def test_foreign_records_are_not_found_without_body() -> None:
    client = make_client()
    alice = register(client, "alice@example.com")
    bob = register(client, "bob@example.com")
    category_id = make_category(client, alice)

    budget = client.post(
        "/api/v1/budgets",
        json={"category_id": category_id, "limit_amount": 500},
        headers=alice,
    ).json()
    txn = client.post(
        "/api/v1/transactions",
        json={"category_id": category_id, "amount": 10, "date": "2025-01-01"},
        headers=alice,
    ).json()

    for path in (f"/api/v1/budgets/{budget['id']}", f"/api/v1/transactions/{txn['id']}", "/api/v1/budgets/9999"):
        resp = client.get(path, headers=bob)
        assert resp.status_code == 404
        assert resp.content == b""

    assert client.delete(f"/api/v1/budgets/{budget['id']}", headers=bob).status_code == 404
    assert client.get(f"/api/v1/budgets/{budget['id']}", headers=alice).status_code == 200


def test_duplicate_budget_is_rejected_with_message() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")
    category_id = make_category(client, headers)

    first = client.post(
        "/api/v1/budgets",
        json={"category_id": category_id, "limit_amount": "500.00"},
        headers=headers,
    )
    assert first.status_code == 201

    second = client.post(
        "/api/v1/budgets",
        json={"category_id": category_id, "limit_amount": "600.00"},
        headers=headers,
    )
    assert second.status_code == 400
    assert second.json() == {"message": "A budget already exists for this category"}

    budgets = client.get("/api/v1/budgets", headers=headers).json()
    assert len(budgets) == 1
    assert Decimal(budgets[0]["limit_amount"]) == Decimal("500")


def test_budget_validation_errors_are_per_field() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")

    resp = client.post(
        "/api/v1/budgets", json={"category_id": 1, "limit_amount": -5}, headers=headers
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "The given data was invalid."
    assert "limit_amount" in body["errors"]

    missing_category = client.post(
        "/api/v1/budgets", json={"category_id": 77, "limit_amount": 5}, headers=headers
    )
    assert missing_category.status_code == 400
    assert "category_id" in missing_category.json()["errors"]


def test_budget_report_endpoint() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")

    empty = client.get("/api/v1/budgets/reports", headers=headers)
    assert empty.status_code == 404
    assert empty.json()["message"]

    for name, amount in (("Rent", 100), ("Food", 200), ("Fun", 300)):
        category_id = make_category(client, headers, name=name)
        resp = client.post(
            "/api/v1/budgets",
            json={"category_id": category_id, "limit_amount": amount},
            headers=headers,
        )
        assert resp.status_code == 201

    report = client.get(
        "/api/v1/budgets/reports", params={"per_page": 2, "page": 2}, headers=headers
    )
    assert report.status_code == 200
    body = report.json()
    stats = {k: Decimal(v) for k, v in body["statistics"].items()}
    assert stats == {
        "total": Decimal("600"),
        "average": Decimal("200"),
        "max": Decimal("300"),
        "min": Decimal("100"),
    }
    assert body["budgets_by_category"]["Food"]["count"] == 1
    assert Decimal(body["budgets_by_category"]["Food"]["total"]) == Decimal("200")
    assert len(body["data"]) == 1
    assert body["total_pages"] == 2


def test_category_crud_and_delete_policy() -> None:
    client = make_client()
    headers = register(client, "alice@example.com")
    category_id = make_category(client, headers, name="Travel")

    updated = client.patch(
        f"/api/v1/categories/{category_id}", json={"type": "income"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Travel"
    assert updated.json()["type"] == "income"

    client.post(
        "/api/v1/transactions",
        json={"category_id": category_id, "amount": 1, "date": "2025-01-01"},
        headers=headers,
    )
    blocked = client.delete(f"/api/v1/categories/{category_id}", headers=headers)
    assert blocked.status_code == 400
    assert "message" in blocked.json()

    spare_id = make_category(client, headers, name="Spare")
    deleted = client.delete(f"/api/v1/categories/{spare_id}", headers=headers)
    assert deleted.status_code == 204
    assert client.get(f"/api/v1/categories/{spare_id}", headers=headers).status_code == 404
