import time
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import jwt
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from auth import create_access_token
from models import RecurringExpense, RecurringInterval, RefreshToken
from utils import advance_billing_date


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == "OK"


# ============================================
# AUTHENTICATION TESTS
# ============================================


def test_login_returns_token_pair(client: TestClient, test_user, credentials: dict):
    """Test logging in with valid credentials."""
    response = client.post("/login_check", json=credentials)
    assert response.status_code == 200
    data = response.json()
    assert data["refresh_token"]

    claims = jwt.decode(data["token"], options={"verify_signature": False})
    assert claims["username"] == credentials["email"]
    assert claims["firstName"] == "Test"
    assert claims["lastName"] == "User"
    assert claims["exp"] > time.time()


def test_login_email_is_case_insensitive(client: TestClient, test_user, credentials: dict):
    response = client.post(
        "/login_check", json={"email": credentials["email"].upper(), "password": credentials["password"]}
    )
    assert response.status_code == 200


def test_login_wrong_password(client: TestClient, test_user, credentials: dict):
    """Test that bad credentials are rejected."""
    response = client.post("/login_check", json={"email": credentials["email"], "password": "nope-nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials."


def test_login_unknown_user(client: TestClient):
    response = client.post("/login_check", json={"email": "ghost@example.com", "password": "whatever1"})
    assert response.status_code == 401


def test_refresh_issues_new_token(client: TestClient, tokens: dict):
    """Test exchanging a refresh token for a new access token."""
    response = client.post("/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200
    data = response.json()
    assert data["refresh_token"] == tokens["refresh_token"]

    headers = {"Authorization": f"Bearer {data['token']}"}
    assert client.get("/recurring-categories/", headers=headers).status_code == 200


def test_refresh_unknown_token(client: TestClient):
    response = client.post("/token/refresh", json={"refresh_token": "not-a-real-token"})
    assert response.status_code == 401


def test_refresh_expired_token(client: TestClient, session: Session, tokens: dict):
    """Test that a refresh token past its validity is rejected."""
    stored = session.exec(
        select(RefreshToken).where(RefreshToken.refresh_token == tokens["refresh_token"])
    ).one()
    stored.valid_until = datetime.now(UTC) - timedelta(seconds=1)
    session.add(stored)
    session.commit()

    response = client.post("/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 401


def test_protected_endpoint_requires_token(client: TestClient):
    """Test that CRUD endpoints require authentication."""
    response = client.get("/recurring-expenses/")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_protected_endpoint_rejects_garbage_token(client: TestClient):
    response = client.get("/recurring-expenses/", headers={"Authorization": "Bearer abc.def.ghi"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid JWT Token"


def test_protected_endpoint_rejects_expired_token(client: TestClient, test_user):
    token = create_access_token(test_user, now=time.time() - 7200)
    response = client.get("/recurring-expenses/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Expired JWT Token"


# ============================================
# CATEGORY TESTS
# ============================================


def test_create_category(client: TestClient, auth_headers: dict):
    """Test creating a category."""
    response = client.post("/recurring-categories/", json={"name": "  Utilities "}, headers=auth_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Utilities"
    assert "id" in data


def test_create_category_duplicate_ignores_case(client: TestClient, auth_headers: dict, test_category: dict):
    """Test that duplicate names are rejected regardless of case."""
    response = client.post("/recurring-categories/", json={"name": "STREAMING"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Category name already exists."


def test_create_category_blank_name(client: TestClient, auth_headers: dict):
    response = client.post("/recurring-categories/", json={"name": "   "}, headers=auth_headers)
    assert response.status_code == 422


def test_create_category_name_too_long(client: TestClient, auth_headers: dict):
    response = client.post("/recurring-categories/", json={"name": "x" * 256}, headers=auth_headers)
    assert response.status_code == 422


def test_list_categories_search_and_order(client: TestClient, auth_headers: dict):
    """Test partial case-insensitive search and descending order."""
    for name in ["Software", "Streaming", "Utilities"]:
        client.post("/recurring-categories/", json={"name": name}, headers=auth_headers)

    response = client.get(
        "/recurring-categories/", params={"name": "s", "order": "desc"}, headers=auth_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert [c["name"] for c in data["hydra:member"]] == ["Utilities", "Streaming", "Software"]
    assert data["hydra:totalItems"] == 3

    response = client.get("/recurring-categories/", params={"name": "STREAM"}, headers=auth_headers)
    assert [c["name"] for c in response.json()["hydra:member"]] == ["Streaming"]


def test_list_categories_pagination(client: TestClient, auth_headers: dict):
    for i in range(5):
        client.post("/recurring-categories/", json={"name": f"Category {i}"}, headers=auth_headers)

    response = client.get(
        "/recurring-categories/", params={"page": 2, "items_per_page": 2}, headers=auth_headers
    )
    data = response.json()
    assert data["hydra:totalItems"] == 5
    assert data["page"] == 2
    assert data["items_per_page"] == 2
    assert [c["name"] for c in data["hydra:member"]] == ["Category 2", "Category 3"]


def test_get_category_not_found(client: TestClient, auth_headers: dict):
    response = client.get("/recurring-categories/99999", headers=auth_headers)
    assert response.status_code == 404


def test_rename_category(client: TestClient, auth_headers: dict, test_category: dict):
    response = client.patch(
        f"/recurring-categories/{test_category['id']}", json={"name": "Video"}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Video"


def test_rename_category_to_own_name_in_other_case(client: TestClient, auth_headers: dict, test_category: dict):
    response = client.patch(
        f"/recurring-categories/{test_category['id']}", json={"name": "streaming"}, headers=auth_headers
    )
    assert response.status_code == 200


def test_rename_category_conflict(client: TestClient, auth_headers: dict, test_category: dict):
    client.post("/recurring-categories/", json={"name": "Music"}, headers=auth_headers)
    response = client.patch(
        f"/recurring-categories/{test_category['id']}", json={"name": "music"}, headers=auth_headers
    )
    assert response.status_code == 400


def test_delete_category_clears_expense_reference(
    client: TestClient, auth_headers: dict, test_category: dict, test_expense: dict
):
    """Test that deleting a category leaves its expenses uncategorized."""
    response = client.delete(f"/recurring-categories/{test_category['id']}", headers=auth_headers)
    assert response.status_code == 200

    response = client.get(f"/recurring-expenses/{test_expense['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["category"] is None

    response = client.get(f"/recurring-categories/{test_category['id']}", headers=auth_headers)
    assert response.status_code == 404


# ============================================
# RECURRING EXPENSE TESTS
# ============================================


def test_create_expense(test_expense: dict, test_category: dict):
    """Test creating a recurring expense."""
    assert test_expense["name"] == "Netflix"
    assert Decimal(str(test_expense["amount"])) == Decimal("15.49")
    assert test_expense["currency"] == "EUR"
    assert test_expense["interval"] == "monthly"
    assert test_expense["next_billing_date"] == "2099-01-15"
    assert test_expense["is_active"] is True
    assert test_expense["notes"] == "Family plan"
    assert test_expense["category"] == {"id": test_category["id"], "name": "Streaming"}


def test_create_expense_in_the_past_is_caught_up(client: TestClient, auth_headers: dict):
    due = date.today() - timedelta(days=40)
    response = client.post(
        "/recurring-expenses/",
        json={
            "name": "Newspaper",
            "amount": "4.50",
            "currency": "USD",
            "interval": "weekly",
            "next_billing_date": due.isoformat(),
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    expected = advance_billing_date(due, RecurringInterval.WEEKLY, date.today())
    assert response.json()["next_billing_date"] == expected.isoformat()


def test_create_expense_validation(client: TestClient, auth_headers: dict):
    """Test that invalid payloads are rejected."""
    valid = {
        "name": "Rent",
        "amount": "1250.00",
        "currency": "EUR",
        "interval": "monthly",
        "next_billing_date": "2099-01-01",
    }
    invalid_variants = [
        {"currency": "EURO"},
        {"currency": "E1R"},
        {"currency": "ABC"},
        {"amount": "-1"},
        {"amount": "1.234"},
        {"interval": "daily"},
        {"name": ""},
        {"notes": "x" * 1025},
        {"next_billing_date": "not-a-date"},
    ]
    for variant in invalid_variants:
        response = client.post("/recurring-expenses/", json={**valid, **variant}, headers=auth_headers)
        assert response.status_code == 422, variant


def test_create_expense_unknown_category(client: TestClient, auth_headers: dict):
    response = client.post(
        "/recurring-expenses/",
        json={
            "name": "Rent",
            "amount": "1250.00",
            "currency": "EUR",
            "interval": "monthly",
            "next_billing_date": "2099-01-01",
            "category_id": 99999,
        },
        headers=auth_headers,
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Category not found"


def test_get_expense_catches_up_stored_date(
    client: TestClient, auth_headers: dict, session: Session, test_expense: dict
):
    """Test that reading an overdue expense advances and persists its due date."""
    stored = session.get(RecurringExpense, test_expense["id"])
    stored.next_billing_date = date.today() - timedelta(days=100)
    session.add(stored)
    session.commit()

    response = client.get(f"/recurring-expenses/{test_expense['id']}", headers=auth_headers)
    assert response.status_code == 200
    returned = date.fromisoformat(response.json()["next_billing_date"])
    assert returned >= date.today()

    session.expire_all()
    assert session.get(RecurringExpense, test_expense["id"]).next_billing_date == returned

    # Second read is a fixed point
    again = client.get(f"/recurring-expenses/{test_expense['id']}", headers=auth_headers)
    assert again.json()["next_billing_date"] == returned.isoformat()


def test_get_expense_not_found(client: TestClient, auth_headers: dict):
    response = client.get("/recurring-expenses/99999", headers=auth_headers)
    assert response.status_code == 404


def _create(client: TestClient, headers: dict, **fields) -> dict:
    payload = {
        "amount": "10.00",
        "currency": "EUR",
        "interval": "monthly",
        "next_billing_date": "2099-06-01",
        **fields,
    }
    response = client.post("/recurring-expenses/", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()


def test_list_expenses_filters(client: TestClient, auth_headers: dict):
    """Test name, currency and active filters."""
    _create(client, auth_headers, name="Spotify Family", currency="SEK")
    _create(client, auth_headers, name="Spotify Duo", is_active=False)
    _create(client, auth_headers, name="Electricity")

    response = client.get("/recurring-expenses/", params={"name": "spotify"}, headers=auth_headers)
    assert {e["name"] for e in response.json()["hydra:member"]} == {"Spotify Family", "Spotify Duo"}

    response = client.get("/recurring-expenses/", params={"currency": "sek"}, headers=auth_headers)
    assert [e["name"] for e in response.json()["hydra:member"]] == ["Spotify Family"]

    response = client.get("/recurring-expenses/", params={"is_active": False}, headers=auth_headers)
    assert [e["name"] for e in response.json()["hydra:member"]] == ["Spotify Duo"]


def test_list_expenses_ordering(client: TestClient, auth_headers: dict):
    _create(client, auth_headers, name="Cheap", amount="1.00", next_billing_date="2099-03-01")
    _create(client, auth_headers, name="Pricey", amount="99.00", next_billing_date="2099-01-01")
    _create(client, auth_headers, name="Middle", amount="20.00", next_billing_date="2099-02-01")

    response = client.get(
        "/recurring-expenses/", params={"order_by": "amount", "order": "desc"}, headers=auth_headers
    )
    assert [e["name"] for e in response.json()["hydra:member"]] == ["Pricey", "Middle", "Cheap"]

    response = client.get(
        "/recurring-expenses/", params={"order_by": "next_billing_date"}, headers=auth_headers
    )
    assert [e["name"] for e in response.json()["hydra:member"]] == ["Pricey", "Middle", "Cheap"]


def test_list_expenses_rejects_unknown_order_field(client: TestClient, auth_headers: dict):
    response = client.get("/recurring-expenses/", params={"order_by": "notes"}, headers=auth_headers)
    assert response.status_code == 422


def test_list_expenses_catches_up_before_ordering(
    client: TestClient, auth_headers: dict, session: Session
):
    """Stale due dates are advanced before the collection is ordered."""
    later = _create(client, auth_headers, name="Later", next_billing_date="2099-01-01")
    stale = _create(client, auth_headers, name="Stale", interval="yearly")
    stored = session.get(RecurringExpense, stale["id"])
    stored.next_billing_date = date(2001, 5, 5)
    session.add(stored)
    session.commit()

    response = client.get(
        "/recurring-expenses/", params={"order_by": "next_billing_date"}, headers=auth_headers
    )
    members = response.json()["hydra:member"]
    assert [e["id"] for e in members] == [stale["id"], later["id"]]
    assert date.fromisoformat(members[0]["next_billing_date"]) >= date.today()


def test_update_expense_partial(client: TestClient, auth_headers: dict, test_expense: dict):
    """Test that PATCH only changes the fields sent, including is_active."""
    response = client.patch(
        f"/recurring-expenses/{test_expense['id']}",
        json={"is_active": False, "amount": "17.99", "currency": "usd"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["is_active"] is False
    assert Decimal(str(data["amount"])) == Decimal("17.99")
    assert data["currency"] == "USD"
    assert data["name"] == "Netflix"
    assert data["category"]["name"] == "Streaming"


def test_update_expense_clear_category(client: TestClient, auth_headers: dict, test_expense: dict):
    response = client.patch(
        f"/recurring-expenses/{test_expense['id']}", json={"category_id": None}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["category"] is None


def test_update_expense_rejects_null_required_field(client: TestClient, auth_headers: dict, test_expense: dict):
    response = client.patch(
        f"/recurring-expenses/{test_expense['id']}", json={"name": None}, headers=auth_headers
    )
    assert response.status_code == 422


def test_delete_expense(client: TestClient, auth_headers: dict, test_expense: dict):
    """Test deleting a recurring expense."""
    response = client.delete(f"/recurring-expenses/{test_expense['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["id"] == test_expense["id"]

    response = client.get(f"/recurring-expenses/{test_expense['id']}", headers=auth_headers)
    assert response.status_code == 404
