from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from portal.config import PortalConfig
from portal.enrollment import Enrollment
from portal.records import AGGREGATE_KEY, DirectorSeed, RecordStore
from portal.storage import MappingBackend
from portal.web import create_app

SEED = DirectorSeed(email="director@example.com", password="director-pass", name="Director")


@pytest.fixture()
def records() -> RecordStore:
    return RecordStore(MappingBackend(), seed=SEED)


@pytest.fixture()
def client(records: RecordStore, tmp_path: Path):
    config = PortalConfig(database_path=tmp_path / "unused.sqlite3", director=SEED)
    app = create_app(records=records, config=config, session_secret="not-so-secret")
    with TestClient(app) as test_client:
        yield test_client


def _login(client: TestClient, email: str, password: str):
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)


def _register(client: TestClient, email: str = "kid@example.com", name: str = "Kid"):
    return client.post(
        "/register",
        data={"email": email, "password": "secret1", "name": name, "age": "10"},
        follow_redirects=False,
    )


def test_create_app_requires_session_secret(records: RecordStore, tmp_path: Path) -> None:
    config = PortalConfig(database_path=tmp_path / "unused.sqlite3", director=SEED)
    with pytest.raises(RuntimeError):
        create_app(records=records, config=config)


@pytest.mark.parametrize("path", ["/director", "/admin", "/client", "/account", "/dashboard"])
def test_anonymous_visitor_is_sent_to_login(client: TestClient, path: str) -> None:
    response = client.get(path, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"].endswith("/")


def test_director_login_lands_on_director_dashboard(client: TestClient) -> None:
    response = _login(client, SEED.email, SEED.password)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/dashboard")

    dashboard = client.get("/dashboard", follow_redirects=False)
    assert dashboard.headers["location"].endswith("/director")

    page = client.get("/director")
    assert page.status_code == 200
    assert "Login: director@example.com" in page.text


def test_client_is_bounced_from_director_dashboard(client: TestClient) -> None:
    _register(client)

    response = client.get("/director", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/dashboard")

    landing = client.get("/dashboard", follow_redirects=False)
    assert landing.headers["location"].endswith("/client")
    assert client.get("/client").status_code == 200


def test_invalid_login_shows_message(client: TestClient) -> None:
    response = client.post("/login", data={"email": SEED.email, "password": "nope"})

    assert response.status_code == 200
    assert "Invalid email or password." in response.text
    assert client.get("/director", follow_redirects=False).headers["location"].endswith("/")


def test_duplicate_registration_is_rejected(client: TestClient, records: RecordStore) -> None:
    assert _register(client).headers["location"].endswith("/dashboard")
    client.get("/logout")

    response = client.post(
        "/register",
        data={"email": "kid@example.com", "password": "secret1", "name": "Other", "age": "11"},
    )

    assert "A user with that email already exists." in response.text
    assert len(records.load().users) == 2


def test_profile_rename_shows_in_navigation_without_relogin(client: TestClient) -> None:
    _register(client)

    response = client.post("/account/profile", data={"name": "X", "email": "kid@example.com"})

    assert response.status_code == 200
    assert 'class="nav-user">X</a>' in response.text


def test_director_manages_users_from_dashboard(client: TestClient, records: RecordStore) -> None:
    _login(client, SEED.email, SEED.password)

    client.post(
        "/director/users",
        data={"email": "coach@example.com", "name": "Coach", "password": "secret1", "role": "admin"},
    )
    coach = records.load().find_user_by_email("coach@example.com")
    assert coach is not None
    assert coach.role == "admin"

    client.post(f"/director/users/{coach.id}/role", data={"role": "trainer"})
    coach = records.load().find_user(coach.id)
    assert coach is not None
    assert coach.role == "trainer"

    page = client.post("/director/users/director-1/delete")
    assert "You cannot delete your own account" in page.text

    client.post(f"/director/users/{coach.id}/delete")
    assert records.load().find_user(coach.id) is None


def test_director_reviews_submitted_application(client: TestClient, records: RecordStore) -> None:
    _register(client)
    client.post("/client/applications", data={"program": "BMX beginners", "message": ""})
    client.get("/logout")

    application = records.load().applications[0]
    _login(client, SEED.email, SEED.password)
    client.post(f"/applications/{application.id}/approved")

    reviewed = records.load().applications[0]
    assert reviewed.status == "approved"
    assert reviewed.reviewed_by == SEED.name


def test_json_session_api(client: TestClient) -> None:
    assert client.get("/api/session").json() == {"ok": False, "error": None, "user": None}

    failed = client.post("/api/login", json={"email": SEED.email, "password": "wrong"})
    assert failed.status_code == 401
    assert failed.json()["error"] == "invalid_credentials"

    ok = client.post("/api/login", json={"email": SEED.email, "password": SEED.password})
    assert ok.status_code == 200
    assert ok.json()["user"]["role"] == "director"
    assert "password" not in ok.json()["user"]

    session = client.get("/api/session").json()
    assert session["ok"] is True
    assert session["user"]["id"] == "director-1"

    client.post("/api/logout")
    assert client.get("/api/session").json()["ok"] is False


def test_json_register_api(client: TestClient) -> None:
    created = client.post(
        "/api/register",
        json={"email": "kid@example.com", "password": "secret1", "name": "Kid", "age": 9},
    )
    assert created.status_code == 200
    assert created.json()["user"]["role"] == "client"

    again = client.post(
        "/api/register",
        json={"email": "kid@example.com", "password": "secret1", "name": "Kid"},
    )
    assert again.status_code == 409
    assert again.json()["error"] == "email_taken"

    invalid = client.post("/api/register", json={"email": "a@b.c", "password": "x", "name": "Kid"})
    assert invalid.status_code == 422


def test_corrupt_data_renders_error_page(
    client: TestClient, records: RecordStore, caplog: pytest.LogCaptureFixture
) -> None:
    _login(client, SEED.email, SEED.password)
    records.backend.set(AGGREGATE_KEY, "{broken")

    response = client.get("/director")

    assert response.status_code == 500
    assert "reset-data" in response.text
    logged = [r for r in caplog.records if r.name == "kinetic.portal.web"]
    assert logged and logged[0].exc_info is not None


def test_json_register_applies_form_rules(client: TestClient, records: RecordStore) -> None:
    blank = client.post(
        "/api/register",
        json={"email": " a@x.com ", "password": "      ", "name": "  "},
    )
    assert blank.status_code == 422
    assert blank.json()["error"] == "invalid_input"

    short_name = client.post(
        "/api/register",
        json={"email": "a@x.com", "password": "secret1", "name": " K "},
    )
    assert short_name.status_code == 422
    assert any("Name" in message for message in short_name.json()["messages"])

    created = client.post(
        "/api/register",
        json={"email": " a@x.com ", "password": "secret1", "name": " Ann "},
    )
    assert created.status_code == 200
    assert created.json()["user"]["email"] == "a@x.com"
    assert created.json()["user"]["name"] == "Ann"

    again = client.post("/api/register", json={"email": "a@x.com", "password": "secret1", "name": "Ann"})
    assert again.status_code == 409
    assert [u.email for u in records.load().users].count("a@x.com") == 1


def test_director_dashboard_lists_chat_history(client: TestClient, records: RecordStore) -> None:
    _register(client)
    kid = records.load().find_user_by_email("kid@example.com")
    assert kid is not None
    Enrollment(records).record_chat_message(kid.id, message="Can I bring a scooter?", response="Yes!")
    client.get("/logout")

    _login(client, SEED.email, SEED.password)
    page = client.get("/director")

    assert "Chat history (1)" in page.text
    assert "Can I bring a scooter?" in page.text
