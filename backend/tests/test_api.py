from datetime import timedelta
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient

from deadswitch.api.deps import get_dispatcher, get_mailer, get_orchestrator, get_storage
from deadswitch.core.db import get_db_session
from deadswitch.main import app
from deadswitch.models.message import Message
from deadswitch.services.codec import get_codec
from deadswitch.services.sweeper import SweepDriver

API = "/api/v1"
PASSWORD = "Correct-Horse-Battery-9-Staple"


@pytest.fixture
def client(fake_redis, db_session_override, codec, storage, dispatcher, orchestrator, mailer):
    app.dependency_overrides = {
        get_db_session: db_session_override,
        get_codec: lambda: codec,
        get_storage: lambda: storage,
        get_dispatcher: lambda: dispatcher,
        get_orchestrator: lambda: orchestrator,
        get_mailer: lambda: mailer,
    }
    api_client = TestClient(app, base_url="https://testserver")
    yield api_client
    app.dependency_overrides = {}


@pytest.fixture
def owner(client):
    """Configure the master password and log in; returns CSRF headers."""
    response = client.post(
        f"{API}/setup", json={"password": PASSWORD, "owner_email": "owner@example.com"}
    )
    assert response.status_code == 201
    response = client.post(f"{API}/auth/login", json={"password": PASSWORD})
    assert response.status_code == 200
    return {"X-CSRF-Token": response.json()["csrf_token"]}


def create(client, headers, **overrides):
    body = {
        "content": "to be opened later",
        "recipient_email": "heir@example.com",
        "trigger_duration": 60,
        "reminders": [10],
    }
    body.update(overrides)
    response = client.post(f"{API}/messages", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_and_info(client):
    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert health["sweeper"]["state"] == "disabled"
    assert client.get("/api/info").json()["name"] == "deadswitch"


def test_health_reports_a_stopped_sweeper(client, orchestrator, monkeypatch):
    driver = SweepDriver(orchestrator, interval=60)
    driver.run_once()
    monkeypatch.setattr(app.state, "sweep_driver", driver, raising=False)

    health = client.get("/api/health").json()

    assert health["status"] == "degraded"
    assert health["sweeper"]["state"] == "stopped"
    assert health["sweeper"]["last_run_ok"] is True


def test_setup_status_flow(client):
    assert client.get(f"{API}/setup/status").json() == {"configured": False}
    client.post(f"{API}/setup", json={"password": PASSWORD})
    assert client.get(f"{API}/setup/status").json() == {"configured": True}


def test_setup_returns_recovery_key_once(client):
    first = client.post(f"{API}/setup", json={"password": PASSWORD})
    second = client.post(f"{API}/setup", json={"password": PASSWORD})

    assert first.json()["recovery_key"].startswith("RK-")
    assert second.status_code == 400
    assert second.json()["code"] == "bad_request"


def test_setup_honeypot(client):
    response = client.post(f"{API}/setup", json={"password": PASSWORD, "website": "spam"})
    assert response.status_code == 400


def test_wrong_password_is_unauthorized(client):
    client.post(f"{API}/setup", json={"password": PASSWORD})

    response = client.post(f"{API}/auth/login", json={"password": "Wrong-Password-123!"})

    assert response.status_code == 401
    assert response.json()["code"] == "unauthorized"


def test_login_is_rate_limited(client):
    client.post(f"{API}/setup", json={"password": PASSWORD})
    for _ in range(4):
        client.post(f"{API}/auth/login", json={"password": "Wrong-Password-123!"})

    response = client.post(f"{API}/auth/login", json={"password": PASSWORD})

    assert response.status_code == 429


def test_owner_routes_need_a_session(client):
    assert client.get(f"{API}/messages").status_code == 401
    assert client.get(f"{API}/settings").status_code == 401


def test_state_change_needs_csrf_token(client, owner):
    body = {"content": "x", "recipient_email": "heir@example.com", "trigger_duration": 60}

    missing = client.post(f"{API}/messages", json=body)
    wrong = client.post(f"{API}/messages", json=body, headers={"X-CSRF-Token": "nope"})

    assert missing.status_code == 403
    assert wrong.status_code == 403


def test_session_and_logout(client, owner):
    session = client.get(f"{API}/auth/session").json()
    assert session["authenticated"]
    assert session["csrf_token"] == owner["X-CSRF-Token"]

    assert client.post(f"{API}/auth/logout", headers=owner).status_code == 200
    assert client.get(f"{API}/auth/session").json()["authenticated"] is False


def test_recovery_signs_out_open_sessions(client):
    recovery_key = client.post(f"{API}/setup", json={"password": PASSWORD}).json()["recovery_key"]
    client.post(f"{API}/auth/login", json={"password": PASSWORD})
    assert client.get(f"{API}/messages").status_code == 200

    response = client.post(
        f"{API}/auth/recover",
        json={"recovery_key": recovery_key, "new_password": "Violet+Lantern+Orbit+42+Quay"},
    )

    assert response.status_code == 200
    assert client.get(f"{API}/messages").status_code == 401
    assert client.get(f"{API}/auth/session").json()["authenticated"] is False
    relogin = client.post(f"{API}/auth/login", json={"password": "Violet+Lantern+Orbit+42+Quay"})
    assert relogin.status_code == 200
    assert client.get(f"{API}/messages").status_code == 200


def test_create_then_read_and_check_in(client, owner):
    created = create(client, owner)
    token = created["management_token"]
    message = created["message"]

    assert message["status"] == "active"
    assert [(r["minutes_before"], r["sent"]) for r in message["reminders"]] == [(10, False)]
    assert "content" not in message

    content = client.post(f"{API}/checkin/content", json={"management_token": token})
    assert content.json() == {"content": "to be opened later"}

    checked = client.post(f"{API}/checkin", json={"management_token": token})
    assert checked.status_code == 200
    assert checked.json()["id"] == message["id"]

    listed = client.get(f"{API}/messages").json()
    assert [m["id"] for m in listed] == [message["id"]]


def test_unknown_token_is_404(client):
    response = client.post(f"{API}/checkin", json={"management_token": "unknown"})

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_create_validation_errors(client, owner):
    response = client.post(
        f"{API}/messages",
        json={"content": "x", "recipient_email": "bad", "trigger_duration": 60},
        headers=owner,
    )
    assert response.status_code == 400

    response = client.post(
        f"{API}/messages",
        json={
            "content": "x",
            "recipient_email": "heir@example.com",
            "trigger_duration": 60,
            "reminders": [60],
        },
        headers=owner,
    )
    assert response.status_code == 400


def test_update_and_delete(client, owner):
    message_id = create(client, owner)["message"]["id"]

    updated = client.put(
        f"{API}/messages/{message_id}", json={"trigger_duration": 120}, headers=owner
    )
    assert updated.json()["trigger_duration"] == 120

    assert client.delete(f"{API}/messages/{message_id}", headers=owner).status_code == 200
    assert client.get(f"{API}/messages/{message_id}").status_code == 404


def test_delete_with_token(client, owner):
    created = create(client, owner)

    response = client.post(
        f"{API}/checkin/delete", json={"management_token": created["management_token"]}
    )

    assert response.status_code == 200
    assert client.get(f"{API}/messages").json() == []


def test_triggered_switch_refuses_check_in(client, owner, orchestrator, session, t0):
    created = create(client, owner)
    message = session.get(Message, created["message"]["id"])
    message.last_seen = t0
    session.add(message)
    session.commit()
    orchestrator.sweep(t0 + timedelta(minutes=61))

    response = client.post(
        f"{API}/checkin", json={"management_token": created["management_token"]}
    )

    assert response.status_code == 409
    assert response.json()["code"] == "already_triggered"
    detail = client.get(f"{API}/messages/{created['message']['id']}").json()
    assert detail["status"] == "triggered"


def test_quick_heartbeat(client, owner):
    create(client, owner)
    token = client.get(f"{API}/heartbeat-token").json()["token"]

    assert client.post(f"{API}/quick-heartbeat/{token}").json() == {"updated": 1}
    assert client.post(f"{API}/quick-heartbeat/wrong").status_code == 401


def test_emailed_heartbeat_link_opens_a_confirmation_page(client, owner):
    message_id = create(client, owner)["message"]["id"]
    link = urlsplit(client.get(f"{API}/heartbeat-token").json()["url"]).path
    before = client.get(f"{API}/messages/{message_id}").json()["last_seen"]

    page = client.get(link)

    assert page.status_code == 200
    assert page.headers["content-type"].startswith("text/html")
    assert '<form method="post">' in page.text
    assert client.get(f"{API}/messages/{message_id}").json()["last_seen"] == before

    confirmed = client.post(link, headers={"Accept": "text/html"})

    assert confirmed.status_code == 200
    assert "Checked in 1 active message" in confirmed.text
    assert client.get(f"{API}/messages/{message_id}").json()["last_seen"] != before
    assert client.get(f"{API}/quick-heartbeat/wrong").status_code == 401


def test_settings_are_redacted(client, owner):
    response = client.post(
        f"{API}/settings",
        json={
            "smtp_host": "smtp.example.com",
            "smtp_port": "587",
            "smtp_pass": "smtp-secret",
            "webhook_url": "https://hooks.example.com/x",
            "webhook_secret": "hook-secret",
            "webhook_enabled": True,
            "owner_email": "owner@example.com",
        },
        headers=owner,
    )
    assert response.status_code == 200

    body = client.get(f"{API}/settings").json()
    assert "smtp_pass" not in body
    assert "webhook_secret" not in body
    assert body["smtp_pass_set"] and body["webhook_secret_set"]


def test_settings_reject_private_webhook(client, owner):
    response = client.post(
        f"{API}/settings",
        json={"webhook_url": "https://127.0.0.1/hook", "webhook_enabled": True},
        headers=owner,
    )
    assert response.status_code == 400


def test_webhook_routes(client, owner):
    created = client.post(
        f"{API}/webhooks", json={"url": "https://a.example.com/hook", "secret": "s"}, headers=owner
    )
    assert created.status_code == 201
    webhook = created.json()
    assert "secret" not in webhook

    assert [w["id"] for w in client.get(f"{API}/webhooks").json()] == [webhook["id"]]
    assert (
        client.delete(f"{API}/webhooks/{webhook['id']}", headers=owner).status_code == 200
    )
    assert client.delete(f"{API}/webhooks/{webhook['id']}", headers=owner).status_code == 404


def test_attachment_routes(client, owner):
    message_id = create(client, owner)["message"]["id"]

    uploaded = client.post(
        f"{API}/messages/{message_id}/attachments",
        files={"file": ("will.txt", b"last wishes", "text/plain")},
        headers=owner,
    )
    assert uploaded.status_code == 201
    attachment = uploaded.json()
    assert attachment["filename"] == "will.txt"
    assert "storage_location" not in attachment

    listed = client.get(f"{API}/messages/{message_id}/attachments").json()
    assert [a["id"] for a in listed] == [attachment["id"]]

    rejected = client.post(
        f"{API}/messages/{message_id}/attachments",
        files={"file": ("run.exe", b"MZ", "application/octet-stream")},
        headers=owner,
    )
    assert rejected.status_code == 400


def test_redeliver_needs_failed_delivery(client, owner):
    message_id = create(client, owner)["message"]["id"]

    response = client.post(f"{API}/messages/{message_id}/redeliver", headers=owner)

    assert response.status_code == 400
