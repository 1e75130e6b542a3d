import json
import sqlite3

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from api.notifications import ConcertBroadcaster
from api.security import AuditLogger, SecretValidator
from api.security.rate_limit import InMemoryRateLimiter
from api.webhooks import WebhookHandler, WebhookState
from tests.conftest import (
    TM_SECRET,
    eventbrite_event,
    sign_eventbrite,
    sign_ticketmaster,
    ticketmaster_event,
)

SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "DENY",
    "x-xss-protection": "1; mode=block",
}


def tm_body(event_type="event.created", **event_overrides) -> bytes:
    return json.dumps(
        {
            "event_type": event_type,
            "data": ticketmaster_event("tm1", **event_overrides),
            "timestamp": "2030-01-01T00:00:00Z",
        }
    ).encode()


def eb_body(action=None, **event_overrides) -> bytes:
    config = {"object": eventbrite_event("eb1", **event_overrides)}
    if action:
        config["action"] = action
    return json.dumps({"config": config}).encode()


def post_ticketmaster(client, body: bytes, signature=None, **headers):
    return client.post(
        "/api/webhooks/ticketmaster",
        content=body,
        headers={
            "content-type": "application/json",
            "x-ticketmaster-signature": signature or sign_ticketmaster(body),
            **headers,
        },
    )


def post_eventbrite(client, body: bytes, signature=None):
    return client.post(
        "/api/webhooks/eventbrite",
        content=body,
        headers={
            "content-type": "application/json",
            "x-eventbrite-signature": signature or sign_eventbrite(body),
        },
    )


def security_events(database_path):
    with sqlite3.connect(database_path) as conn:
        conn.row_factory = sqlite3.Row
        return [dict(row) for row in conn.execute("SELECT * FROM security_events")]


def concert_count(database_path) -> int:
    with sqlite3.connect(database_path) as conn:
        return conn.execute("SELECT COUNT(*) FROM concerts").fetchone()[0]


@pytest.fixture
def app(settings):
    return create_app(settings, providers={})


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def test_ticketmaster_created_event_is_stored(client, database_path):
    response = post_ticketmaster(client, tm_body())

    assert response.status_code == 200
    assert response.json() == {"message": "Webhook processed successfully"}
    for header, value in SECURITY_HEADERS.items():
        assert response.headers[header] == value

    concerts = client.get("/api/concerts").json()
    assert concerts["total"] == 1
    assert concerts["concerts"][0]["artist"] == "Arctic Monkeys"
    assert concerts["concerts"][0]["price"] == "free"


def test_redelivery_updates_instead_of_duplicating(client, database_path):
    post_ticketmaster(client, tm_body())
    response = post_ticketmaster(
        client, tm_body("event.updated", priceRanges=[{"min": 55, "max": 99}])
    )

    assert response.status_code == 200
    assert concert_count(database_path) == 1
    assert client.get("/api/concerts").json()["concerts"][0]["price"] == "55"


def test_wrong_secret_is_rejected_and_audited(client, database_path):
    body = tm_body()
    response = post_ticketmaster(
        client,
        body,
        signature=sign_ticketmaster(body, secret="not_the_real_secret_0000"),
        **{"x-forwarded-for": "203.0.113.7, 10.0.0.1"},
    )

    assert response.status_code == 400
    assert response.json() == {"message": "Invalid webhook signature"}
    assert concert_count(database_path) == 0

    events = security_events(database_path)
    assert len(events) == 1
    assert events[0]["event_type"] == "invalid_signature"
    assert events[0]["severity"] == "high"
    assert events[0]["source"] == "ticketmaster"
    assert events[0]["client_ip"] == "203.0.113.7"


def test_missing_signature_header(client):
    response = client.post(
        "/api/webhooks/ticketmaster", content=tm_body(), headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json() == {"message": "Missing required headers"}


def test_schema_violation_is_invalid_payload(client, database_path):
    response = post_ticketmaster(client, tm_body(dates={"start": {"localDate": "June 1st"}}))
    assert response.status_code == 400
    assert response.json() == {"message": "Invalid payload format"}
    # validation_failed is medium severity: logged, not persisted
    assert security_events(database_path) == []


def test_non_json_body_is_invalid_payload(client):
    response = post_ticketmaster(client, b"not json")
    assert response.json() == {"message": "Invalid payload format"}


def test_rate_limit_applies_per_client(settings):
    limiter = InMemoryRateLimiter(max_requests=1)
    app = create_app(settings, providers={}, rate_limiter=limiter)
    assert app.state.rate_limiter is limiter

    with TestClient(app) as client:
        assert post_ticketmaster(client, tm_body()).status_code == 200
        response = post_ticketmaster(client, tm_body())
        other = post_ticketmaster(client, tm_body(), **{"x-real-ip": "198.51.100.2"})

    assert response.status_code == 400
    assert response.json() == {"message": "Rate limit exceeded"}
    assert other.status_code == 200


def test_eventbrite_created_then_cancelled(client, database_path):
    assert post_eventbrite(client, eb_body()).status_code == 200
    assert concert_count(database_path) == 1

    response = post_eventbrite(client, eb_body(action="event.cancelled"))
    assert response.status_code == 200
    assert concert_count(database_path) == 0


def test_eventbrite_signature_checked_against_eventbrite_secret(client):
    body = eb_body()
    response = post_eventbrite(client, body, signature=sign_eventbrite(body, secret="wrong_secret_0123456789"))
    assert response.json() == {"message": "Invalid webhook signature"}


def test_unusable_event_is_invalid_event_data(client, database_path):
    response = post_eventbrite(client, eb_body(start={"local": "sometime soon"}))
    assert response.status_code == 400
    assert response.json() == {"message": "Invalid event data"}
    assert concert_count(database_path) == 0


def test_unconfigured_secret_fails_signature_check(settings):
    settings.eventbrite_webhook_secret = ""
    with TestClient(create_app(settings, providers={})) as client:
        response = post_eventbrite(client, eb_body())
    assert response.json() == {"message": "Invalid webhook signature"}


def test_persistence_error_is_500(app, client, monkeypatch):
    async def broken_upsert(record):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(app.state.repository, "upsert_concert", broken_upsert)
    response = post_ticketmaster(client, tm_body())

    assert response.status_code == 500
    assert response.json() == {"message": "Webhook processing failed"}
    assert response.headers["x-frame-options"] == "DENY"


@pytest.mark.parametrize("method", ["get", "put", "delete"])
def test_other_methods_are_not_allowed(client, method):
    response = client.request(method.upper(), "/api/webhooks/eventbrite")
    assert response.status_code == 405
    assert response.json() == {"message": "Method not allowed"}
    for header, value in SECURITY_HEADERS.items():
        assert response.headers[header] == value


def test_unknown_provider_is_404(client):
    response = client.post("/api/webhooks/songkick", content=b"{}")
    assert response.status_code == 404


async def test_new_concert_is_broadcast(repository):
    broadcaster = ConcertBroadcaster()
    handler = WebhookHandler(
        repository,
        AuditLogger(repository),
        InMemoryRateLimiter(),
        SecretValidator({"TICKETMASTER_WEBHOOK_SECRET": TM_SECRET}),
        broadcaster,
    )
    body = tm_body()
    headers = {"content-type": "application/json", "x-ticketmaster-signature": sign_ticketmaster(body)}

    async with broadcaster.subscribe() as queue:
        created = await handler.handle("ticketmaster", body, headers, "127.0.0.1")
        updated = await handler.handle("ticketmaster", body, headers, "127.0.0.1")

        assert created.outcome is WebhookState.CREATED
        assert updated.outcome is WebhookState.UPDATED
        assert created.history[-1] is WebhookState.ACKNOWLEDGED
        assert queue.get_nowait() == {
            "event": "new-concert",
            "payload": {"artist": "Arctic Monkeys", "date": "2030-06-01", "genres": ["Rock/Alternative Rock"], "price": "free"},
        }
        assert queue.empty()
