import base64
import hashlib
import hmac

import pytest

from api.config import Settings
from api.database import init_db
from api.repository import ConcertRepository

TM_SECRET = "tm_webhook_secret_0123456789"
EB_SECRET = "eb-webhook-secret-0123456789"


def sign_ticketmaster(body: bytes, secret: str = TM_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def sign_eventbrite(body: bytes, secret: str = EB_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def ticketmaster_event(event_id="tm1", **overrides):
    event = {
        "id": event_id,
        "name": "Arctic Monkeys",
        "url": "https://www.ticketmaster.com/event/tm1",
        "dates": {"start": {"localDate": "2030-06-01", "localTime": "20:00:00"}},
        "_embedded": {
            "venues": [
                {
                    "name": "Madison Square Garden",
                    "address": {"line1": "4 Pennsylvania Plaza"},
                    "city": {"name": "New York"},
                }
            ],
            "attractions": [
                {
                    "name": "Arctic Monkeys",
                    "classifications": [
                        {"genre": {"name": "Rock"}, "subGenre": {"name": "Alternative Rock"}}
                    ],
                }
            ],
        },
    }
    event.update(overrides)
    return event


def eventbrite_event(event_id="eb1", **overrides):
    event = {
        "id": event_id,
        "name": {"text": "Jazz in the Park"},
        "description": {"text": "An evening of jazz"},
        "url": "https://www.eventbrite.com/e/eb1",
        "start": {"local": "2030-07-04T19:30:00"},
        "venue": {
            "name": "Prospect Park Bandshell",
            "address": {"address_1": "Prospect Park West", "city": "Brooklyn"},
        },
        "ticket_availability": {
            "has_available_tickets": True,
            "minimum_ticket_price": {"major_value": "15.00"},
        },
    }
    event.update(overrides)
    return event


@pytest.fixture
def database_path(tmp_path):
    return tmp_path / "concerts.db"


@pytest.fixture
async def repository(database_path):
    await init_db(database_path)
    return ConcertRepository(database_path)


@pytest.fixture
def settings(database_path):
    return Settings(
        _env_file=None,
        environment="test",
        database_path=database_path,
        ticketmaster_webhook_secret=TM_SECRET,
        eventbrite_webhook_secret=EB_SECRET,
        enable_scheduled_jobs=False,
    )
