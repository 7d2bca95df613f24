import base64
import os
import threading
from datetime import timedelta

os.environ.setdefault("ESCROW_KEY", base64.b64encode(b"k" * 32).decode())
os.environ.setdefault("DATABASE_URI", "sqlite://")
os.environ.setdefault("SWEEP_ENABLED", "false")

import pytest
from sqlalchemy.pool import StaticPool

from deadswitch.core.clock import utcnow
from deadswitch.core.db import build_engine, create_db_and_tables, session_factory
from deadswitch.models.settings import SETTINGS_ID, Settings
from deadswitch.services.codec import PayloadCodec
from deadswitch.services.dispatcher import NotificationDispatcher
from deadswitch.services.orchestrator import Orchestrator
from deadswitch.services.storage import LocalStorage
from deadswitch.services.switches import create_switch

WEBHOOK_URL = "https://hooks.example.com/deadswitch"


class FakeMailer:
    """Records outgoing mail; fails the first ``fail_times`` sends."""

    def __init__(self, fail_times: int = 0):
        self.sent = []
        self.fail_times = fail_times
        self.calls = 0
        self._lock = threading.Lock()

    def send(self, config, mail):
        with self._lock:
            self.calls += 1
            if self.calls <= self.fail_times:
                raise ConnectionRefusedError("smtp down")
            self.sent.append(mail)

    def test_connection(self, config):
        self.tested = config

    def to(self, address):
        return [mail for mail in self.sent if mail.to == address]


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeWebhookClient:
    """Records posts and answers with ``status`` (or raises ``error``).

    ``statuses`` overrides the answer for individual URLs.
    """

    def __init__(self, status: int = 200, error: Exception | None = None):
        self.status = status
        self.statuses = {}
        self.error = error
        self.posts = []
        self._lock = threading.Lock()

    def post(self, target, event_name, body):
        with self._lock:
            self.posts.append((target, event_name, body))
        if self.error:
            raise self.error
        return FakeResponse(self.statuses.get(target.url, self.status))


class FakeRedis:
    """Just enough of redis-py for sessions and the rate limiter."""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.values.get(key)

    def setex(self, key, seconds, value):
        self.values[key] = value
        self.ttls[key] = seconds
        return True

    def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.values.pop(key, None) is not None else 0

    def incr(self, key):
        self.values[key] = str(int(self.values.get(key) or 0) + 1)
        return int(self.values[key])

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    def ttl(self, key):
        if key not in self.values:
            return -2
        return self.ttls.get(key, -1)

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def __getattr__(self, name):
        def queue(*args):
            self.ops.append((name, args))
            return self

        return queue

    def execute(self):
        return [getattr(self.client, name)(*args) for name, args in self.ops]


@pytest.fixture
def engine():
    memory_engine = build_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(memory_engine)
    return memory_engine


@pytest.fixture
def factory(engine):
    return session_factory(engine)


@pytest.fixture
def session(factory):
    with factory() as db_session:
        yield db_session


@pytest.fixture
def codec():
    return PayloadCodec(os.urandom(32))


@pytest.fixture
def storage(codec, tmp_path):
    return LocalStorage(codec, tmp_path / "uploads")


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def webhook_client():
    return FakeWebhookClient()


@pytest.fixture
def dispatcher(mailer, webhook_client):
    return NotificationDispatcher(mailer, webhook_client, max_retries=2, retry_base_delay=0)


@pytest.fixture
def configured(session, codec):
    record = Settings(
        id=SETTINGS_ID,
        smtp_host="smtp.example.com",
        smtp_port="587",
        smtp_user="mailer",
        smtp_pass=codec.seal_text("smtp-secret"),
        smtp_from="noreply@example.com",
        owner_email="owner@example.com",
        webhook_url=WEBHOOK_URL,
        webhook_secret=codec.seal_text("hook-secret"),
        webhook_enabled=True,
        heartbeat_token="beat-token",
    )
    session.add(record)
    session.commit()
    return record


@pytest.fixture
def orchestrator(factory, dispatcher, codec, storage):
    return Orchestrator(factory, dispatcher, codec, storage, workers=1)


@pytest.fixture
def t0():
    # In the past, so sweeps "at T0 + duration" are not ahead of the wall clock
    return utcnow() - timedelta(days=3)


@pytest.fixture
def make_switch(session, codec, t0):
    def _make(duration=60, reminders=None, content="the letter", recipient="heir@example.com"):
        created = create_switch(
            session, codec, content, recipient, duration, reminder_offsets=reminders or []
        )
        created.message.last_seen = t0
        session.add(created.message)
        session.commit()
        session.refresh(created.message)
        return created

    return _make


@pytest.fixture
def fresh(factory):
    """Read a row in a new session, bypassing the test session's identity map."""

    def _get(model, key):
        with factory() as db_session:
            return db_session.get(model, key)

    return _get


@pytest.fixture
def fake_redis(monkeypatch):
    from deadswitch.core import sessions

    client = FakeRedis()
    monkeypatch.setattr(sessions, "redis_client", client)
    return client


@pytest.fixture
def db_session_override(factory):
    def _override():
        with factory() as db_session:
            yield db_session

    return _override
