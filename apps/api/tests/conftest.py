import os
import threading
from datetime import datetime, timezone

os.environ.setdefault("GREENDROP_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("GREENDROP_TESTING", "true")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import greendrop.models  # noqa: F401,E402
from greendrop.config import settings  # noqa: E402
from greendrop.db.base import Base  # noqa: E402
from greendrop.db.session import engine as app_engine  # noqa: E402
from greendrop.db.session import get_db  # noqa: E402
from greendrop.dependencies import memory_store  # noqa: E402
from greendrop.integrations.alert_webhook_client import get_alert_webhook_client  # noqa: E402
from greendrop.integrations.metrics_sink_client import get_metrics_sink_client  # noqa: E402
from greendrop.integrations.push_client import get_push_client  # noqa: E402
from greendrop.main import app  # noqa: E402
from greendrop.observability import metrics_store  # noqa: E402
from greendrop.services.sql_store import SqlDocumentStore  # noqa: E402
from greendrop.services.store import InMemoryDocumentStore  # noqa: E402

# Tuesday afternoon: past the zero-revenue hour, before the no-signups hour.
FIXED_NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class RecordingWebhook:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[list] = []
        self.error = error

    def send_alerts(self, alerts, sent_at) -> bool:
        self.calls.append(list(alerts))
        if self.error:
            raise self.error
        return True


class RecordingPush:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[list[str], list]] = []
        self.error = error

    def send_alert_summary(self, tokens, alerts) -> bool:
        self.calls.append((list(tokens), list(alerts)))
        if self.error:
            raise self.error
        return bool(tokens)


class RecordingSink:
    def __init__(self, error: Exception | None = None) -> None:
        self.pushes: list[list] = []
        self.error = error

    def push(self, samples) -> bool:
        self.pushes.append(list(samples))
        if self.error:
            raise self.error
        return True


@pytest.fixture(scope="session", autouse=True)
def enable_testing_mode():
    original = settings.testing
    settings.testing = True
    yield
    settings.testing = original


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield


@pytest.fixture(autouse=True)
def reset_in_memory_store():
    memory_store.reset()
    yield


@pytest.fixture(autouse=True)
def reset_metrics_store():
    metrics_store.reset()
    yield


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def db_session():
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def sql_store(db_session) -> SqlDocumentStore:
    return SqlDocumentStore(db_session)


@pytest.fixture
def webhook() -> RecordingWebhook:
    return RecordingWebhook()


@pytest.fixture
def push() -> RecordingPush:
    return RecordingPush()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def client(db_session, webhook, push, sink):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)
    db_session_lock = threading.Lock()

    def override_get_db():
        if db_session_lock.acquire(blocking=False):
            try:
                yield db_session
            finally:
                db_session_lock.release()
            return

        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_alert_webhook_client] = lambda: webhook
    app.dependency_overrides[get_push_client] = lambda: push
    app.dependency_overrides[get_metrics_sink_client] = lambda: sink
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
