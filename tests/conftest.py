"""Pytest configuration and fixtures for SafeWatch tests."""

import os
import sys
import tempfile
import threading
from datetime import datetime

# Log and database locations must be set before the packages read them
os.environ.setdefault("SAFEWATCH_LOG_DIR", tempfile.mkdtemp(prefix="safewatch-logs-"))
os.environ.setdefault(
    "DATABASE_URL", "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="safewatch-db-"), "test.db")
)

# Add repository root to path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from safewatch import config
from safewatch.core.dispatcher import NotificationDispatcher
from safewatch.core.emergencies import EmergencyService
from safewatch.core.learning import LearningRecorder
from safewatch.core.lifecycle import LifecycleController
from safewatch.core.locations import LocationEnricher
from safewatch.core.notifier import EmergencyNotifier
from safewatch.core.recipients import ContactDirectory, RecipientResolver
from safewatch.core.scoring import ScoringEngine
from safewatch.core.store import InMemoryDocumentStore
from safewatch.core.thresholds import AdaptiveThresholdStore
from safewatch.core.timers import CountdownHandle, TimerFactory

ADMIN_EMAIL = "ops@safewatch.test"

# 2026-03-10 14:00 local time: no late-night context by default
FIXED_NOW = datetime(2026, 3, 10, 14, 0, 0)


class ManualHandle(CountdownHandle):
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True
        return not self.fired


class ManualTimerFactory(TimerFactory):
    """Countdowns that only expire when a test fires them."""

    def __init__(self):
        self.handles = []

    def start(self, delay, callback):
        handle = ManualHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def fire(self, handle=None, force=False):
        """Runs a countdown callback; `force` runs it even if it was cancelled."""
        handle = handle or self.handles[-1]
        if handle.cancelled and not force:
            return
        handle.fired = True
        handle.callback()

    def fire_all(self):
        for handle in self.pending:
            self.fire(handle)


class Mailbox:
    """Recording send function; addresses in `fail_for` raise like a bad transport."""

    def __init__(self):
        self.messages = []
        self.fail_for = set()
        self._lock = threading.Lock()

    def send(self, to, subject, html_body):
        if to in self.fail_for:
            raise ConnectionError(f"Mailbox for {to} rejected the message")
        with self._lock:
            self.messages.append({"to": to, "subject": subject, "html": html_body})

    @property
    def recipients(self):
        return [m["to"] for m in self.messages]


class FlakyStore(InMemoryDocumentStore):
    """In-memory store that raises configured errors for (operation, collection) pairs."""

    def __init__(self):
        super().__init__()
        self.failures = {}

    def fail(self, operation, collection, error):
        self.failures[(operation, collection)] = error

    def heal(self):
        self.failures.clear()

    def _check(self, operation, collection):
        error = self.failures.get((operation, collection))
        if error is not None:
            raise error

    def get(self, collection, doc_id):
        self._check("get", collection)
        return super().get(collection, doc_id)

    def query(self, collection, predicate=None):
        self._check("query", collection)
        return super().query(collection, predicate)

    def put(self, collection, doc_id, doc, expected_version=None):
        self._check("put", collection)
        return super().put(collection, doc_id, doc, expected_version)

    def update(self, collection, doc_id, patch):
        self._check("update", collection)
        return super().update(collection, doc_id, patch)


@pytest.fixture
def clock():
    """Fixture providing a fixed afternoon clock."""
    return lambda: FIXED_NOW


@pytest.fixture
def engine(clock):
    return ScoringEngine(clock=clock)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def mailbox():
    return Mailbox()


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def threshold_store(store):
    return AdaptiveThresholdStore(store)


@pytest.fixture
def recorder(store, threshold_store):
    return LearningRecorder(store, threshold_store)


@pytest.fixture
def contacts(store):
    return ContactDirectory(store)


@pytest.fixture
def dispatcher(mailbox):
    return NotificationDispatcher(mailbox.send, max_workers=3, send_timeout=2.0)


@pytest.fixture
def notifier(store, contacts, dispatcher):
    notifier = EmergencyNotifier(
        resolver=RecipientResolver(contacts, admin_email=ADMIN_EMAIL),
        enricher=LocationEnricher(store),
        dispatcher=dispatcher,
        store=store,
    )
    yield notifier
    notifier.shutdown(wait=True)


@pytest.fixture
def service(store, engine, threshold_store, recorder, notifier):
    return EmergencyService(store, engine, threshold_store, recorder, notifier)


@pytest.fixture
def controller(service, timers):
    return LifecycleController(service, timer_factory=timers, countdown_seconds=5.0)


@pytest.fixture
def distress_sensor():
    """Every sensor rule firing: sensorScore 100, half of a total score."""
    return {
        "motion": {"magnitude": 25.0, "variance": 12.0, "inactivityDurationMs": 45000},
        "audio": {"rmsAmplitude": 0.9, "silenceDurationMs": 900000},
    }


@pytest.fixture
def high_risk_context():
    """3am, quiet, dark, cold, off-route and unusually still: contextScore 65."""
    return {
        "timeOfDay": 3,
        "environment": {"noiseLevel": 0.1, "lightLevel": 0.05, "temperature": 0},
        "userPatterns": {"usualActivityLevel": 0.8, "locationDeviation": 0.9, "currentActivity": 0.1},
    }


@pytest.fixture
def isolated_location():
    """Nobody around, private, remote, far from help, on a highway: locationScore 58."""
    return {
        "latitude": 40.0,
        "longitude": -105.0,
        "accuracy": 12.0,
        "isolation": {"nearbyPeople": 0, "publicPlace": False, "cellTowerDistance": 6000},
        "safeZones": {"nearestHospital": 15000, "nearestPolice": 20000, "nearestFireStation": 12000},
        "placeType": "highway",
    }


def emergency_docs(store, status=None):
    docs = store.query(config.EMERGENCIES)
    if status is not None:
        docs = [d for d in docs if d["status"] == status]
    return docs


def learning_docs(store):
    return store.query(config.LEARNING_DATA)
