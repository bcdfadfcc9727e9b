from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Header

from safewatch.core.dispatcher import NotificationDispatcher, SendFn
from safewatch.core.emergencies import EmergencyService
from safewatch.core.learning import LearningRecorder
from safewatch.core.lifecycle import LifecycleController
from safewatch.core.locations import LocationEnricher, LocationTracker
from safewatch.core.notifier import EmergencyNotifier
from safewatch.core.recipients import ContactDirectory, RecipientResolver
from safewatch.core.scoring import ScoringEngine
from safewatch.core.store import DocumentStore
from safewatch.core.thresholds import AdaptiveThresholdStore
from safewatch.core.timers import TimerFactory
from . import database, models
from .config import settings
from .services import email_service
from .store import SqlDocumentStore


@dataclass
class Services:
    store: DocumentStore
    controller: LifecycleController
    contacts: ContactDirectory
    tracker: LocationTracker
    thresholds: AdaptiveThresholdStore
    recorder: LearningRecorder
    notifier: EmergencyNotifier


def build_services(
    store: DocumentStore,
    send: SendFn,
    engine: Optional[ScoringEngine] = None,
    timer_factory: Optional[TimerFactory] = None,
) -> Services:
    thresholds = AdaptiveThresholdStore(store)
    recorder = LearningRecorder(store, thresholds)
    contacts = ContactDirectory(store)
    notifier = EmergencyNotifier(
        resolver=RecipientResolver(contacts, admin_email=settings.ADMIN_EMAIL, admin_name=settings.ADMIN_NAME),
        enricher=LocationEnricher(store),
        dispatcher=NotificationDispatcher(
            send,
            max_workers=settings.DISPATCH_MAX_WORKERS,
            send_timeout=settings.SEND_TIMEOUT_SECONDS,
        ),
        store=store,
    )
    service = EmergencyService(store, engine or ScoringEngine(), thresholds, recorder, notifier)
    controller = LifecycleController(
        service, timer_factory=timer_factory, countdown_seconds=settings.COUNTDOWN_SECONDS
    )
    return Services(
        store=store,
        controller=controller,
        contacts=contacts,
        tracker=LocationTracker(store),
        thresholds=thresholds,
        recorder=recorder,
        notifier=notifier,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    models.Base.metadata.create_all(bind=database.engine)
    return build_services(SqlDocumentStore(database.SessionLocal), send=email_service.send_email_alert)


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    # authentication happens in front of this service; it forwards the user id
    return x_user_id
