import logging
import math
import uuid
from typing import Callable, List, Optional

from pydantic import BaseModel

from safewatch import config
from safewatch.core.errors import (
    ConcurrentUpdateError,
    EmergencyAccessError,
    EmergencyNotFoundError,
    InvalidTransitionError,
    StoreError,
    ThresholdUpdateError,
)
from safewatch.core.learning import LearningRecorder
from safewatch.core.normalizer import normalize_context, normalize_location, normalize_sensor
from safewatch.core.notifier import EmergencyNotifier
from safewatch.core.records import (
    IMMUTABLE_EMERGENCY_FIELDS,
    Classification,
    EmergencyRecord,
    EmergencyStats,
    EmergencyStatus,
    Outcome,
    ScoreBreakdown,
)
from safewatch.core.scoring import ScoringEngine, classify, explain, manual_breakdown
from safewatch.core.signals import utc_now
from safewatch.core.store import VERSION_KEY, DocumentStore
from safewatch.core.thresholds import AdaptiveThresholdStore

logger = logging.getLogger(__name__)

# schedule(fn, *args) runs fn later, e.g. FastAPI's BackgroundTasks.add_task
Scheduler = Callable[..., None]

TRANSITION_RETRIES = 5


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class ReportResult(BaseModel):
    emergency_id: str
    score: float
    breakdown: ScoreBreakdown
    classification: Classification
    manual: bool = False
    explanation: List[str] = []


class EmergencyService:
    """
    Owns EmergencyRecord persistence and its status transitions.

    Reporting is two-phase: the record is written first and any store error
    reaches the caller; notification is then scheduled separately and its
    failure never touches the record. Cancel and resolve are compare-and-swap
    writes on the record version, so only one of them can ever win.
    """

    def __init__(
        self,
        store: DocumentStore,
        engine: ScoringEngine,
        thresholds: AdaptiveThresholdStore,
        recorder: LearningRecorder,
        notifier: Optional[EmergencyNotifier] = None,
    ):
        self.store = store
        self.engine = engine
        self.thresholds = thresholds
        self.recorder = recorder
        self.notifier = notifier

    # ---------------------------------------------------------------------
    # REPORT
    # ---------------------------------------------------------------------
    def report_emergency(
        self,
        user_id: str,
        sensor_data=None,
        context_data=None,
        location=None,
        manual: bool = False,
        schedule: Optional[Scheduler] = None,
    ) -> ReportResult:
        sensor = normalize_sensor(sensor_data)
        context = normalize_context(context_data)
        location_context = normalize_location(location)

        if manual:
            breakdown = manual_breakdown()
        else:
            breakdown = self.engine.score(sensor, context, location_context, self.thresholds.get(user_id))

        record = self.create_record(user_id, sensor, context, location_context, breakdown, schedule=schedule)
        return ReportResult(
            emergency_id=record.id,
            score=breakdown.total_score,
            breakdown=breakdown,
            classification=classify(breakdown.total_score),
            manual=breakdown.manual,
            explanation=explain(breakdown, sensor),
        )

    def create_record(
        self, user_id, sensor, context, location, breakdown: ScoreBreakdown, schedule: Optional[Scheduler] = None
    ) -> EmergencyRecord:
        record = EmergencyRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            sensor_data=sensor.model_dump(mode="json", by_alias=True),
            location=location.model_dump(mode="json", by_alias=True, exclude_none=True) if location else None,
            context_data=context.model_dump(mode="json", by_alias=True, exclude_none=True),
            confidence=breakdown.total_score,
            breakdown=breakdown,
            manual=breakdown.manual,
        )
        # phase 1: durable, errors propagate to the caller
        self.store.put(config.EMERGENCIES, record.id, record.to_document(), expected_version=0)
        logger.info(
            f"Emergency {record.id} recorded for user {user_id} "
            f"(score {breakdown.total_score:.1f}, manual={breakdown.manual})"
        )

        # phase 2: best-effort
        self._schedule_notification(record, schedule)
        return record

    def _schedule_notification(self, record: EmergencyRecord, schedule: Optional[Scheduler]):
        if self.notifier is None:
            logger.warning(f"No notifier configured, emergency {record.id} will not be dispatched")
            return
        try:
            if schedule is not None:
                schedule(self.notifier.notify, record)
            else:
                self.notifier.submit(record)
        except Exception as e:
            logger.error(f"Failed to schedule notifications for emergency {record.id}: {e}")

    # ---------------------------------------------------------------------
    # TRANSITIONS
    # ---------------------------------------------------------------------
    def _transition(self, emergency_id, target: EmergencyStatus, patch, user_id=None) -> EmergencyRecord:
        touched = IMMUTABLE_EMERGENCY_FIELDS.intersection(patch)
        if touched:
            raise ValueError(f"Immutable emergency fields cannot change: {sorted(touched)}")

        for _ in range(TRANSITION_RETRIES):
            doc = self.store.get(config.EMERGENCIES, emergency_id)
            if doc is None:
                raise EmergencyNotFoundError(f"Emergency {emergency_id} not found")
            if user_id is not None and doc.get("userId") != user_id:
                raise EmergencyAccessError("You can only change your own emergencies")
            if doc.get("status") != EmergencyStatus.ACTIVE.value:
                raise InvalidTransitionError(doc.get("status"), target.value)

            version = doc.pop(VERSION_KEY, 0)
            updated = {**doc, **patch, "status": target.value}
            try:
                stored = self.store.put(config.EMERGENCIES, emergency_id, updated, expected_version=version)
            except ConcurrentUpdateError:
                logger.warning(f"Emergency {emergency_id} changed while moving to {target.value}, retrying")
                continue
            return EmergencyRecord.from_document(stored)

        raise ConcurrentUpdateError(f"Emergency {emergency_id} kept changing during {target.value}", config.EMERGENCIES)

    def cancel_emergency(self, emergency_id, reason=None, sensor_snapshot=None, user_id=None) -> EmergencyRecord:
        record = self._transition(
            emergency_id,
            EmergencyStatus.CANCELLED,
            {"cancelledAt": utc_now().isoformat(), "cancelReason": reason},
            user_id=user_id,
        )
        logger.info(f"Emergency {emergency_id} cancelled: {reason}")

        snapshot = sensor_snapshot if sensor_snapshot is not None else record.sensor_data
        try:
            self.recorder.record(record.user_id, Outcome.FALSE_POSITIVE, snapshot, emergency_id=emergency_id)
        except (ThresholdUpdateError, StoreError) as e:
            # the cancel is already durable; a lost learning step must not undo it
            logger.error(f"Emergency {emergency_id} cancelled but its false positive was not learned: {e}")
        return record

    def resolve_emergency(self, emergency_id, notes=None, resolved_by=None) -> EmergencyRecord:
        record = self._transition(
            emergency_id,
            EmergencyStatus.RESOLVED,
            {"resolvedAt": utc_now().isoformat(), "resolvedBy": resolved_by, "resolutionNotes": notes},
        )
        logger.info(f"Emergency {emergency_id} resolved by {resolved_by or 'unknown'}")
        return record

    # ---------------------------------------------------------------------
    # READS
    # ---------------------------------------------------------------------
    def get(self, emergency_id) -> EmergencyRecord:
        doc = self.store.get(config.EMERGENCIES, emergency_id)
        if doc is None:
            raise EmergencyNotFoundError(f"Emergency {emergency_id} not found")
        return EmergencyRecord.from_document(doc)

    def _newest_first(self, predicate, limit) -> List[EmergencyRecord]:
        records = [EmergencyRecord.from_document(d) for d in self.store.query(config.EMERGENCIES, predicate)]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    def list_active(self, limit: int = 50) -> List[EmergencyRecord]:
        return self._newest_first(lambda d: d.get("status") == EmergencyStatus.ACTIVE.value, limit)

    def history(self, user_id: str, limit: int = 20) -> List[EmergencyRecord]:
        return self._newest_first(lambda d: d.get("userId") == user_id, limit)

    def stats(self, user_id: str) -> EmergencyStats:
        records = self._newest_first(lambda d: d.get("userId") == user_id, None)
        response_times = [
            (r.resolved_at - r.created_at).total_seconds()
            for r in records
            if r.status == EmergencyStatus.RESOLVED and r.resolved_at is not None
        ]
        return EmergencyStats(
            user_id=user_id,
            total_emergencies=len(records),
            false_positives=sum(1 for r in records if r.status == EmergencyStatus.CANCELLED),
            resolved_emergencies=sum(1 for r in records if r.status == EmergencyStatus.RESOLVED),
            average_response_time=_round_half_up(sum(response_times) / len(response_times)) if response_times else None,
            last_emergency=records[0].created_at if records else None,
        )
