import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from safewatch import config
from safewatch.core.emergencies import EmergencyService, ReportResult, Scheduler
from safewatch.core.errors import InvalidTransitionError, SessionNotFoundError, StoreError
from safewatch.core.normalizer import normalize_context, normalize_location, normalize_sensor
from safewatch.core.records import (
    Classification,
    EmergencyRecord,
    EmergencyStatus,
    LearningRecord,
    Level,
    Outcome,
    ScoreBreakdown,
)
from safewatch.core.scoring import classify, manual_breakdown
from safewatch.core.signals import ContextSignal, LocationContext, SensorSnapshot
from safewatch.core.timers import CountdownHandle, ThreadingTimerFactory, TimerFactory
from safewatch.utils.logger import setup_logger


class SessionState(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    SUSPICIOUS = "suspicious"
    COUNTDOWN_PENDING = "countdown_pending"
    REPORTED = "reported"
    CANCELLED = "cancelled"
    RESOLVED = "resolved"


TRANSITIONS = {
    SessionState.IDLE: {SessionState.MONITORING},
    SessionState.MONITORING: {
        SessionState.SUSPICIOUS, SessionState.COUNTDOWN_PENDING, SessionState.REPORTED, SessionState.IDLE,
    },
    SessionState.SUSPICIOUS: {
        SessionState.MONITORING, SessionState.COUNTDOWN_PENDING, SessionState.REPORTED, SessionState.IDLE,
    },
    SessionState.COUNTDOWN_PENDING: {SessionState.MONITORING, SessionState.REPORTED, SessionState.IDLE},
    SessionState.REPORTED: {SessionState.CANCELLED, SessionState.RESOLVED},
    SessionState.CANCELLED: set(),
    SessionState.RESOLVED: set(),
}

_RECORD_TO_SESSION = {
    EmergencyStatus.CANCELLED.value: SessionState.CANCELLED,
    EmergencyStatus.RESOLVED.value: SessionState.RESOLVED,
}


@dataclass
class MonitoringSession:
    session_id: str
    user_id: str
    state: SessionState = SessionState.IDLE
    emergency_id: Optional[str] = None
    last_snapshot: SensorSnapshot = field(default_factory=SensorSnapshot)
    last_context: ContextSignal = field(default_factory=ContextSignal)
    last_location: Optional[LocationContext] = None
    last_breakdown: Optional[ScoreBreakdown] = None
    countdown: Optional[CountdownHandle] = field(default=None, repr=False)
    countdown_token: Optional[str] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


@dataclass(frozen=True)
class Evaluation:
    state: SessionState
    breakdown: ScoreBreakdown
    classification: Classification


class LifecycleController:
    """
    Drives SOS sessions through the emergency lifecycle:

        idle -> monitoring <-> suspicious -> countdown_pending -> reported -> cancelled | resolved

    - emergency classification starts a single countdown; expiry reports
    - cancelling the countdown returns to monitoring and stores a false-positive
      learning record; no emergency record is written
    - a manual trigger reports immediately with the manual breakdown
    - a reported session ends either cancelled or resolved, never both

    Countdown expiry and cancellation race on the session lock. Each countdown
    carries a token; whichever side takes the lock first wins and the other
    sees a changed state or token and does nothing. A cancel registered before
    the timer callback runs therefore always wins.
    """

    def __init__(
        self,
        service: EmergencyService,
        timer_factory: Optional[TimerFactory] = None,
        countdown_seconds: float = config.COUNTDOWN_SECONDS,
    ):
        self.service = service
        self.timer_factory = timer_factory or ThreadingTimerFactory()
        self.countdown_seconds = countdown_seconds
        self.logger = setup_logger()
        self._sessions: Dict[str, MonitoringSession] = {}
        self._sessions_guard = threading.Lock()

    # ---------------------------------------------------------------------
    # SESSIONS
    # ---------------------------------------------------------------------
    def start_session(self, user_id: str, session_id: Optional[str] = None) -> MonitoringSession:
        session = MonitoringSession(session_id=session_id or str(uuid.uuid4()), user_id=user_id)
        with self._sessions_guard:
            if session.session_id in self._sessions:
                raise InvalidTransitionError("existing", SessionState.MONITORING.value)
            self._sessions[session.session_id] = session
        with session.lock:
            self._move(session, SessionState.MONITORING)
        self.logger.info(f"Monitoring started | Session: {session.session_id} | User: {user_id}")
        return session

    def get_session(self, session_id: str) -> MonitoringSession:
        with self._sessions_guard:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def stop_session(self, session_id: str) -> MonitoringSession:
        session = self.get_session(session_id)
        with session.lock:
            if session.state == SessionState.COUNTDOWN_PENDING:
                self._clear_countdown(session)
            self._move(session, SessionState.IDLE)
        return session

    def _move(self, session: MonitoringSession, target: SessionState):
        if target not in TRANSITIONS[session.state]:
            raise InvalidTransitionError(session.state.value, target.value)
        session.state = target

    def _clear_countdown(self, session: MonitoringSession):
        if session.countdown is not None:
            session.countdown.cancel()
        session.countdown = None
        session.countdown_token = None

    # ---------------------------------------------------------------------
    # DETECTION
    # ---------------------------------------------------------------------
    def evaluate(self, session_id: str, sensor_data, context_data=None, location=None) -> Evaluation:
        session = self.get_session(session_id)
        sensor = normalize_sensor(sensor_data)
        context = normalize_context(context_data)
        location_context = normalize_location(location)

        thresholds = self.service.thresholds.get(session.user_id)
        breakdown = self.service.engine.score(sensor, context, location_context, thresholds)
        classification = classify(breakdown.total_score)

        with session.lock:
            if session.state not in (
                SessionState.MONITORING, SessionState.SUSPICIOUS,
                SessionState.COUNTDOWN_PENDING, SessionState.REPORTED,
            ):
                raise InvalidTransitionError(session.state.value, "evaluate")

            if session.state in (SessionState.MONITORING, SessionState.SUSPICIOUS):
                session.last_snapshot = sensor
                session.last_context = context
                session.last_location = location_context
                session.last_breakdown = breakdown

                if classification.level == Level.EMERGENCY:
                    self._start_countdown(session)
                elif classification.level == Level.SUSPICIOUS:
                    if session.state != SessionState.SUSPICIOUS:
                        self._move(session, SessionState.SUSPICIOUS)
                        self.logger.warning(
                            f"Suspicious activity | Session: {session_id} | Score: {breakdown.total_score:.1f}"
                        )
                elif session.state != SessionState.MONITORING:
                    self._move(session, SessionState.MONITORING)

            return Evaluation(state=session.state, breakdown=breakdown, classification=classification)

    def _start_countdown(self, session: MonitoringSession):
        token = uuid.uuid4().hex
        self._move(session, SessionState.COUNTDOWN_PENDING)
        session.countdown_token = token
        session.countdown = self.timer_factory.start(
            self.countdown_seconds, lambda: self._on_countdown_expired(session.session_id, token)
        )
        self.logger.warning(
            f"Emergency countdown started | Session: {session.session_id} | User: {session.user_id} "
            f"| Score: {session.last_breakdown.total_score:.1f} | {self.countdown_seconds:.0f}s to cancel"
        )

    def _on_countdown_expired(self, session_id: str, token: str):
        with self._sessions_guard:
            session = self._sessions.get(session_id)
        if session is None:
            return

        with session.lock:
            if session.state != SessionState.COUNTDOWN_PENDING or session.countdown_token != token:
                return  # cancelled first
            session.countdown = None
            session.countdown_token = None

            try:
                record = self.service.create_record(
                    session.user_id,
                    session.last_snapshot,
                    session.last_context,
                    session.last_location,
                    session.last_breakdown,
                )
            except StoreError as e:
                self.logger.error(
                    f"Could not persist emergency for session {session_id} ({e.kind}): {e}; resuming monitoring"
                )
                self._move(session, SessionState.MONITORING)
                return

            session.emergency_id = record.id
            self._move(session, SessionState.REPORTED)
            self.logger.critical(
                f"EMERGENCY REPORTED | Session: {session_id} | User: {session.user_id} "
                f"| Emergency: {record.id} | Score: {record.confidence:.1f}"
            )

    def cancel_countdown(self, session_id: str, sensor_snapshot=None) -> LearningRecord:
        session = self.get_session(session_id)
        with session.lock:
            if session.state != SessionState.COUNTDOWN_PENDING:
                raise InvalidTransitionError(session.state.value, SessionState.MONITORING.value)
            self._clear_countdown(session)
            self._move(session, SessionState.MONITORING)
            snapshot = normalize_sensor(sensor_snapshot) if sensor_snapshot is not None else session.last_snapshot

        self.logger.info(f"Countdown cancelled by user | Session: {session_id}")
        record, _ = self.service.recorder.record(session.user_id, Outcome.FALSE_POSITIVE, snapshot)
        return record

    def trigger_manual(self, session_id: str, sensor_data=None, context_data=None, location=None) -> EmergencyRecord:
        session = self.get_session(session_id)
        with session.lock:
            if SessionState.REPORTED not in TRANSITIONS[session.state]:
                raise InvalidTransitionError(session.state.value, SessionState.REPORTED.value)
            if sensor_data is not None:
                session.last_snapshot = normalize_sensor(sensor_data)
            if context_data is not None:
                session.last_context = normalize_context(context_data)
            if location is not None:
                session.last_location = normalize_location(location)

            record = self.service.create_record(
                session.user_id,
                session.last_snapshot,
                session.last_context,
                session.last_location,
                manual_breakdown(),
            )
            if session.state == SessionState.COUNTDOWN_PENDING:
                self._clear_countdown(session)
            session.emergency_id = record.id
            self._move(session, SessionState.REPORTED)

        self.logger.critical(
            f"MANUAL EMERGENCY REPORTED | Session: {session_id} | User: {session.user_id} | Emergency: {record.id}"
        )
        return record

    # ---------------------------------------------------------------------
    # REPORTED SESSIONS
    # ---------------------------------------------------------------------
    def _finish(self, session_id, target: SessionState, action):
        session = self.get_session(session_id)
        with session.lock:
            if session.state != SessionState.REPORTED:
                raise InvalidTransitionError(session.state.value, target.value)
            try:
                record = action(session)
            except InvalidTransitionError:
                # the record moved on through another entry point; follow it
                current = self.service.get(session.emergency_id)
                synced = _RECORD_TO_SESSION.get(current.status.value)
                if synced is not None:
                    self._move(session, synced)
                raise
            self._move(session, target)
            return record

    def cancel_report(self, session_id: str, reason=None, sensor_snapshot=None) -> EmergencyRecord:
        return self._finish(
            session_id,
            SessionState.CANCELLED,
            lambda s: self.service.cancel_emergency(
                s.emergency_id,
                reason,
                sensor_snapshot if sensor_snapshot is not None else s.last_snapshot,
            ),
        )

    def resolve_report(self, session_id: str, notes=None, resolved_by=None) -> EmergencyRecord:
        return self._finish(
            session_id,
            SessionState.RESOLVED,
            lambda s: self.service.resolve_emergency(s.emergency_id, notes, resolved_by),
        )

    # ---------------------------------------------------------------------
    # API BOUNDARY
    # ---------------------------------------------------------------------
    def report_emergency(
        self, user_id, sensor_data=None, context_data=None, location=None, manual=False,
        schedule: Optional[Scheduler] = None,
    ) -> ReportResult:
        result = self.service.report_emergency(
            user_id, sensor_data, context_data, location, manual=manual, schedule=schedule
        )
        level = self.logger.critical if result.classification.level == Level.EMERGENCY else self.logger.warning
        level(
            f"EMERGENCY REPORTED | User: {user_id} | Emergency: {result.emergency_id} "
            f"| Score: {result.score:.1f} | Manual: {result.manual}"
        )
        return result

    def cancel_emergency(self, emergency_id, reason=None, sensor_snapshot=None, user_id=None) -> EmergencyRecord:
        record = self.service.cancel_emergency(emergency_id, reason, sensor_snapshot, user_id=user_id)
        self._follow_record(emergency_id, SessionState.CANCELLED)
        return record

    def resolve_emergency(self, emergency_id, notes=None, resolved_by=None) -> EmergencyRecord:
        record = self.service.resolve_emergency(emergency_id, notes, resolved_by)
        self._follow_record(emergency_id, SessionState.RESOLVED)
        return record

    def _follow_record(self, emergency_id, target: SessionState):
        with self._sessions_guard:
            sessions = [s for s in self._sessions.values() if s.emergency_id == emergency_id]
        for session in sessions:
            with session.lock:
                if session.state == SessionState.REPORTED:
                    self._move(session, target)
