"""Tests for the SOS session lifecycle controller."""

import threading
import time

import pytest

from safewatch import config
from safewatch.core.errors import InvalidTransitionError, SessionNotFoundError, TransientStoreError
from safewatch.core.lifecycle import LifecycleController, SessionState
from safewatch.core.records import EmergencyStatus, Level
from safewatch.core.timers import ThreadingTimerFactory

from conftest import ADMIN_EMAIL, emergency_docs, learning_docs


@pytest.fixture
def session(controller):
    return controller.start_session("u1", session_id="s1")


@pytest.fixture
def pending(controller, session, distress_sensor, high_risk_context, isolated_location):
    """A session whose emergency countdown is running."""
    evaluation = controller.evaluate("s1", distress_sensor, high_risk_context, isolated_location)
    assert evaluation.state == SessionState.COUNTDOWN_PENDING
    return session


class TestSessions:
    """Test cases for session bookkeeping."""

    def test_start_session(self, session):
        """Test that a new session is monitoring."""
        assert session.state == SessionState.MONITORING

    def test_duplicate_session_id(self, controller, session):
        """Test that a session id can only be started once."""
        with pytest.raises(InvalidTransitionError):
            controller.start_session("u1", session_id="s1")

    def test_unknown_session(self, controller):
        """Test that an unknown session id is an error."""
        with pytest.raises(SessionNotFoundError):
            controller.get_session("nope")

    def test_stop_session_cancels_countdown(self, controller, timers, pending):
        """Test that stopping during a countdown goes idle and nothing is reported."""
        controller.stop_session("s1")
        assert pending.state == SessionState.IDLE
        assert timers.handles[0].cancelled
        timers.fire(force=True)
        assert pending.state == SessionState.IDLE


class TestEvaluate:
    """Test cases for classification-driven transitions."""

    def test_safe_stays_monitoring(self, controller, session):
        """Test that a quiet reading keeps monitoring."""
        evaluation = controller.evaluate("s1", {"motion": {"magnitude": 1}})
        assert evaluation.state == SessionState.MONITORING
        assert evaluation.classification.level == Level.SAFE

    def test_suspicious_and_back(self, controller, session, distress_sensor):
        """Test that a suspicious reading is watched and a quiet one returns to monitoring."""
        assert controller.evaluate("s1", distress_sensor).state == SessionState.SUSPICIOUS
        assert controller.evaluate("s1", {}).state == SessionState.MONITORING

    def test_emergency_starts_one_countdown(self, controller, timers, pending, distress_sensor, high_risk_context, isolated_location):
        """Test that repeated emergency readings do not start a second countdown."""
        assert len(timers.handles) == 1
        assert timers.handles[0].delay == 5.0
        evaluation = controller.evaluate("s1", distress_sensor, high_risk_context, isolated_location)
        assert evaluation.state == SessionState.COUNTDOWN_PENDING
        assert len(timers.handles) == 1

    def test_evaluate_when_idle(self, controller, session):
        """Test that a stopped session cannot be evaluated."""
        controller.stop_session("s1")
        with pytest.raises(InvalidTransitionError):
            controller.evaluate("s1", {})


class TestCountdown:
    """Test cases for countdown cancel and expiry."""

    def test_cancel_records_learning_only(self, store, controller, timers, pending):
        """Test that cancelling returns to monitoring with one learning record and no emergency."""
        entry = controller.cancel_countdown("s1")

        assert pending.state == SessionState.MONITORING
        assert entry.outcome.value == "false_positive"
        assert len(learning_docs(store)) == 1
        assert emergency_docs(store) == []
        assert timers.handles[0].cancelled

    def test_expiry_reports_once(self, store, controller, timers, notifier, mailbox, pending):
        """Test that expiry stores one active emergency and notifies, with no learning record."""
        timers.fire()

        assert pending.state == SessionState.REPORTED
        active = emergency_docs(store, status="active")
        assert len(active) == 1
        assert active[0]["id"] == pending.emergency_id
        assert learning_docs(store) == []

        notifier.shutdown(wait=True)
        assert mailbox.recipients == [ADMIN_EMAIL]

    def test_cancel_registered_before_expiry_wins(self, store, controller, timers, pending):
        """Test that a timer callback arriving after a cancel does nothing."""
        controller.cancel_countdown("s1")
        timers.fire(force=True)

        assert pending.state == SessionState.MONITORING
        assert emergency_docs(store) == []
        assert len(learning_docs(store)) == 1

    def test_cancel_after_expiry_is_rejected(self, store, controller, timers, pending):
        """Test that once reported, the countdown can no longer be cancelled."""
        timers.fire()
        with pytest.raises(InvalidTransitionError):
            controller.cancel_countdown("s1")
        assert learning_docs(store) == []

    def test_stale_countdown_is_ignored(self, store, controller, timers, pending, distress_sensor, high_risk_context, isolated_location):
        """Test that an old countdown cannot report a newer one."""
        controller.cancel_countdown("s1")
        controller.evaluate("s1", distress_sensor, high_risk_context, isolated_location)
        timers.fire(timers.handles[0], force=True)
        assert pending.state == SessionState.COUNTDOWN_PENDING

        timers.fire(timers.handles[1])
        assert pending.state == SessionState.REPORTED
        assert len(emergency_docs(store)) == 1

    def test_store_failure_on_expiry_resumes_monitoring(self, store, controller, timers, pending):
        """Test that a failed write at expiry logs and resumes monitoring."""
        store.fail("put", config.EMERGENCIES, TransientStoreError("store offline", config.EMERGENCIES))
        timers.fire()
        assert pending.state == SessionState.MONITORING
        assert pending.emergency_id is None

    def test_cancel_racing_expiry(self, store, controller, timers, pending):
        """Test that a concurrent cancel and expiry leave exactly one outcome."""
        barrier = threading.Barrier(2)
        errors = []

        def cancel():
            barrier.wait()
            try:
                controller.cancel_countdown("s1")
            except InvalidTransitionError as e:
                errors.append(e)

        def expire():
            barrier.wait()
            timers.fire(force=True)

        threads = [threading.Thread(target=cancel), threading.Thread(target=expire)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        emergencies, learning = len(emergency_docs(store)), len(learning_docs(store))
        assert (emergencies, learning) in ((1, 0), (0, 1))
        assert len(errors) == emergencies


class TestManualTrigger:
    """Test cases for manual alerts."""

    def test_manual_from_monitoring(self, store, controller, session):
        """Test that a manual trigger reports immediately at full confidence."""
        record = controller.trigger_manual("s1", location={"latitude": 1.0, "longitude": 2.0})
        assert session.state == SessionState.REPORTED
        assert record.manual is True
        assert record.confidence == 100
        assert record.location["latitude"] == 1.0

    def test_manual_during_countdown(self, store, controller, timers, pending):
        """Test that a manual trigger replaces a running countdown."""
        controller.trigger_manual("s1")
        assert timers.handles[0].cancelled
        timers.fire(force=True)
        assert len(emergency_docs(store)) == 1
        assert emergency_docs(store)[0]["manual"] is True

    def test_manual_when_idle(self, controller, session):
        """Test that a stopped session cannot raise a manual alert."""
        controller.stop_session("s1")
        with pytest.raises(InvalidTransitionError):
            controller.trigger_manual("s1")


class TestReportedSessions:
    """Test cases for cancel and resolve after a report."""

    @pytest.fixture
    def reported(self, controller, session):
        controller.trigger_manual("s1")
        return session

    def test_cancel_report(self, store, controller, reported):
        """Test that cancelling a report finishes the session and labels a false positive."""
        record = controller.cancel_report("s1", reason="pocket dial")
        assert reported.state == SessionState.CANCELLED
        assert record.status == EmergencyStatus.CANCELLED
        assert len(learning_docs(store)) == 1
        with pytest.raises(InvalidTransitionError):
            controller.resolve_report("s1")

    def test_resolve_report(self, controller, reported):
        """Test that resolving finishes the session and blocks a later cancel."""
        record = controller.resolve_report("s1", notes="all good", resolved_by="operator")
        assert reported.state == SessionState.RESOLVED
        assert record.resolved_by == "operator"
        with pytest.raises(InvalidTransitionError):
            controller.cancel_report("s1")

    def test_record_resolved_elsewhere(self, controller, reported):
        """Test that the session follows a record resolved through another entry point."""
        controller.service.resolve_emergency(reported.emergency_id)
        with pytest.raises(InvalidTransitionError):
            controller.cancel_report("s1")
        assert reported.state == SessionState.RESOLVED

    def test_api_cancel_moves_session(self, controller, reported):
        """Test that cancelling by emergency id finishes the matching session."""
        controller.cancel_emergency(reported.emergency_id, "mistake", user_id="u1")
        assert reported.state == SessionState.CANCELLED


class TestThreadingTimers:
    """Test cases for wall-clock countdowns."""

    def test_countdown_expires_on_its_own(self, service, distress_sensor, high_risk_context, isolated_location):
        """Test that a real timer reports after the countdown."""
        controller = LifecycleController(service, countdown_seconds=0.05)
        session = controller.start_session("u1")
        controller.evaluate(session.session_id, distress_sensor, high_risk_context, isolated_location)

        deadline = time.monotonic() + 5
        while session.state != SessionState.REPORTED and time.monotonic() < deadline:
            time.sleep(0.01)
        assert session.state == SessionState.REPORTED

    def test_cancelled_timer_never_fires(self):
        """Test that cancelling before the delay stops the callback."""
        fired = threading.Event()
        handle = ThreadingTimerFactory().start(0.2, fired.set)
        assert handle.cancel() is True
        assert not fired.wait(0.4)
