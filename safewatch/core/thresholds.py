import logging
import threading
from typing import Dict

from safewatch import config
from safewatch.core.errors import ConcurrentUpdateError, ThresholdUpdateError
from safewatch.core.records import AdaptiveThresholds, Outcome
from safewatch.core.signals import utc_now
from safewatch.core.store import VERSION_KEY, DocumentStore

logger = logging.getLogger(__name__)


def _bounded(value, bounds):
    low, high = bounds
    return max(low, min(high, value))


def adjust(thresholds: AdaptiveThresholds, outcome: Outcome) -> AdaptiveThresholds:
    """
    Pure feedback rule:
    - false_positive:   motion/audio x0.95; once more than 5 have accumulated, contextWeight x0.9
    - missed_emergency: motion/audio x1.05, contextWeight x1.02
    - true_positive:    no change
    Results are clamped to their bounds after every update.
    """
    motion = thresholds.motion_sensitivity
    audio = thresholds.audio_sensitivity
    context = thresholds.context_weight
    false_positives = thresholds.false_positive_count
    missed = thresholds.missed_emergency_count

    if outcome == Outcome.FALSE_POSITIVE:
        false_positives += 1
        motion *= config.FALSE_POSITIVE_SENSITIVITY_FACTOR
        audio *= config.FALSE_POSITIVE_SENSITIVITY_FACTOR
        if false_positives > config.FALSE_POSITIVE_CONTEXT_AFTER:
            context *= config.FALSE_POSITIVE_CONTEXT_FACTOR
    elif outcome == Outcome.MISSED_EMERGENCY:
        missed += 1
        motion *= config.MISSED_SENSITIVITY_FACTOR
        audio *= config.MISSED_SENSITIVITY_FACTOR
        context *= config.MISSED_CONTEXT_FACTOR

    return thresholds.model_copy(
        update={
            "motion_sensitivity": _bounded(motion, config.SENSITIVITY_BOUNDS),
            "audio_sensitivity": _bounded(audio, config.SENSITIVITY_BOUNDS),
            "context_weight": _bounded(context, config.CONTEXT_WEIGHT_BOUNDS),
            "false_positive_count": false_positives,
            "missed_emergency_count": missed,
            "updated_at": utc_now(),
        }
    )


class AdaptiveThresholdStore:
    """
    Per-user sensitivity multipliers kept in the document store.

    Updates are serialized per user by an in-process lock and written with a
    version check, so a writer in another process forces a bounded re-read
    instead of a lost update. Different users never contend.
    """

    def __init__(self, store: DocumentStore, max_retries: int = config.THRESHOLD_UPDATE_RETRIES):
        self.store = store
        self.max_retries = max_retries
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, user_id) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def _load(self, user_id):
        doc = self.store.get(config.ADAPTIVE_THRESHOLDS, user_id)
        if doc is None:
            return AdaptiveThresholds(user_id=user_id), 0
        return AdaptiveThresholds.from_document(doc), doc.get(VERSION_KEY, 0)

    def get(self, user_id: str) -> AdaptiveThresholds:
        thresholds, version = self._load(user_id)
        if version == 0:
            try:
                self.store.put(
                    config.ADAPTIVE_THRESHOLDS, user_id, thresholds.to_document(), expected_version=0
                )
            except ConcurrentUpdateError:
                # someone else created it first; theirs wins
                thresholds, _ = self._load(user_id)
        return thresholds

    def apply_outcome(self, user_id: str, outcome) -> AdaptiveThresholds:
        outcome = Outcome(outcome)
        with self._lock_for(user_id):
            for attempt in range(1, self.max_retries + 1):
                current, version = self._load(user_id)
                updated = adjust(current, outcome)
                try:
                    self.store.put(
                        config.ADAPTIVE_THRESHOLDS, user_id, updated.to_document(), expected_version=version
                    )
                except ConcurrentUpdateError:
                    logger.warning(
                        f"Threshold update conflict for user {user_id} (attempt {attempt}/{self.max_retries})"
                    )
                    continue
                logger.info(
                    f"Updated thresholds for user {user_id} after {outcome.value}: "
                    f"motion={updated.motion_sensitivity:.3f} audio={updated.audio_sensitivity:.3f} "
                    f"context={updated.context_weight:.3f}"
                )
                return updated

        raise ThresholdUpdateError(
            f"Could not update thresholds for user {user_id} after {self.max_retries} attempts"
        )
