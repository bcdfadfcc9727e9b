import logging
import uuid
from typing import List, Optional, Tuple

from safewatch import config
from safewatch.core.normalizer import normalize_sensor
from safewatch.core.records import AdaptiveThresholds, LearningRecord, Outcome
from safewatch.core.store import DocumentStore
from safewatch.core.thresholds import AdaptiveThresholdStore

logger = logging.getLogger(__name__)


class LearningRecorder:
    """Appends outcome-labelled sensor snapshots and feeds them to the threshold store."""

    def __init__(self, store: DocumentStore, thresholds: AdaptiveThresholdStore):
        self.store = store
        self.thresholds = thresholds

    def record(
        self, user_id: str, outcome, sensor_snapshot=None, emergency_id: Optional[str] = None
    ) -> Tuple[LearningRecord, AdaptiveThresholds]:
        snapshot = normalize_sensor(sensor_snapshot)
        entry = LearningRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            emergency_id=emergency_id,
            sensor_snapshot=snapshot.model_dump(mode="json", by_alias=True),
            outcome=Outcome(outcome),
        )
        self.store.put(config.LEARNING_DATA, entry.id, entry.to_document(), expected_version=0)
        logger.info(f"Stored {entry.outcome.value} learning record for user {user_id}")

        thresholds = self.thresholds.apply_outcome(user_id, entry.outcome)
        return entry, thresholds

    def history(self, user_id: str) -> List[LearningRecord]:
        docs = self.store.query(config.LEARNING_DATA, lambda d: d.get("userId") == user_id)
        records = [LearningRecord.from_document(d) for d in docs]
        return sorted(records, key=lambda r: r.timestamp)
