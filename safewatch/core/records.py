"""
Persisted records and value types of the alerting pipeline.

Documents are written with camelCase keys (`sensorScore`, `createdAt`) and
ISO-8601 timestamps; attributes stay snake_case on the Python side.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from safewatch.config import DEFAULT_SENSITIVITY
from safewatch.core.signals import utc_now


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate({k: v for k, v in doc.items() if not k.startswith("_")})


class Level(str, Enum):
    SAFE = "safe"
    SUSPICIOUS = "suspicious"
    EMERGENCY = "emergency"


class EmergencyStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    RESOLVED = "resolved"


class Outcome(str, Enum):
    FALSE_POSITIVE = "false_positive"
    TRUE_POSITIVE = "true_positive"
    MISSED_EMERGENCY = "missed_emergency"


class RecipientType(str, Enum):
    ADMIN = "admin"
    EMERGENCY_CONTACT = "emergency_contact"


class ScoreBreakdown(Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    sensor_score: float = 0.0
    context_score: float = 0.0
    location_score: float = 0.0
    crowd_score: float = 0.0
    total_score: float = 0.0
    manual: bool = False
    note: Optional[str] = None


class Classification(Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    level: Level
    action: str
    description: str


class AdaptiveThresholds(Record):
    user_id: str
    motion_sensitivity: float = DEFAULT_SENSITIVITY
    audio_sensitivity: float = DEFAULT_SENSITIVITY
    context_weight: float = DEFAULT_SENSITIVITY
    false_positive_count: int = 0
    missed_emergency_count: int = 0
    updated_at: datetime = Field(default_factory=utc_now)


class LocationSample(Record):
    id: str  # SOS session id
    user_id: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    severity: str = "emergency"
    status: str = "active"  # active | resolved
    updated_at: datetime = Field(default_factory=utc_now)


class EmergencyRecord(Record):
    id: str
    user_id: str
    sensor_data: Dict[str, Any]
    location: Optional[Dict[str, Any]] = None
    context_data: Dict[str, Any] = Field(default_factory=dict)
    confidence: float
    breakdown: ScoreBreakdown
    status: EmergencyStatus = EmergencyStatus.ACTIVE
    manual: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    notification: Optional[Dict[str, Any]] = None


# Fields that no cancel/resolve/notification patch may touch
IMMUTABLE_EMERGENCY_FIELDS = frozenset(["id", "userId", "sensorData", "breakdown", "createdAt"])


class EmergencyStats(Record):
    user_id: str
    total_emergencies: int = 0
    false_positives: int = 0  # cancelled by the user
    resolved_emergencies: int = 0
    average_response_time: Optional[int] = None  # seconds from creation to resolution
    last_emergency: Optional[datetime] = None


class EmergencyContact(Record):
    id: str
    user_id: str
    name: str
    email: str
    phone: str
    relationship: str = "Emergency Contact"
    created_at: datetime = Field(default_factory=utc_now)


class LearningRecord(Record):
    id: str
    user_id: str
    emergency_id: Optional[str] = None
    sensor_snapshot: Dict[str, Any] = Field(default_factory=dict)
    outcome: Outcome
    timestamp: datetime = Field(default_factory=utc_now)


class Recipient(Record):
    name: str
    email: str
    type: RecipientType


class DeliveryOutcome(Record):
    recipient: Recipient
    status: str  # sent | failed
    error: Optional[str] = None


class DispatchResult(Record):
    total: int = 0
    successful: int = 0
    failed: int = 0
    per_recipient: List[DeliveryOutcome] = Field(default_factory=list)
    location_included: bool = False

    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "locationIncluded": self.location_included,
        }
