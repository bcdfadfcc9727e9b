from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from typing import List, Dict, Any, Optional

from safewatch.core.records import Classification, Outcome, ScoreBreakdown


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Emergency lifecycle ---
# Sensor/context/location payloads stay loose dicts: the normalizer degrades
# malformed fields to zero instead of rejecting the report.
class ReportRequest(ApiModel):
    sensor_data: Optional[Dict[str, Any]] = None
    context_data: Optional[Dict[str, Any]] = None
    location: Optional[Dict[str, Any]] = None
    manual: bool = False


class ReportResponse(ApiModel):
    success: bool = True
    emergency_id: str
    score: float
    breakdown: ScoreBreakdown
    classification: Classification
    manual: bool
    explanation: List[str] = []


class CancelRequest(ApiModel):
    reason: Optional[str] = None
    sensor_snapshot: Optional[Dict[str, Any]] = None


class ResolveRequest(ApiModel):
    notes: Optional[str] = None


class StatusResponse(ApiModel):
    success: bool = True


# --- Contacts ---
class ContactCreate(ApiModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    relationship: Optional[str] = None


# --- Location tracking ---
class LocationUpdate(ApiModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    severity: str = "emergency"


# --- Learning ---
class FeedbackRequest(ApiModel):
    outcome: Outcome
    sensor_snapshot: Optional[Dict[str, Any]] = None
    emergency_id: Optional[str] = None
