from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Signal(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# --- SENSOR READINGS ---
class RawAccel(Signal):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class MotionReading(Signal):
    magnitude: float = 0.0
    variance: float = 0.0
    inactivity_duration_ms: float = 0.0
    raw_accel: RawAccel = Field(default_factory=RawAccel)


class AudioReading(Signal):
    rms_amplitude: float = 0.0      # 0..1
    silence_duration_ms: float = 0.0


class SensorSnapshot(Signal):
    motion: MotionReading = Field(default_factory=MotionReading)
    audio: Optional[AudioReading] = None  # None when the microphone is off
    captured_at: datetime = Field(default_factory=utc_now)
    source: str = "device"


# --- CONTEXT ---
class Environment(Signal):
    noise_level: Optional[float] = None   # 0..1
    light_level: Optional[float] = None   # 0..1
    temperature: Optional[float] = None   # Celsius


class UserPatterns(Signal):
    usual_activity_level: Optional[float] = None
    location_deviation: Optional[float] = None
    current_activity: Optional[float] = None


class CrowdSignal(Signal):
    distance: Optional[float] = None      # metres from this user, if the client computed it
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    emergency_score: float = 0.0
    timestamp: float = 0.0                # epoch ms


class ContextSignal(Signal):
    time_of_day: Optional[float] = None   # hour 0..24; clock time when missing
    environment: Environment = Field(default_factory=Environment)
    user_patterns: UserPatterns = Field(default_factory=UserPatterns)
    crowd_signals: List[CrowdSignal] = Field(default_factory=list)


# --- LOCATION ---
class Isolation(Signal):
    nearby_people: Optional[int] = None
    public_place: Optional[bool] = None
    cell_tower_distance: Optional[float] = None


class SafeZones(Signal):
    nearest_hospital: Optional[float] = None      # metres
    nearest_police: Optional[float] = None
    nearest_fire_station: Optional[float] = None

    def nearest(self) -> Optional[float]:
        known = [
            d for d in (self.nearest_hospital, self.nearest_police, self.nearest_fire_station)
            if d is not None
        ]
        return min(known) if known else None


class LocationContext(Signal):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    isolation: Optional[Isolation] = None
    safe_zones: Optional[SafeZones] = None
    place_type: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None
