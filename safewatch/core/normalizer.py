"""
Signal normalizer.

Turns raw client payloads (camelCase or snake_case dicts) into the canonical
signal models the scoring engine expects. Missing or malformed values become
zero (or None where a missing value must not count as a risk factor), numbers
are clamped to their canonical ranges, and nothing in here raises.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from safewatch.core.signals import (
    AudioReading,
    ContextSignal,
    CrowdSignal,
    Environment,
    Isolation,
    LocationContext,
    MotionReading,
    RawAccel,
    SafeZones,
    SensorSnapshot,
    UserPatterns,
)

logger = logging.getLogger(__name__)


def _field(raw, *names):
    """Return the first present key among camelCase/snake_case spellings."""
    if not isinstance(raw, dict):
        return None
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return None


def _number(value, low=None, high=None, default=None) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    if low is not None:
        number = max(low, number)
    if high is not None:
        number = min(high, number)
    return number


def _non_negative(value) -> float:
    return _number(value, low=0.0, default=0.0)


def _unit(value) -> Optional[float]:
    return _number(value, low=0.0, high=1.0)


def _timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    number = _number(value)
    if number is not None and number > 0:
        # epoch milliseconds, as the clients send them
        return datetime.fromtimestamp(number / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _distance(value) -> Optional[float]:
    # safe zones arrive either as a bare number or as {"distance": ...}
    if isinstance(value, dict):
        value = value.get("distance")
    return _number(value, low=0.0)


# ---------------------------------------------------------------------
# SENSOR
# ---------------------------------------------------------------------
def normalize_sensor(raw: Any) -> SensorSnapshot:
    if isinstance(raw, SensorSnapshot):
        return raw
    if not isinstance(raw, dict):
        if raw is not None:
            logger.debug(f"Ignoring malformed sensor payload of type {type(raw).__name__}")
        return SensorSnapshot()

    motion_raw = _field(raw, "motion") or {}
    accel_raw = _field(motion_raw, "rawAccel", "raw_accel", "acceleration") or {}
    motion = MotionReading(
        magnitude=_non_negative(_field(motion_raw, "magnitude")),
        variance=_non_negative(_field(motion_raw, "variance")),
        inactivity_duration_ms=_non_negative(
            _field(motion_raw, "inactivityDurationMs", "inactivity_duration_ms")
        ),
        raw_accel=RawAccel(
            x=_number(_field(accel_raw, "x"), default=0.0),
            y=_number(_field(accel_raw, "y"), default=0.0),
            z=_number(_field(accel_raw, "z"), default=0.0),
        ),
    )

    audio = None
    audio_raw = _field(raw, "audio")
    if isinstance(audio_raw, dict):
        audio = AudioReading(
            rms_amplitude=_unit(_field(audio_raw, "rmsAmplitude", "rms_amplitude")) or 0.0,
            silence_duration_ms=_non_negative(
                _field(audio_raw, "silenceDurationMs", "silence_duration_ms")
            ),
        )

    source = _field(raw, "source", "dataSource", "data_source")
    return SensorSnapshot(
        motion=motion,
        audio=audio,
        captured_at=_timestamp(_field(raw, "capturedAt", "captured_at", "timestamp")),
        source=str(source) if source is not None else "device",
    )


# ---------------------------------------------------------------------
# CONTEXT
# ---------------------------------------------------------------------
def _crowd_signal(raw) -> Optional[CrowdSignal]:
    if not isinstance(raw, dict):
        return None
    return CrowdSignal(
        distance=_number(_field(raw, "distance"), low=0.0),
        latitude=_number(_field(raw, "latitude", "lat"), low=-90.0, high=90.0),
        longitude=_number(_field(raw, "longitude", "lng"), low=-180.0, high=180.0),
        emergency_score=_number(_field(raw, "emergencyScore", "emergency_score"), 0.0, 100.0, 0.0),
        timestamp=_non_negative(_field(raw, "timestamp")),
    )


def normalize_context(raw: Any) -> ContextSignal:
    if isinstance(raw, ContextSignal):
        return raw
    if not isinstance(raw, dict):
        return ContextSignal()

    env_raw = _field(raw, "environment") or {}
    patterns_raw = _field(raw, "userPatterns", "user_patterns") or {}
    current_activity = _field(patterns_raw, "currentActivity", "current_activity")
    if current_activity is None:
        # older clients sent currentActivity next to userPatterns
        current_activity = _field(raw, "currentActivity", "current_activity")

    crowd_raw = _field(raw, "crowdSignals", "crowd_signals")
    crowd = []
    if isinstance(crowd_raw, (list, tuple)):
        crowd = [s for s in (_crowd_signal(item) for item in crowd_raw) if s is not None]

    hour = _number(_field(raw, "timeOfDay", "time_of_day"), low=0.0)
    if hour is not None:
        hour = hour % 24

    return ContextSignal(
        time_of_day=hour,
        environment=Environment(
            noise_level=_unit(_field(env_raw, "noiseLevel", "noise_level")),
            light_level=_unit(_field(env_raw, "lightLevel", "light_level")),
            temperature=_number(_field(env_raw, "temperature"), low=-90.0, high=70.0),
        ),
        user_patterns=UserPatterns(
            usual_activity_level=_unit(_field(patterns_raw, "usualActivityLevel", "usual_activity_level")),
            location_deviation=_unit(_field(patterns_raw, "locationDeviation", "location_deviation")),
            current_activity=_unit(current_activity),
        ),
        crowd_signals=crowd,
    )


# ---------------------------------------------------------------------
# LOCATION
# ---------------------------------------------------------------------
def normalize_location(raw: Any) -> Optional[LocationContext]:
    if isinstance(raw, LocationContext):
        return raw
    if not isinstance(raw, dict) or not raw:
        return None

    isolation = None
    isolation_raw = _field(raw, "isolation")
    if isinstance(isolation_raw, dict):
        people = _number(_field(isolation_raw, "nearbyPeople", "nearby_people"), low=0.0)
        public = _field(isolation_raw, "publicPlace", "public_place")
        isolation = Isolation(
            nearby_people=int(people) if people is not None else None,
            public_place=public if isinstance(public, bool) else None,
            cell_tower_distance=_number(
                _field(isolation_raw, "cellTowerDistance", "cell_tower_distance"), low=0.0
            ),
        )

    safe_zones = None
    zones_raw = _field(raw, "safeZones", "safe_zones")
    if isinstance(zones_raw, dict):
        safe_zones = SafeZones(
            nearest_hospital=_distance(_field(zones_raw, "nearestHospital", "nearest_hospital")),
            nearest_police=_distance(_field(zones_raw, "nearestPolice", "nearest_police")),
            nearest_fire_station=_distance(
                _field(zones_raw, "nearestFireStation", "nearest_fire_station")
            ),
        )

    place_type = _field(raw, "placeType", "place_type", "type")
    return LocationContext(
        latitude=_number(_field(raw, "latitude", "lat"), low=-90.0, high=90.0),
        longitude=_number(_field(raw, "longitude", "lng"), low=-180.0, high=180.0),
        accuracy=_number(_field(raw, "accuracy"), low=0.0),
        isolation=isolation,
        safe_zones=safe_zones,
        place_type=str(place_type).lower() if isinstance(place_type, str) else None,
    )
