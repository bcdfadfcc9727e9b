import logging
import math
from datetime import datetime
from typing import Callable, List, Optional

from safewatch import config
from safewatch.core.normalizer import normalize_context, normalize_location, normalize_sensor
from safewatch.core.records import AdaptiveThresholds, Classification, Level, ScoreBreakdown
from safewatch.core.signals import ContextSignal, CrowdSignal, LocationContext, SensorSnapshot

logger = logging.getLogger(__name__)

_CLASSIFICATIONS = {
    Level.EMERGENCY: ("immediate_alert", "High confidence emergency detected"),
    Level.SUSPICIOUS: ("monitor_closely", "Suspicious activity detected"),
    Level.SAFE: ("continue_monitoring", "Normal activity"),
}


def _clamp(value, low=0.0, high=100.0):
    return max(low, min(high, value))


def haversine_m(lat1, lon1, lat2, lon2):
    """Great-circle distance in metres."""
    r = 6371000.0
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * r * math.asin(math.sqrt(a))


def crowd_distance(signal: CrowdSignal, location: Optional[LocationContext]) -> Optional[float]:
    if signal.distance is not None:
        return signal.distance
    if (
        location is not None
        and location.has_coordinates
        and signal.latitude is not None
        and signal.longitude is not None
    ):
        return haversine_m(location.latitude, location.longitude, signal.latitude, signal.longitude)
    return None


def classify(total_score: float) -> Classification:
    """
    Maps a total score to a risk level:
    - Safe:        total < 40
    - Suspicious:  40 <= total <= 70
    - Emergency:   total > 70
    """
    if total_score > config.EMERGENCY_THRESHOLD:
        level = Level.EMERGENCY
    elif total_score >= config.SUSPICIOUS_THRESHOLD:
        level = Level.SUSPICIOUS
    else:
        level = Level.SAFE
    action, description = _CLASSIFICATIONS[level]
    return Classification(level=level, action=action, description=description)


def manual_breakdown() -> ScoreBreakdown:
    return ScoreBreakdown(
        total_score=config.MANUAL_SCORE,
        manual=True,
        note="Manual emergency alert - 100% confidence",
    )


def explain(breakdown: ScoreBreakdown, sensor: Optional[SensorSnapshot] = None) -> List[str]:
    """Human-readable reasons behind a score."""
    if breakdown.manual:
        return ["Manual emergency alert triggered by the user"]

    explanations = []
    if breakdown.sensor_score > 20:
        explanations.append(f"Sensor anomalies detected ({round(breakdown.sensor_score)}% confidence)")
    if breakdown.context_score > 10:
        explanations.append(f"High-risk context factors ({round(breakdown.context_score)}% risk)")
    if breakdown.location_score > 10:
        explanations.append(f"Location-based risk factors ({round(breakdown.location_score)}% risk)")
    if breakdown.crowd_score > 0:
        explanations.append("Correlated signals from nearby users")

    if sensor is not None:
        if sensor.motion.magnitude > config.MOTION_MAGNITUDE_THRESHOLD:
            explanations.append(f"Extreme motion: {sensor.motion.magnitude:.1f}")
        if sensor.motion.inactivity_duration_ms > config.INACTIVITY_THRESHOLD_MS:
            explanations.append(f"Inactivity: {round(sensor.motion.inactivity_duration_ms / 1000)}s")
        if sensor.audio and sensor.audio.silence_duration_ms > config.SILENCE_THRESHOLD_MS:
            explanations.append(
                f"Prolonged silence: {round(sensor.audio.silence_duration_ms / 60000)} minutes"
            )

    return explanations or ["Multiple emergency indicators detected"]


class ScoringEngine:
    """
    Deterministic multi-factor emergency scorer.

    Every analyzer is pure and bounded; a failure inside one of them counts as
    zero contribution so partial sensor data never stops detection. Clock and
    distance function are injectable for deterministic tests.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        distance_fn: Optional[Callable[[CrowdSignal, Optional[LocationContext]], Optional[float]]] = None,
    ):
        self.clock = clock or datetime.now
        self.distance_fn = distance_fn or crowd_distance

    def score(self, sensor, context=None, location=None, thresholds: Optional[AdaptiveThresholds] = None) -> ScoreBreakdown:
        sensor = normalize_sensor(sensor)
        context = normalize_context(context)
        location = normalize_location(location)

        motion_sensitivity = thresholds.motion_sensitivity if thresholds else config.DEFAULT_SENSITIVITY
        audio_sensitivity = thresholds.audio_sensitivity if thresholds else config.DEFAULT_SENSITIVITY
        context_weight = thresholds.context_weight if thresholds else config.DEFAULT_SENSITIVITY

        sensor_score = self._safely(self.analyze_sensor, sensor, motion_sensitivity, audio_sensitivity)
        context_score = self._safely(self.analyze_context, context)
        location_score = self._safely(self.analyze_location, location)
        crowd_score = self._safely(self.analyze_crowd, context.crowd_signals, location)

        total = min(
            100.0,
            sensor_score * config.SENSOR_WEIGHT
            + context_score * config.CONTEXT_WEIGHT * context_weight
            + location_score * config.LOCATION_WEIGHT
            + crowd_score * config.CROWD_WEIGHT,
        )

        return ScoreBreakdown(
            sensor_score=sensor_score,
            context_score=context_score,
            location_score=location_score,
            crowd_score=crowd_score,
            total_score=max(0.0, total),
        )

    def _safely(self, analyzer, *args) -> float:
        try:
            return _clamp(float(analyzer(*args)))
        except Exception as e:
            logger.debug(f"{analyzer.__name__} failed, counting as zero: {e}")
            return 0.0

    # ---------------------------------------------------------------------
    # SENSOR
    # ---------------------------------------------------------------------
    def analyze_sensor(self, sensor: SensorSnapshot, motion_sensitivity=1.0, audio_sensitivity=1.0) -> float:
        """
        Motion and audio terms are weighted by their own sensitivity before
        being summed, so a user's audio feedback never rescales motion evidence.
        """
        motion = sensor.motion
        motion_score = 0.0
        if motion.magnitude > config.MOTION_MAGNITUDE_THRESHOLD:
            motion_score += config.MOTION_MAGNITUDE_SCORE
        if motion.variance > config.MOTION_VARIANCE_THRESHOLD:
            motion_score += config.MOTION_VARIANCE_SCORE
        if motion.inactivity_duration_ms > config.INACTIVITY_THRESHOLD_MS:
            motion_score += config.INACTIVITY_SCORE

        audio_score = 0.0
        audio = sensor.audio
        if audio is not None:
            if audio.rms_amplitude > config.AUDIO_AMPLITUDE_THRESHOLD:
                audio_score += config.AUDIO_AMPLITUDE_SCORE
            if audio.silence_duration_ms > config.SILENCE_THRESHOLD_MS:
                minutes = audio.silence_duration_ms / 60000.0
                audio_score += min(config.SILENCE_MAX_SCORE, minutes * config.SILENCE_POINTS_PER_MINUTE)

        return _clamp(motion_score * motion_sensitivity + audio_score * audio_sensitivity)

    # ---------------------------------------------------------------------
    # CONTEXT
    # ---------------------------------------------------------------------
    def analyze_context(self, context: ContextSignal) -> float:
        score = 0.0
        hour = context.time_of_day
        if hour is None:
            now = self.clock()
            hour = now.hour + now.minute / 60.0

        if hour >= config.LATE_NIGHT_START_HOUR or hour < config.LATE_NIGHT_END_HOUR:
            score += config.LATE_NIGHT_SCORE
        peak_start, peak_end = config.PEAK_DANGER_HOURS
        if peak_start <= hour < peak_end:
            score += config.PEAK_DANGER_SCORE

        env = context.environment
        if env.noise_level is not None and env.noise_level < config.QUIET_NOISE_LEVEL:
            score += config.QUIET_SCORE
        if env.light_level is not None and env.light_level < config.DARK_LIGHT_LEVEL:
            score += config.DARK_SCORE
        if env.temperature is not None and (
            env.temperature < config.COLD_TEMPERATURE or env.temperature > config.HOT_TEMPERATURE
        ):
            score += config.EXTREME_TEMPERATURE_SCORE

        patterns = context.user_patterns
        if patterns.location_deviation is not None and patterns.location_deviation > config.LOCATION_DEVIATION_THRESHOLD:
            score += config.LOCATION_DEVIATION_SCORE
        if (
            patterns.usual_activity_level is not None
            and patterns.current_activity is not None
            and patterns.usual_activity_level > config.USUALLY_ACTIVE_LEVEL
            and patterns.current_activity < config.NOW_INACTIVE_LEVEL
        ):
            score += config.ACTIVITY_DROP_SCORE

        return _clamp(score)

    # ---------------------------------------------------------------------
    # LOCATION
    # ---------------------------------------------------------------------
    def analyze_location(self, location: Optional[LocationContext]) -> float:
        if location is None:
            return 0.0

        score = 0.0
        isolation = location.isolation
        if isolation is not None:
            if isolation.nearby_people == 0:
                score += config.NO_PEOPLE_SCORE
            if isolation.public_place is False:
                score += config.PRIVATE_PLACE_SCORE
            if isolation.cell_tower_distance is not None and isolation.cell_tower_distance > config.REMOTE_CELL_TOWER_DISTANCE:
                score += config.REMOTE_AREA_SCORE

        if location.safe_zones is not None:
            nearest = location.safe_zones.nearest()
            if nearest is not None:
                if nearest < config.SAFE_ZONE_NEAR_DISTANCE:
                    score += config.SAFE_ZONE_NEAR_SCORE
                elif nearest > config.SAFE_ZONE_FAR_DISTANCE:
                    score += config.SAFE_ZONE_FAR_SCORE

        if location.place_type:
            score += config.PLACE_TYPE_RISK.get(location.place_type, 0.0)

        return _clamp(score)

    # ---------------------------------------------------------------------
    # CROWD
    # ---------------------------------------------------------------------
    def analyze_crowd(self, signals: List[CrowdSignal], location: Optional[LocationContext] = None) -> float:
        if not signals:
            return 0.0

        now_ms = self.clock().timestamp() * 1000.0
        nearby = 0
        for signal in signals:
            distance = self.distance_fn(signal, location)
            if (
                distance is not None
                and distance < config.CROWD_RADIUS_M
                and signal.emergency_score > config.CROWD_MIN_EMERGENCY_SCORE
                and signal.timestamp > now_ms - config.CROWD_WINDOW_MS
            ):
                nearby += 1

        score = 0.0
        if nearby > 0:
            score += config.CROWD_SCORE
        if nearby >= config.MASS_INCIDENT_SIGNALS:
            score += config.MASS_INCIDENT_SCORE  # possible mass-casualty event
        return _clamp(score)
