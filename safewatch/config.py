import os

# --- PROJECT SETUP ---
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# --- PATHS ---
LOG_DIR = os.getenv("SAFEWATCH_LOG_DIR", os.path.join(ROOT_DIR, "logs"))
ALERT_LOG_FILE = "emergency_alerts.log"

# --- STORE COLLECTIONS ---
EMERGENCIES = "emergencies"
EMERGENCY_CONTACTS = "emergency_contacts"
LOCATIONS = "locations"
LEARNING_DATA = "learning_data"
ADAPTIVE_THRESHOLDS = "adaptive_thresholds"

# --- SENSOR SCORING ---
MOTION_MAGNITUDE_THRESHOLD = 20.0
MOTION_MAGNITUDE_SCORE = 40.0
MOTION_VARIANCE_THRESHOLD = 10.0
MOTION_VARIANCE_SCORE = 30.0
INACTIVITY_THRESHOLD_MS = 30_000
INACTIVITY_SCORE = 30.0
AUDIO_AMPLITUDE_THRESHOLD = 0.8
AUDIO_AMPLITUDE_SCORE = 20.0
SILENCE_THRESHOLD_MS = 600_000  # 10 minutes
SILENCE_POINTS_PER_MINUTE = 2.0
SILENCE_MAX_SCORE = 30.0

# --- CONTEXT SCORING ---
LATE_NIGHT_START_HOUR = 22
LATE_NIGHT_END_HOUR = 7  # exclusive; 06:xx still counts as late night
LATE_NIGHT_SCORE = 15.0
PEAK_DANGER_HOURS = (2, 6)  # [start, end)
PEAK_DANGER_SCORE = 5.0
QUIET_NOISE_LEVEL = 0.2
QUIET_SCORE = 10.0
DARK_LIGHT_LEVEL = 0.1
DARK_SCORE = 8.0
COLD_TEMPERATURE = 5.0
HOT_TEMPERATURE = 35.0
EXTREME_TEMPERATURE_SCORE = 5.0
LOCATION_DEVIATION_THRESHOLD = 0.8
LOCATION_DEVIATION_SCORE = 12.0
USUALLY_ACTIVE_LEVEL = 0.7
NOW_INACTIVE_LEVEL = 0.2
ACTIVITY_DROP_SCORE = 10.0

# --- LOCATION SCORING ---
NO_PEOPLE_SCORE = 15.0
PRIVATE_PLACE_SCORE = 10.0
REMOTE_CELL_TOWER_DISTANCE = 5000.0
REMOTE_AREA_SCORE = 8.0
SAFE_ZONE_NEAR_DISTANCE = 1000.0
SAFE_ZONE_NEAR_SCORE = -10.0
SAFE_ZONE_FAR_DISTANCE = 10000.0
SAFE_ZONE_FAR_SCORE = 15.0
PLACE_TYPE_RISK = {
    "highway": 10.0,
    "construction": 8.0,
    "industrial": 6.0,
    "residential": 2.0,
    "commercial": 1.0,
    "hospital": -5.0,
    "police_station": -5.0,
}

# --- CROWD SCORING ---
CROWD_RADIUS_M = 500.0
CROWD_MIN_EMERGENCY_SCORE = 60.0
CROWD_WINDOW_MS = 300_000  # 5 minutes
CROWD_SCORE = 20.0
MASS_INCIDENT_SIGNALS = 3
MASS_INCIDENT_SCORE = 30.0

# --- WEIGHTS ---
SENSOR_WEIGHT = 0.5    # Primary indicator
CONTEXT_WEIGHT = 0.2   # Time/environment factors
LOCATION_WEIGHT = 0.2  # Location-based risk
CROWD_WEIGHT = 0.1     # Crowd verification boost

# --- CLASSIFICATION ---
SUSPICIOUS_THRESHOLD = 40.0  # total >= 40 is at least suspicious
EMERGENCY_THRESHOLD = 70.0   # total > 70 is an emergency
MANUAL_SCORE = 100.0

# --- ADAPTIVE THRESHOLDS ---
DEFAULT_SENSITIVITY = 1.0
FALSE_POSITIVE_SENSITIVITY_FACTOR = 0.95
FALSE_POSITIVE_CONTEXT_FACTOR = 0.9
FALSE_POSITIVE_CONTEXT_AFTER = 5  # contextWeight drops once the count exceeds this
MISSED_SENSITIVITY_FACTOR = 1.05
MISSED_CONTEXT_FACTOR = 1.02
SENSITIVITY_BOUNDS = (0.3, 2.0)
CONTEXT_WEIGHT_BOUNDS = (0.5, 1.5)
THRESHOLD_UPDATE_RETRIES = 5

# --- LIFECYCLE ---
COUNTDOWN_SECONDS = 5.0

# --- NOTIFICATIONS ---
ADMIN_NAME = "SafeWatch Admin"
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "alerts@safewatch.local")
ALERT_SUBJECT = "URGENT: SafeWatch Emergency Detected"
CONTACT_ADDED_SUBJECT = "SafeWatch Alert - Emergency Contact Added"
DISPATCH_MAX_WORKERS = 4
SEND_TIMEOUT_SECONDS = 10.0
