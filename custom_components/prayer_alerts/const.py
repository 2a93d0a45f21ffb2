"""Constants for Prayer Alerts integration."""

from typing import Final

# Integration domain
DOMAIN: Final = "prayer_alerts"

# Storage
LEDGER_STORAGE_KEY: Final = f"{DOMAIN}.schedule_ledger"
LEDGER_STORAGE_VERSION: Final = 1

# Configuration keys (entry data)
CONF_LATITUDE: Final = "latitude"
CONF_LONGITUDE: Final = "longitude"
CONF_CALC_METHOD: Final = "calculation_method"
CONF_SCHOOL: Final = "school"

# Configuration keys (options = user preferences)
CONF_REMINDER_LEAD_MINUTES: Final = "reminder_lead_minutes"
CONF_MUTED_SESSIONS: Final = "muted_sessions"
CONF_ALERT_SOUND: Final = "alert_sound"
CONF_NOTIFY_SERVICE: Final = "notify_service"
CONF_LOOKAHEAD_DAYS: Final = "lookahead_days"
CONF_REFRESH_INTERVAL: Final = "refresh_interval"
CONF_DEBUG_LOGGING: Final = "debug_logging"

# Default values
DEFAULT_NAME: Final = "Prayer Alerts"
DEFAULT_CALC_METHOD: Final = 11  # Majlis Ugama Islam Singapura
DEFAULT_SCHOOL: Final = 0  # Shafi
DEFAULT_REMINDER_LEAD_MINUTES: Final = 0  # Disabled
DEFAULT_ALERT_SOUND: Final = "none"
DEFAULT_NOTIFY_SERVICE: Final = "persistent_notification"
DEFAULT_LOOKAHEAD_DAYS: Final = 5
DEFAULT_REFRESH_INTERVAL: Final = 60  # Minutes
DEFAULT_DEBUG_LOGGING: Final = False

MAX_LOOKAHEAD_DAYS: Final = 14

# Options offered in the UI
REMINDER_LEAD_OPTIONS: Final = [0, 5, 10, 15, 20, 25, 30]

ALERT_SOUND_NONE: Final = "none"
ALERT_SOUNDS: Final = {
    ALERT_SOUND_NONE: "None",
    "ahmad_al_nafees": "Ahmad Al-Nafees",
    "mishary_rashid_alafasy": "Mishary Rashid Alafasy",
}

CALC_METHODS: Final = {
    1: "Umm Al-Qura University, Makkah",
    2: "Islamic Society of North America",
    3: "Muslim World League",
    4: "Umm Al-Qura",
    5: "Egyptian General Authority of Survey",
    7: "University of Islamic Sciences, Karachi",
    11: "Majlis Ugama Islam Singapura",
    13: "Diyanet, Turkey",
    15: "Dubai",
}

SCHOOLS: Final = {
    0: "Shafi",
    1: "Hanafi",
}

# Aladhan API
ALADHAN_API_URL: Final = "https://api.aladhan.com/v1/timings"
ALADHAN_TIMEOUT_SECONDS: Final = 10

# Aladhan timing key -> local session name
ALADHAN_TIMINGS: Final = {
    "Fajr": "Subuh",
    "Sunrise": "Syuruk",
    "Dhuhr": "Zohor",
    "Asr": "Asar",
    "Maghrib": "Maghrib",
    "Isha": "Isyak",
}

# Notification text
ALERT_TITLE_TEMPLATE: Final = "{session} Prayer Time"
ALERT_MESSAGE: Final = "Time for prayer"
REMINDER_TITLE_TEMPLATE: Final = "{session} in {minutes} minutes"
REMINDER_MESSAGE: Final = "Time to prepare for prayer"
SUNRISE_TITLE: Final = "Syuruk"
SUNRISE_MESSAGE: Final = "Sunrise. Subuh time has ended."

NOTIFICATION_ID_PREFIX: Final = f"{DOMAIN}_"

# Services
SERVICE_REFRESH: Final = "refresh"
SERVICE_RESCHEDULE_ALL: Final = "reschedule_all"
ATTR_TABLE: Final = "table"
ATTR_CONFIG_ENTRY_ID: Final = "config_entry_id"

# Dispatcher signal (suffixed with entry id)
SIGNAL_REPORT_UPDATED: Final = f"{DOMAIN}_report_updated"
