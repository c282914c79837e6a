"""Constants for the rotation module.

This module centralizes configuration values used across the rotation package.
"""

# Persisted files inside the installation root
ACCOUNTS_FILE_NAME = "auth_accounts.json"
SLOT_REGISTRY_FILE_NAME = "slot_registry.json"
ACCOUNTS_FILE_VERSION = 1
SLOT_REGISTRY_VERSION = 1

# Slot discovery
SLOT_PREFIX = "slot"
MAX_SLOT_DEPTH = 2
DEFAULT_SLOT_ID = "slot-default"
DEFAULT_SLOT_COMPONENT = "default"
CUSTOM_SLOT_COMPONENT = "custom"

# Weight computation
DEFAULT_PRIORITY_RATIO = 100.0  # accounts without telemetry are tried eagerly
MIN_TIME_FRACTION = 0.01
MIN_WEIGHT = 0.05

# Urgency multiplier breakpoints (ratio -> multiplier)
CRITICAL_RATIO = 0.25
CRITICAL_MULTIPLIER = 0.1
BASE_RATIO_LOW = 1.0
BASE_RATIO_HIGH = 1.5
SURPLUS_RATIO = 4.0
SURPLUS_MULTIPLIER = 2.0

# Cooldown applied when a rate limit carries no resume time (seconds)
DEFAULT_COOLDOWN_SECONDS = 15.0
