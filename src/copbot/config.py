"""Configuration constants.

Centralizes magic numbers and default values shared across modules.
Runtime settings (API keys, backends) come from the environment, see
copbot.cli.providers.
"""

# Session titles
SENTINEL_TITLE = "New Chat"  # Title of a session nobody has named yet
TITLE_MAX_LENGTH = 50  # Characters kept from an inferred title
TITLE_SEED_MAX_LENGTH = 50  # Characters of the first message used as seed title

# Completion request configuration
COMPLETION_TIMEOUT = 60.0  # Seconds before a completion call is cancelled
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048
DEFAULT_TOP_P = 0.8
TITLE_MAX_TOKENS = 50  # Output budget for the title inference call

# Message identifiers
MESSAGE_ID_PREFIX = "msg"
MESSAGE_ID_SUFFIX_LENGTH = 9

# Failure text shown in place of an assistant reply
COMPLETION_FAILURE_TEMPLATE = "Sorry, I encountered an error: {reason}"

# Voice capture
DEFAULT_RECOGNITION_LANGUAGE = "en-US"
MICROPHONE_PHRASE_TIME_LIMIT = 15.0  # Seconds of speech captured per recording
MICROPHONE_LISTEN_TIMEOUT = 8.0  # Seconds to wait for speech to begin

# Storage
DEFAULT_DB_PATH = "./copbot.db"
SQLITE_POLL_INTERVAL = 0.5  # Seconds between checks for writes from other connections
