"""Constants for Readeck synchronization."""

# Settings store keys
SETTING_API_TOKEN = "api_token"
SETTING_OAUTH_CLIENT_ID = "oauth_client_id"
SETTING_LAST_SYNC_AT = "last_sync_at"
SETTING_USERNAME = "username"

IMAGES_FOLDER = "imgs"
NOTE_EXTENSION = ".md"
ANNOTATIONS_HEADING = "# Annotations"

# Longest file name most filesystems accept
MAX_FILE_NAME_LENGTH = 255
