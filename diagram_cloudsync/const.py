from __future__ import annotations

DOMAIN = "diagram_cloudsync"

# Session persistence
SESSION_STORAGE_KEY = f"{DOMAIN}.session"
TOKEN_REFRESH_BUFFER_SECONDS = 60

# Auto sync
AUTO_SYNC_DEBOUNCE_SECONDS = 1.5

# Remote configuration
CONF_URL = "url"
CONF_ANON_KEY = "anon_key"
CONF_TIMEOUT = "timeout"

ENV_URL = "DIAGRAM_CLOUD_URL"
ENV_ANON_KEY = "DIAGRAM_CLOUD_ANON_KEY"
ENV_TIMEOUT = "DIAGRAM_CLOUD_TIMEOUT"

DEFAULT_TIMEOUT = 30
MIN_TIMEOUT = 1

AUTH_PATH = "/auth/v1"
REST_PATH = "/rest/v1"

# PostgREST Prefer headers
PREFER_UPSERT = "resolution=merge-duplicates,return=minimal"
PREFER_MINIMAL = "return=minimal"

# Remote tables
TABLE_DIAGRAMS = "diagrams"
TABLE_TABLES = "db_tables"
TABLE_RELATIONSHIPS = "db_relationships"
TABLE_DEPENDENCIES = "db_dependencies"
TABLE_AREAS = "areas"
TABLE_CUSTOM_TYPES = "db_custom_types"
TABLE_NOTES = "notes"

# Diagram attribute -> remote child table, in a stable order
CHILD_COLLECTIONS: tuple[tuple[str, str], ...] = (
    ("tables", TABLE_TABLES),
    ("relationships", TABLE_RELATIONSHIPS),
    ("dependencies", TABLE_DEPENDENCIES),
    ("areas", TABLE_AREAS),
    ("custom_types", TABLE_CUSTOM_TYPES),
    ("notes", TABLE_NOTES),
)

DIAGRAM_COLUMNS = "id,name,database_type,database_edition,created_at,updated_at"
CHILD_COLUMNS = "diagram_id,data"

MSG_NOT_CONFIGURED = f"Cloud sync is not configured. Set {ENV_URL} and {ENV_ANON_KEY}."
MSG_OTP_FAILED = "Could not send the magic link."
MSG_SYNC_FAILED = "Could not sync the diagram to the cloud."
