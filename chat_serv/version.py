VERSION = "1.0.0"

API_VERSION = "v1"

DB_SCHEMA_VERSION = 1
