import os

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

DATABASE_URL = os.environ.get("FORGE_DATABASE_URL", "sqlite:////data/forge.db")
STORAGE_KEY = "discipline-forge-state"
LEGACY_LOG_KEY = "discipline-forge-logs"

# ---------------------------------------------------------------------------
# Access gate
# ---------------------------------------------------------------------------

ACCESS_CODE_ENV = "FORGE_ACCESS_CODE"
JWT_SECRET = os.environ.get("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_HOURS = int(os.environ.get("JWT_EXPIRES_HOURS", "720"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
