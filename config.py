import os

# ===========================
# SETTINGS (environment, overlaid by Streamlit secrets in app.py)
# ===========================
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# "supabase" for the hosted store, "memory" for a local demo session
STORE_BACKEND = os.getenv("STORE_BACKEND", "supabase")
DOCUMENTS_TABLE = os.getenv("DOCUMENTS_TABLE", "documents")
APP_ID = os.getenv("APP_ID", "carpool-app")
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "3"))

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def get_setting(name: str, default=None, secrets=None):
    """Return a setting from secrets first, then the environment."""
    if secrets:
        value = secrets.get(name)
        if value not in (None, ""):
            return value
    return os.getenv(name, default)
