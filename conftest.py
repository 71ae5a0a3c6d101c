import os
import tempfile

# Load .env.test for local overrides before any settings are read
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

# The app engine is built at import time; point it at a throwaway SQLite file.
# Tests bind their own per-test engine through dependency overrides.
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///"
    + os.path.join(tempfile.gettempdir(), "market_service_app.db"),
)
os.environ.setdefault("ENVIRONMENT", "test")

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with new env vars
get_settings.cache_clear()
