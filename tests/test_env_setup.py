import os
import tempfile

# ============================================================================
# Test Environment Configuration
# ============================================================================
# This file MUST be imported before any taskflow modules so that settings
# pick up the test database and in-process backends.

os.environ["LEASE_BACKEND"] = "memory"
os.environ["PUSH_BACKEND"] = "none"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DEFAULT_TIMEZONE"] = "UTC"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ.pop("API_KEY", None)
os.environ.pop("DEFAULT_CHANNEL_ID", None)

# Ensure project root is in path BEFORE taskflow imports
import sys

current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.abspath(os.path.join(current_dir, ".."))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# Use file-based sqlite so separate sessions see the same data
TEST_DB_DIR = tempfile.mkdtemp()
TEST_DB_PATH = os.path.join(TEST_DB_DIR, "test.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"

# Export for conftest.py
__all__ = ["TEST_DB_DIR", "TEST_DB_PATH"]
