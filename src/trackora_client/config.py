"""
Client configuration, read once from the environment.
"""

import os
from pathlib import Path

# ============== BACKEND CONFIG ==============
BACKEND_URL = os.environ.get("BACKEND_URL", "http://localhost:8000")
REGISTRY_TIMEOUT_SECONDS = float(os.environ.get("REGISTRY_TIMEOUT_SECONDS", "10"))
# =============================================

# ============== SIGNUP RETRY CONFIG ==============
# A device record written during signup may not be readable yet on resume
SIGNUP_RETRY_ATTEMPTS = int(os.environ.get("SIGNUP_RETRY_ATTEMPTS", "3"))
SIGNUP_RETRY_DELAY_SECONDS = float(os.environ.get("SIGNUP_RETRY_DELAY_SECONDS", "0.5"))
SIGNUP_RETRY_BACKOFF = float(os.environ.get("SIGNUP_RETRY_BACKOFF", "1.0"))
# =================================================

# ============== LOCAL STORAGE CONFIG ==============
DEVICE_STORAGE_PATH = Path(
    os.environ.get("DEVICE_STORAGE_PATH", str(Path.home() / ".trackora" / "device.json"))
)
DEVICE_ID_KEY = "workflow_device_id"
HAS_VISITED_KEY = "workflow_has_visited"
DEVICE_ID_PREFIX = "dev-"
# ==================================================

# ============== ROUTES ==============
STAFF_HOME_ROUTE = "/"
MANAGER_HOME_ROUTE = "/(manager)"
LOGIN_ROUTE = "/auth/login"
SIGNUP_ROUTE = "/auth/signup"
# ====================================
