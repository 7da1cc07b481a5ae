"""Project-wide settings and defaults."""

import os
from pathlib import Path

# Base paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.environ.get("ACCOUNT_DATA_DIR", str(PROJECT_ROOT / "data")))
ACCOUNTS_PATH = DATA_DIR / "accounts.json"
AUDIT_LOG_PATH = DATA_DIR / "audit_log.jsonl"
LINE_USERS_PATH = DATA_DIR / "line_users.json"

# LINE Messaging API
LINE_CHANNEL_ACCESS_TOKEN = os.environ.get("LINE_CHANNEL_ACCESS_TOKEN", "")
LINE_CHANNEL_SECRET = os.environ.get("LINE_CHANNEL_SECRET", "")
LINE_API_BASE = os.environ.get("LINE_API_BASE", "https://api.line.me")
LINE_TIMEOUT_SECONDS = int(os.environ.get("LINE_TIMEOUT_SECONDS", "30"))
LINE_DRY_RUN = os.environ.get("LINE_DRY_RUN", "false").lower() == "true"

# Account lifecycle
NEAR_EXPIRY_DAYS = int(os.environ.get("NEAR_EXPIRY_DAYS", "3"))
LINK_MIN_DIGITS = int(os.environ.get("LINK_MIN_DIGITS", "5"))

# Thai locale dates are written in the Buddhist Era
BUDDHIST_ERA_OFFSET = 543
BUDDHIST_YEAR_THRESHOLD = 2500

# Scheduler
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "true").lower() == "true"
RECONCILE_INTERVAL_MINUTES = int(os.environ.get("RECONCILE_INTERVAL_MINUTES", "5"))

# Web
ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY", "")
PORT = int(os.environ.get("PORT", "4000"))

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
