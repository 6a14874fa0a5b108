"""Shared configuration defaults for push broadcasting."""
from __future__ import annotations

import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = os.getenv("DATA_DIR", BASE_DIR)

EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
EXPO_ACCESS_TOKEN = os.getenv("EXPO_ACCESS_TOKEN")
EXPO_MAX_BATCH_SIZE = int(os.getenv("EXPO_MAX_BATCH_SIZE", "100"))
EXPO_REQUEST_TIMEOUT = float(os.getenv("EXPO_REQUEST_TIMEOUT", "10"))

DATABASE_URL = (
    os.getenv("DATABASE_URL")
    or os.getenv("SQLALCHEMY_DATABASE_URI")
    or f"sqlite:///{os.path.join(DATA_DIR, 'push_tokens.db')}"
)

ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN")

DEFAULT_SOUND = "default"
DEFAULT_PRIORITY = "high"
DEFAULT_CHANNEL_ID = "default"  # Android notification channel

VALID_PLATFORMS = {"android", "ios"}
