from __future__ import annotations

MAX_CHAT_BODY_LENGTH = 500
ANONYMOUS_DISPLAY_NAME = "Anonymous"
ANONYMOUS_KEY_PREFIX = "anonymous_"
