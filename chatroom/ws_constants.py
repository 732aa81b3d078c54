"""WebSocket protocol constants: event types and error codes.

Pure data module -- no imports, no logic. Safe to import from any chatroom
module without risk of circular dependencies.
"""

# ── Client -> Server event types ──────────────────────────────────────

MSG_JOIN = "join"
MSG_TEXT_MESSAGE = "text-message"
MSG_IMAGE_MESSAGE = "image-message"
MSG_TYPING = "typing"
MSG_STOP_TYPING = "stop-typing"

# ── Server -> Client event types ──────────────────────────────────────

MSG_WELCOME = "welcome"
MSG_MESSAGE = "message"
MSG_USERS = "users"
MSG_USER_TYPING = "user-typing"
MSG_USER_STOP_TYPING = "user-stop-typing"
MSG_ERROR = "error"

# ── Error codes (machine-readable, included in MSG_ERROR messages) ────

ERR_INVALID_CONTENT = "INVALID_CONTENT"
ERR_MESSAGE_NOT_SAVED = "MESSAGE_NOT_SAVED"
