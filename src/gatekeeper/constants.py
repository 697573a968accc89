from __future__ import annotations

from typing import Final

# Discord limits
MAX_EMBED_DESCRIPTION: Final[int] = 4096
MAX_EMBED_TITLE: Final[int] = 256

# Review limits
MAX_REASON_LENGTH: Final[int] = 512
DEFAULT_HISTORY_LIMIT: Final[int] = 4
MAX_HISTORY_LIMIT: Final[int] = 50

# Side effects
FLOW_TIMEOUT_MS: Final[int] = 30_000
CACHE_TTL_SECONDS: Final[int] = 120

# Discord JSON error code for "Missing Permissions"
MISSING_PERMISSIONS_CODE: Final[int] = 50013

# Colors (hex values)
COLORS = {
    "default": 0x5865F2,
    "success": 0x57F287,
    "warning": 0xF1C40F,
    "error": 0xED4245,
    "info": 0x3498DB,
    "welcome": 0x22CCAA,
}

# Error messages
ERROR_MESSAGES = {
    "missing_permissions": "You don't have permission to use this command.",
    "not_found": "Application not found.",
    "guild_only": "This command can only be used in a server.",
    "database_error": "A database error occurred. Please try again later.",
}
