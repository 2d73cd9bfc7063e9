"""Internal constants shared across the library."""

USER_AGENT = "pyripple"

#: Write placeholder that the store replaces with its own clock (epoch ms).
SERVER_TIMESTAMP: dict[str, str] = {".sv": "timestamp"}

# Characters the realtime database refuses inside a key.
FORBIDDEN_KEY_CHARS: frozenset[str] = frozenset(".#$[]")

# ------------------------------------------------------------------
# Forum rules carried over from the web application
# ------------------------------------------------------------------

SUPPORTED_LANGUAGES: tuple[str, ...] = ("python", "java", "cpp", "c", "javascript", "typescript")

LEADERBOARD_WINDOW_MS = 1000 * 60 * 60 * 24 * 30
LEADERBOARD_SIZE = 20
RECENT_SOLUTIONS_LIMIT = 10
