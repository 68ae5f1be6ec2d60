import os

# Defaults for the scanner. Each value can be overridden through the
# environment, e.g. PORTPROBE_CONCURRENCY=500 python main.py 10.0.0.0/24 -


def _env_number(name, default, cast):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} has an invalid value: {raw!r}") from None


# Per-probe connection timeout in milliseconds
DEFAULT_TIMEOUT_MS = _env_number("PORTPROBE_TIMEOUT_MS", 500, int)

# Number of simultaneous connection attempts
DEFAULT_CONCURRENCY = _env_number("PORTPROBE_CONCURRENCY", 100, int)

# Upper bound for a single reverse DNS lookup, in seconds
RESOLVE_TIMEOUT = _env_number("PORTPROBE_RESOLVE_TIMEOUT", 2.0, float)

# Reverse DNS lookups allowed to run at the same time
RESOLVE_CONCURRENCY = max(1, _env_number("PORTPROBE_RESOLVE_CONCURRENCY", 16, int))

# Target queue holds QUEUE_FACTOR x workers pending (host, port) pairs
QUEUE_FACTOR = max(1, _env_number("PORTPROBE_QUEUE_FACTOR", 2, int))

LOG_LEVEL = os.environ.get("PORTPROBE_LOG_LEVEL", "WARNING").upper()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
