"""Engine constants and defaults.

Values here are the fallbacks used when neither the YAML config nor the
environment overrides them (see :mod:`asyncrepo.application.settings`).
"""

import os

APP_NAME = "asyncrepo"
CONFIG_FILE_NAME = "config.yaml"
LOG_FILE_NAME = "asyncrepo.log"

# Dispatcher
MAX_READ_WORKERS_CAP = 8
DEFAULT_READ_WORKERS = max(1, min(os.cpu_count() or 1, MAX_READ_WORKERS_CAP))
DEFAULT_READ_QUEUE_SIZE = 64
DEFAULT_WRITE_QUEUE_SIZE = 16

# Filesystem change coalescing window
DEFAULT_DEBOUNCE_MS = 200

# Remote progress notifications per second
DEFAULT_PROGRESS_MAX_RATE_HZ = 10.0

# 0 = unbounded
DEFAULT_CACHE_MAX_ENTRIES_PER_KIND = 256

# Commit subject truncation for log payloads
DEFAULT_LOG_MESSAGE_LIMIT = 50
DEFAULT_LOG_LIMIT = 100

# Headless loop refresh period (tick-based update)
DEFAULT_TICK_INTERVAL_S = 5.0

# Backend calls slower than this are logged at WARNING
SLOW_BACKEND_CALL_MS = 1000.0
