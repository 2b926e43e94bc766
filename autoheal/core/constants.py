"""
Constants
Centralised storage for circuit states, limiter strategies and checkpoint labels.
"""
CIRCUIT_CLOSED = "closed"
CIRCUIT_OPEN = "open"
CIRCUIT_HALF_OPEN = "half-open"

STRATEGY_QUEUE = "queue"
STRATEGY_FAIL = "fail"
STRATEGY_DELAY = "delay"

MINUTE_WINDOW_SECONDS = 60.0
DAY_WINDOW_SECONDS = 86400.0
MAX_DAY_WAIT_SECONDS = 60.0

COMMIT_PREFIX = "self-heal:"
OUTPUT_TAIL_CHARS = 2000
ARROW = "→"
