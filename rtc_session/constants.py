# =============================================================================
# RTC Session -- Defaults
# =============================================================================

# -- Attempt loop -------------------------------------------------------------

MAX_ATTEMPTS = 5
PER_ATTEMPT_TIMEOUT = 15.0  # seconds

# -- Backoff (seconds) --------------------------------------------------------

BACKOFF_BASE = 1.0
BACKOFF_MAX = 30.0
JITTER_WINDOW = 1.0

# -- Reconnection -------------------------------------------------------------

RECONNECT_GRACE_PERIOD = 2.0

# -- Endpoints / credentials --------------------------------------------------

ENDPOINT_COOLDOWN = 30.0
TOKEN_RENEW_MARGIN = 30.0

# -- Environment --------------------------------------------------------------

ENV_PREFIX = "RTC_SESSION_"

# -- WebSocket transport ------------------------------------------------------

HEARTBEAT_INTERVAL = 15.0
CLOSE_TIMEOUT = 5.0
MAX_MESSAGE_SIZE = 1_048_576  # 1 MB

WS_CLOSE_NORMAL = 1000
WS_CLOSE_GOING_AWAY = 1001
WS_CLOSE_ABNORMAL = 1006
WS_CLOSE_POLICY_VIOLATION = 1008
WS_CLOSE_SERVER_ERROR = 1011
WS_CLOSE_AUTH_FAILED = 4401
WS_CLOSE_AUTH_EXPIRED = 4403
WS_CLOSE_INVALID_CHANNEL = 4404

# -- Quality thresholds --------------------------------------------------------

QUALITY_EXCELLENT_LATENCY = 50.0   # ms
QUALITY_EXCELLENT_JITTER = 25.0
QUALITY_EXCELLENT_LOSS = 0.1       # %

QUALITY_GOOD_LATENCY = 150.0
QUALITY_GOOD_JITTER = 50.0
QUALITY_GOOD_LOSS = 1.0

QUALITY_FAIR_LATENCY = 300.0
QUALITY_FAIR_JITTER = 100.0
QUALITY_FAIR_LOSS = 3.0
