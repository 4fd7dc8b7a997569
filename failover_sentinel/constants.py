"""Shared constants for Failover Sentinel."""

SERVER_NAME = "Failover Sentinel"
SERVER_VERSION = "0.1.0"

# Network defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

# Management API mount point (kept out of the way of tenant paths)
MANAGEMENT_API_PREFIX = "/_failover/v1"

# Logging defaults
LOG_DIR = "logs"
DEFAULT_LOG_FILE = "unknown_failover.log"
DEFAULT_LOG_LEVEL = "INFO"

# Dispatch defaults
DEFAULT_TIMEOUT = 5.0  # seconds per outbound attempt
DEFAULT_RETRIES = 1
DEFAULT_UPSTREAM_SCHEME = "https"

# Health-adaptive ("smart") defaults
DEFAULT_SLOW_THRESHOLD_MS = 2000.0
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_CIRCUIT_RESET_SECONDS = 30.0
DEFAULT_MIN_WEIGHT = 10.0
DEFAULT_MAX_WEIGHT = 90.0

# Fast-failover down cache
DEFAULT_DOWN_TTL_SECONDS = 30.0

# Rolling average window for response times
LATENCY_WINDOW = 100

# Forwarding / observability headers
ORIGINAL_HOST_HEADER = "X-Original-Host"
SERVED_BY_HEADER = "X-Served-By"
LB_MODE_HEADER = "X-LB-Mode"
