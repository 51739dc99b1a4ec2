import os


def _get_bool_env(name: str, default: bool) -> bool:
	raw = os.environ.get(name)
	if raw is None:
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
	raw = os.environ.get(name)
	if raw is None:
		return default
	try:
		return int(raw)
	except ValueError:
		return default


def _get_float_env(name: str, default: float) -> float:
	raw = os.environ.get(name)
	if raw is None:
		return default
	try:
		return float(raw)
	except ValueError:
		return default


# Session tokens (shared with the Node API that issues them)
APP_JWT_SECRET = os.environ.get("APP_JWT_SECRET") or os.environ.get("JWT_SECRET")
APP_JWT_ALGORITHM = os.environ.get("APP_JWT_ALGORITHM", "HS256")
APP_JWT_ISSUER = os.environ.get("APP_JWT_ISSUER", "finvera-portal")
APP_JWT_AUDIENCE = os.environ.get("APP_JWT_AUDIENCE", "finvera-portal")

# Cookie names written by the frontend auth provider
TOKEN_COOKIE_NAME = os.environ.get("TOKEN_COOKIE_NAME", "token")
USER_COOKIE_NAME = os.environ.get("USER_COOKIE_NAME", "user")

# Subscription API
SUBSCRIPTION_API_URL = os.environ.get("SUBSCRIPTION_API_URL", "http://localhost:5000/api")
SUBSCRIPTION_API_PATH = os.environ.get("SUBSCRIPTION_API_PATH", "/subscriptions/current")
SUBSCRIPTION_API_TIMEOUT_SECONDS = _get_float_env("SUBSCRIPTION_API_TIMEOUT_SECONDS", 5.0)

# Decision store
DECISION_TTL_SECONDS = _get_int_env("DECISION_TTL_SECONDS", 60 * 30)
DECISION_STORE_NAMESPACE = os.environ.get("DECISION_STORE_NAMESPACE")
DECISION_STORE_REDIS_URL = os.environ.get("DECISION_STORE_REDIS_URL")

# Rate limits
GUARD_DECISION_RATE_LIMIT = os.environ.get("GUARD_DECISION_RATE_LIMIT", "120/minute")
ROLE_LOOKUP_RATE_LIMIT = os.environ.get("ROLE_LOOKUP_RATE_LIMIT", "60/minute")

# CORS
CORS_ALLOWED_ORIGINS = tuple(
	part.strip()
	for part in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:3001").split(",")
	if part.strip()
)

# Observability configuration
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
ENABLE_CLOUD_LOGGING = _get_bool_env("ENABLE_CLOUD_LOGGING", False)
CLOUD_LOGGING_LOG_NAME = os.environ.get("CLOUD_LOGGING_LOG_NAME", "portal-guard-service")
CLOUD_LOGGING_EXCLUDED_LOGGERS = tuple(
	part.strip()
	for part in os.environ.get("CLOUD_LOGGING_EXCLUDED_LOGGERS", "httpx").split(",")
	if part.strip()
)

ENABLE_PROMETHEUS_METRICS = _get_bool_env("ENABLE_PROMETHEUS_METRICS", False)
PROMETHEUS_METRICS_NAMESPACE = os.environ.get("PROMETHEUS_METRICS_NAMESPACE", "portal")
PROMETHEUS_METRICS_SUBSYSTEM = os.environ.get("PROMETHEUS_METRICS_SUBSYSTEM", "guard")
