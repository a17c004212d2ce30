import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


_DEV_SECRET = "dev-secret-eprocurement"


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "eprocurement.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", _DEV_SECRET)
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    STORAGE_BUCKET = os.environ.get("STORAGE_BUCKET")
    STORAGE_ENDPOINT_URL = os.environ.get("STORAGE_ENDPOINT_URL")
    STORAGE_REGION = os.environ.get("STORAGE_REGION", "us-east-1")
    STORAGE_ACCESS_KEY_ID = os.environ.get("STORAGE_ACCESS_KEY_ID")
    STORAGE_SECRET_ACCESS_KEY = os.environ.get("STORAGE_SECRET_ACCESS_KEY")
    STORAGE_KEY_PREFIX = os.environ.get("STORAGE_KEY_PREFIX", "")
    ATTACHMENT_MAX_BYTES = _int_env("ATTACHMENT_MAX_BYTES", 10 * 1024 * 1024)
    ATTACHMENT_ALLOWED_MIME_TYPES = os.environ.get("ATTACHMENT_ALLOWED_MIME_TYPES", "application/pdf")

    DEFAULT_MAX_ROUNDS = _int_env("DEFAULT_MAX_ROUNDS", 2)
    MAX_ROUNDS_LIMIT = _int_env("MAX_ROUNDS_LIMIT", 5)
    ENFORCE_PRICE_REDUCTION = _bool_env("ENFORCE_PRICE_REDUCTION", True)
    DASHBOARD_POLL_INTERVAL_SECONDS = _int_env("DASHBOARD_POLL_INTERVAL_SECONDS", 30)

    AI_ANALYSIS_ENABLED = _bool_env("AI_ANALYSIS_ENABLED", True)
    AI_BASE_URL = os.environ.get("AI_BASE_URL", "https://api.groq.com/openai/v1")
    AI_API_KEY = os.environ.get("AI_API_KEY") or os.environ.get("GROQ_API_KEY")
    AI_MODEL = os.environ.get("AI_MODEL", "llama-3.3-70b-versatile")
    AI_TEMPERATURE = _float_env("AI_TEMPERATURE", 0.7)
    AI_MAX_TOKENS = _int_env("AI_MAX_TOKENS", 2000)
    AI_TIMEOUT_SECONDS = _int_env("AI_TIMEOUT_SECONDS", 30)
    AI_RETRY_ATTEMPTS = _int_env("AI_RETRY_ATTEMPTS", 2)
    AI_RETRY_BACKOFF_MS = _int_env("AI_RETRY_BACKOFF_MS", 300)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL no definida para el entorno de produccion.")
        if env == "production" and self.SECRET_KEY == _DEV_SECRET:
            raise RuntimeError("SECRET_KEY insegura para produccion.")
