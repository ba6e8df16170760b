import os

from dotenv import find_dotenv, load_dotenv

from receipt_tracker.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "STORAGE_BACKEND",
    "FIREBASE_API_KEY",
    "FIREBASE_PROJECT_ID",
    "RECEIPTS_COLLECTION",
    "WRITE_ACK_TIMEOUT",
    "SNAPSHOT_POLL_INTERVAL",
    "SESSION_SECRET",
)


def _config_dir_file(filename: str) -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    return os.path.join(config_dir, filename) if config_dir else None


def _find_config_file() -> str | None:
    explicit = _config_dir_file(CONFIG_FILENAME)
    if explicit:
        return explicit
    for candidate in (os.path.join("config", CONFIG_FILENAME), CONFIG_FILENAME):
        if os.path.exists(candidate):
            return os.path.abspath(candidate)
    return None


def parse_config_line(line: str) -> tuple[str, str] | None:
    """Split one ``KEY: value`` line, dropping quotes and trailing ``#`` comments."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or ":" not in stripped:
        return None
    key, _, rest = stripped.partition(":")
    rest = rest.strip()
    quote = rest[:1]
    if quote in {'"', "'"} and quote in rest[1:]:
        value = rest[1:rest.index(quote, 1)]
    else:
        value = rest.split(" #", 1)[0].strip()
    key = key.strip()
    if not key or not value:
        return None
    return key, value


def read_config_file(path: str | None) -> dict[str, str]:
    if not path or not os.path.exists(path):
        return {}
    with open(path, encoding="utf-8") as handle:
        return dict(entry for entry in map(parse_config_line, handle) if entry)


def load_environment() -> None:
    """Real environment wins over .env, which wins over config.yaml."""
    dotenv_path = _config_dir_file(".env")
    if not dotenv_path or not os.path.exists(dotenv_path):
        dotenv_path = find_dotenv(usecwd=True) or None
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    file_values = read_config_file(_find_config_file())
    for key in _CONFIG_KEYS:
        if key in file_values:
            os.environ.setdefault(key, file_values[key])


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)


def _get_env_number(name, default, min_value, cast):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s=%s below minimum %s, using default %s.", name, raw, min_value, default)
        return default
    return value


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    return _get_env_number(name, default, min_value, int)


def get_env_float(name: str, default: float = 0.0, min_value: float | None = None) -> float:
    return _get_env_number(name, default, min_value, float)


def get_storage_backend() -> str:
    backend = (os.getenv("STORAGE_BACKEND") or STORAGE_LOCAL).strip().lower()
    if backend not in {STORAGE_LOCAL, STORAGE_REMOTE}:
        logger.warning("[ENV] Unknown STORAGE_BACKEND='%s', using '%s'.", backend, STORAGE_LOCAL)
        return STORAGE_LOCAL
    return backend


_SENSITIVE_ENV_KEYS = (
    "KEY",
    "TOKEN",
    "SECRET",
    "PASSWORD",
)

_ENV_KEYS_TO_LOG = (
    "LOG_LEVEL",
    "DATA_DIR",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "STORAGE_BACKEND",
    "FIREBASE_API_KEY",
    "FIREBASE_PROJECT_ID",
    "RECEIPTS_COLLECTION",
    "WRITE_ACK_TIMEOUT",
    "SNAPSHOT_POLL_INTERVAL",
    "SESSION_SECRET",
)


def _should_mask_env_value(name: str, value: str) -> bool:
    upper_name = name.upper()
    if any(marker in upper_name for marker in _SENSITIVE_ENV_KEYS):
        return True
    return value.startswith(("sk-", "AIza"))


def mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not _should_mask_env_value(name, sanitized):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _ENV_KEYS_TO_LOG:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


STORAGE_LOCAL = "local"
STORAGE_REMOTE = "remote"

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_RECEIPTS_COLLECTION = "receipts"
DEFAULT_WRITE_ACK_TIMEOUT = 10.0
DEFAULT_SNAPSHOT_POLL_INTERVAL = 2.0
STORAGE_FILENAME = "receipts.json"

# SSE headers to reduce proxy buffering and keep connections alive.
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)

WRITE_ACK_TIMEOUT = get_env_float("WRITE_ACK_TIMEOUT", DEFAULT_WRITE_ACK_TIMEOUT, min_value=0.0)
SNAPSHOT_POLL_INTERVAL = get_env_float(
    "SNAPSHOT_POLL_INTERVAL",
    DEFAULT_SNAPSHOT_POLL_INTERVAL,
    min_value=0.1,
)
