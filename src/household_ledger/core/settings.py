import os
import re
from collections.abc import Callable
from typing import TypeVar

from dotenv import find_dotenv, load_dotenv

from household_ledger.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T", int, float)

CONFIG_FILENAME = "config.yaml"

DEFAULT_SYNC_PAGE_SIZE = 500
DEFAULT_CLASSIFY_WINDOW = 500
DEFAULT_CLASSIFY_BATCH_SIZE = 50
DEFAULT_MEMORY_THRESHOLD = 90.0
DEFAULT_EXTERNAL_TIMEOUT = 30.0
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_VISION_MODEL = "gpt-4o"

# Every key the service reads; the order is also the startup log order.
LEDGER_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "DATABASE_URL",
    "PLAID_CLIENT_ID",
    "PLAID_SECRET",
    "PLAID_ENV",
    "SYNC_PAGE_SIZE",
    "PROVIDER_CATEGORY_MAP",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_VISION_MODEL",
    "OPENAI_BASE_URL",
    "CLASSIFY_WINDOW",
    "CLASSIFY_BATCH_SIZE",
    "MEMORY_THRESHOLD",
    "EXTERNAL_TIMEOUT",
)

_CONFIG_FILE_PATH: str | None = None
_EXTERNAL_ENV_KEYS: set[str] = set()

_LINE_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*:(.*)$")
_DOUBLE_QUOTED_RE = re.compile(r'^"((?:[^"\\]|\\.)*)"')
_SINGLE_QUOTED_RE = re.compile(r"^'((?:[^'\\]|\\.)*)'")
_ESCAPE_RE = re.compile(r"\\(.)")

_SECRET_NAME_RE = re.compile(r"KEY|TOKEN|SECRET|PASS|AUTH|BEARER|PRIVATE")
_SECRET_VALUE_PREFIXES = ("sk-", "rk-", "access-sandbox-", "access-development-", "access-production-", "Bearer ")
_URL_WITH_CREDENTIALS_RE = re.compile(r"^[a-z][a-z0-9+.-]*://[^/@\s]+@", re.IGNORECASE)


def _parse_value(raw: str) -> str:
    """One ``KEY: value`` right-hand side: quoted, or bare with an optional `` # comment``."""
    raw = raw.strip()
    for pattern in (_DOUBLE_QUOTED_RE, _SINGLE_QUOTED_RE):
        match = pattern.match(raw)
        if match:
            return _ESCAPE_RE.sub(r"\1", match.group(1))
    if raw.startswith("#"):
        return ""
    return re.split(r"\s+#", raw, maxsplit=1)[0].strip()


def read_config_file(path: str | None) -> dict[str, str]:
    """Flat ``KEY: value`` lines; commented-out and empty keys are ignored."""
    if not path or not os.path.exists(path):
        return {}
    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            match = _LINE_RE.match(line)
            if match is None:
                continue
            value = _parse_value(match.group(2))
            if value:
                values[match.group(1)] = value
    return values


def _config_candidates() -> list[str]:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return [os.path.join(config_dir, CONFIG_FILENAME)]
    cwd = os.getcwd()
    return [os.path.join(cwd, "config", CONFIG_FILENAME), os.path.join(cwd, CONFIG_FILENAME)]


def _dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir and os.path.exists(os.path.join(config_dir, ".env")):
        return os.path.join(config_dir, ".env")
    return find_dotenv(usecwd=True) or None


def load_environment() -> None:
    """Layer ``.env`` and ``config.yaml`` under the real environment.

    Keys present in the environment after ``.env`` loading are remembered as
    external; the config file never overrides them and the config API treats
    them as locked.
    """
    global _CONFIG_FILE_PATH, _EXTERNAL_ENV_KEYS

    dotenv_path = _dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)
    _EXTERNAL_ENV_KEYS = set(os.environ)

    candidates = _config_candidates()
    _CONFIG_FILE_PATH = next((path for path in candidates if os.path.exists(path)), candidates[-1])
    file_values = read_config_file(_CONFIG_FILE_PATH)
    for key in LEDGER_KEYS:
        if key in file_values:
            os.environ.setdefault(key, file_values[key])


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def is_env_override(name: str) -> bool:
    return name in _EXTERNAL_ENV_KEYS


def _env_number(name: str, default: T, cast: Callable[[str], T], min_value: T | None = None) -> T:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s='%s' below minimum %s, using default %s.", name, raw, min_value, default)
        return default
    return value


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    return _env_number(name, default, int, min_value)


def get_env_float(name: str, default: float = 0.0, min_value: float | None = None) -> float:
    return _env_number(name, default, float, min_value)


def sync_page_size() -> int:
    return get_env_int("SYNC_PAGE_SIZE", DEFAULT_SYNC_PAGE_SIZE, min_value=1)


def classify_window() -> int:
    return get_env_int("CLASSIFY_WINDOW", DEFAULT_CLASSIFY_WINDOW, min_value=1)


def classify_batch_size() -> int:
    return get_env_int("CLASSIFY_BATCH_SIZE", DEFAULT_CLASSIFY_BATCH_SIZE, min_value=1)


def external_timeout() -> float:
    return get_env_float("EXTERNAL_TIMEOUT", DEFAULT_EXTERNAL_TIMEOUT, min_value=1.0)


def get_database_url() -> str:
    return os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(os.getenv('DATA_DIR', '.'), 'ledger.db')}"


def mask_value(name: str, value: str) -> str:
    value = value.replace("\r", "\\r").replace("\n", "\\n")
    secret = (
        _SECRET_NAME_RE.search(name.upper()) is not None
        or value.startswith(_SECRET_VALUE_PREFIXES)
        or _URL_WITH_CREDENTIALS_RE.match(value) is not None
    )
    if not secret:
        return value
    return "****" if len(value) <= 4 else f"{value[:2]}...{value[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Effective configuration (secrets masked):")
    for key in LEDGER_KEYS:
        raw = os.getenv(key)
        logger.info("[ENV] %s=%s", key, "<unset>" if raw is None else mask_value(key, raw))


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")

for _directory in (DATA_DIR, LOG_DIR, os.getenv("CONFIG_DIR")):
    if _directory and _directory not in {".", "./"}:
        os.makedirs(_directory, exist_ok=True)
