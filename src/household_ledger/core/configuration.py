import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from household_ledger.core import settings
from household_ledger.integration.vision import ReceiptExtractor
from household_ledger.logger import get_logger

logger = get_logger(__name__)

Kind = Literal["string", "int", "float"]


@dataclass(frozen=True)
class ConfigField:
    key: str
    label: str
    description: str
    placeholder: str
    kind: Kind = "string"
    sensitive: bool = False
    choices: tuple[str, ...] | None = None
    minimum: float | None = None
    maximum: float | None = None
    restart_required: bool = False

    def as_view(self, value: str, locked: bool) -> dict[str, Any]:
        shown = "" if self.sensitive else value
        if self.choices and shown:
            shown = shown.upper()
        return {
            "key": self.key,
            "label": self.label,
            "description": self.description,
            "placeholder": "Set via environment variable" if locked else self.placeholder,
            "value": shown,
            "is_set": bool(value),
            "options": list(self.choices) if self.choices else None,
            "locked": locked,
            "sensitive": self.sensitive,
            "restart_required": self.restart_required,
        }


SECTIONS: dict[str, tuple[ConfigField, ...]] = {
    "Bank Sync": (
        ConfigField("PLAID_CLIENT_ID", "Plaid Client ID", "Client id from the Plaid dashboard.", "5f..."),
        ConfigField(
            "PLAID_SECRET", "Plaid Secret", "Secret for the selected Plaid environment.", "...", sensitive=True
        ),
        ConfigField(
            "PLAID_ENV",
            "Plaid Environment",
            "Which Plaid environment to talk to.",
            "sandbox",
            choices=("SANDBOX", "DEVELOPMENT", "PRODUCTION"),
        ),
        ConfigField(
            "SYNC_PAGE_SIZE",
            "Sync Page Size",
            "Transactions requested per sync page (1-500).",
            str(settings.DEFAULT_SYNC_PAGE_SIZE),
            kind="int",
            minimum=1,
            maximum=500,
        ),
        ConfigField(
            "PROVIDER_CATEGORY_MAP",
            "Provider Category Map",
            "Path to a JSON file mapping provider categories to household categories.",
            "/app/config/provider_categories.json",
            restart_required=True,
        ),
    ),
    "OpenAI": (
        ConfigField(
            "OPENAI_API_KEY",
            "OpenAI API Key",
            "API key for transaction classification and receipt extraction.",
            "sk-...",
            sensitive=True,
        ),
        ConfigField(
            "OPENAI_MODEL", "Classification Model", "Model used for batch classification.",
            settings.DEFAULT_OPENAI_MODEL,
        ),
        ConfigField(
            "OPENAI_VISION_MODEL", "Receipt Model", "Vision-capable model used for receipt extraction.",
            settings.DEFAULT_OPENAI_VISION_MODEL,
        ),
        ConfigField(
            "OPENAI_BASE_URL", "OpenAI Base URL", "Base URL of an OpenAI-compatible endpoint.",
            "http://localhost:11434/v1",
        ),
    ),
    "Classification": (
        ConfigField(
            "CLASSIFY_WINDOW",
            "Classification Window",
            "Most recent unclassified transactions considered per run.",
            str(settings.DEFAULT_CLASSIFY_WINDOW),
            kind="int",
            minimum=1,
        ),
        ConfigField(
            "CLASSIFY_BATCH_SIZE",
            "Classification Batch Size",
            "Transactions sent per classification request.",
            str(settings.DEFAULT_CLASSIFY_BATCH_SIZE),
            kind="int",
            minimum=1,
        ),
        ConfigField(
            "MEMORY_THRESHOLD",
            "Memory Match Threshold",
            "Minimum fuzzy score (0-100) for a remembered description to be reused.",
            "90",
            kind="float",
            minimum=0,
            maximum=100,
        ),
        ConfigField(
            "EXTERNAL_TIMEOUT",
            "External Timeout",
            "Seconds to wait for Plaid or OpenAI before giving up.",
            "30",
            kind="float",
            minimum=1,
        ),
    ),
    "Storage": (
        ConfigField(
            "DATA_DIR", "Data Directory", "Directory for the database, receipts and classification memory.",
            "/app/data", restart_required=True,
        ),
        ConfigField(
            "DATABASE_URL",
            "Database URL",
            "SQLAlchemy URL; defaults to a SQLite file in the data directory.",
            "sqlite:////app/data/ledger.db",
            sensitive=True,
            restart_required=True,
        ),
        ConfigField(
            "LOG_DIR", "Log Directory", "Directory for application logs (app.log).", "/app/logs",
            restart_required=True,
        ),
        ConfigField(
            "LOG_LEVEL",
            "Log Level",
            "Logging verbosity for the application.",
            "INFO",
            choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
            restart_required=True,
        ),
    ),
}

FIELDS: dict[str, ConfigField] = {field.key: field for fields in SECTIONS.values() for field in fields}

_NUMBER_PARSERS: dict[str, tuple[Callable[[str], float], str]] = {
    "int": (int, "Must be a whole number."),
    "float": (float, "Must be a number."),
}
_KEY_LINE_RE = re.compile(r"^\s*#?\s*([A-Za-z_][A-Za-z0-9_]*)\s*:")
_NEEDS_QUOTES_RE = re.compile(r"""^\s|\s$|[:#"']""")


def get_config_path() -> str:
    return settings.get_config_path() or os.path.join(os.getcwd(), "config", settings.CONFIG_FILENAME)


def _template_lines() -> list[str]:
    lines = [
        "# Household Ledger configuration",
        "# Environment variables take precedence over anything set here.",
    ]
    for section, fields in SECTIONS.items():
        lines += ["", f"# {section}"]
        for field in fields:
            lines += [f"# {field.description}", f"# {field.key}:"]
    return lines


def build_config_view() -> dict[str, Any]:
    """Editable settings grouped by section; secrets are never echoed back."""
    path = get_config_path()
    stored = settings.read_config_file(path)
    sections = []
    locked_count = 0
    for name, fields in SECTIONS.items():
        views = []
        for field in fields:
            locked = settings.is_env_override(field.key)
            locked_count += locked
            value = os.getenv(field.key, "") if locked else stored.get(field.key, "")
            views.append(field.as_view(value, locked))
        sections.append({"name": name, "fields": views})
    return {"config_path": path, "sections": sections, "env_override_count": locked_count}


def _validate_value(field: ConfigField, raw_value: str) -> tuple[str, str | None]:
    """Returns (cleaned value, error); an empty value clears the setting."""
    value = raw_value.strip()
    if not value:
        return "", None
    if "\n" in value or "\r" in value:
        return value, "Value must be a single line."

    if field.choices:
        if value.upper() not in field.choices:
            return value, f"Must be one of: {', '.join(field.choices)}."
        # Plaid's client takes lowercase environment names
        return (value.lower() if field.key == "PLAID_ENV" else value.upper()), None

    if field.kind in _NUMBER_PARSERS:
        parse, message = _NUMBER_PARSERS[field.kind]
        try:
            number = parse(value)
        except ValueError:
            return value, message
        if field.minimum is not None and number < field.minimum:
            return value, f"Must be at least {field.minimum:g}."
        if field.maximum is not None and number > field.maximum:
            return value, f"Must be at most {field.maximum:g}."
        return str(number), None

    return value, None


def apply_config_updates(values: dict[str, Any]) -> tuple[dict[str, str], dict[str, str]]:
    """Validate and persist; returns (errors, applied updates). Nothing is written on any error."""
    errors: dict[str, str] = {}
    updates: dict[str, str] = {}
    for key, raw_value in values.items():
        field = FIELDS.get(key)
        if field is None:
            errors[key] = "Unknown setting."
        elif settings.is_env_override(key):
            errors[key] = "Set via environment variable."
        else:
            cleaned, error = _validate_value(field, "" if raw_value is None else str(raw_value))
            if error:
                errors[key] = error
            else:
                updates[key] = cleaned
    if errors:
        return errors, {}

    _write_config_file(updates)
    for key, value in updates.items():
        if value:
            os.environ[key] = value
        else:
            os.environ.pop(key, None)
    logger.info("[CONFIG] Saved %s setting(s) to %s.", len(updates), get_config_path())
    return {}, updates


def _format_yaml_value(value: str) -> str:
    if not _NEEDS_QUOTES_RE.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _write_config_file(updates: dict[str, str]) -> None:
    """Rewrite each key's first line (commented or not) in place, appending unknown keys."""
    path = get_config_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    if os.path.exists(path):
        with open(path, encoding="utf-8") as handle:
            lines = handle.read().splitlines()
    else:
        lines = _template_lines()

    pending = dict(updates)
    for index, line in enumerate(lines):
        match = _KEY_LINE_RE.match(line)
        if match and match.group(1) in pending:
            key = match.group(1)
            value = pending.pop(key)
            lines[index] = f"{key}: {_format_yaml_value(value)}" if value else f"# {key}:"
    lines += [f"{key}: {_format_yaml_value(value)}" for key, value in pending.items() if value]

    with open(path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines).rstrip("\n") + "\n")


def _refresh_plaid(plaid: Any) -> None:
    plaid.refresh()
    logger.info("[CONFIG] Plaid client refreshed (env=%s).", plaid.environment)


def _refresh_llm(categorizer: Any) -> None:
    categorizer.refresh_llm()


def _refresh_receipts(receipts: Any) -> None:
    receipts.extractor = ReceiptExtractor()
    logger.info("[CONFIG] Receipt extractor refreshed (model=%s).", receipts.extractor.model)


def _refresh_sync(sync: Any) -> None:
    sync.page_size = settings.sync_page_size()
    logger.info("[CONFIG] Sync page size set to %s.", sync.page_size)


def _refresh_classification(classification: Any) -> None:
    classification.window = settings.classify_window()
    classification.batch_size = settings.classify_batch_size()
    logger.info(
        "[CONFIG] Classification window %s, batch size %s.",
        classification.window,
        classification.batch_size,
    )


def _refresh_memory_threshold(categorizer: Any) -> None:
    categorizer.set_memory_threshold(
        settings.get_env_float("MEMORY_THRESHOLD", settings.DEFAULT_MEMORY_THRESHOLD)
    )
    logger.info("[CONFIG] Memory threshold set to %.1f.", categorizer.threshold)


# (keys that trigger it, app.state attribute, refresher)
_RUNTIME_REFRESHERS: tuple[tuple[frozenset[str], str, Callable[[Any], None]], ...] = (
    (frozenset({"PLAID_CLIENT_ID", "PLAID_SECRET", "PLAID_ENV", "EXTERNAL_TIMEOUT"}), "plaid", _refresh_plaid),
    (frozenset({"OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_BASE_URL", "EXTERNAL_TIMEOUT"}), "categorizer", _refresh_llm),
    (
        frozenset({"OPENAI_API_KEY", "OPENAI_VISION_MODEL", "OPENAI_BASE_URL", "EXTERNAL_TIMEOUT"}),
        "receipts",
        _refresh_receipts,
    ),
    (frozenset({"SYNC_PAGE_SIZE"}), "sync", _refresh_sync),
    (frozenset({"CLASSIFY_WINDOW", "CLASSIFY_BATCH_SIZE"}), "classification", _refresh_classification),
    (frozenset({"MEMORY_THRESHOLD"}), "categorizer", _refresh_memory_threshold),
)


def apply_runtime_updates(app: Any, updates: dict[str, str]) -> None:
    """Push saved settings into the live services on ``app.state``."""
    state = getattr(app, "state", None)
    if state is None or not updates:
        return
    for keys, attribute, refresh in _RUNTIME_REFRESHERS:
        target = getattr(state, attribute, None)
        if target is not None and keys & updates.keys():
            refresh(target)
