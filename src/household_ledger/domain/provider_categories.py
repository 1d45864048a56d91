import json
import os
from dataclasses import dataclass, field

from household_ledger.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAP_PATH = os.path.join(os.path.dirname(__file__), "provider_categories.json")


@dataclass(frozen=True)
class ProviderCategoryMap:
    """Versioned lookup from a provider's primary category label to a household category name."""
    version: int
    mapping: dict[str, str] = field(default_factory=dict)

    def category_name_for(self, provider_label: str | None) -> str | None:
        if not provider_label:
            return None
        return self.mapping.get(provider_label.strip().upper())

    def target_names(self) -> list[str]:
        return sorted(set(self.mapping.values()))


def load_provider_category_map(path: str | None = None) -> ProviderCategoryMap:
    resolved = path or os.getenv("PROVIDER_CATEGORY_MAP") or DEFAULT_MAP_PATH
    with open(resolved, encoding="utf-8") as handle:
        data = json.load(handle)
    raw_mapping = data.get("mapping", {})
    mapping = {str(key).strip().upper(): str(value) for key, value in raw_mapping.items()}
    version = int(data.get("version", 1))
    logger.info(
        "[SYNC] Loaded provider category map v%s (%d labels) from %s",
        version,
        len(mapping),
        resolved,
    )
    return ProviderCategoryMap(version=version, mapping=mapping)
