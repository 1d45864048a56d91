import os
import threading

from household_ledger.classifiers.llm import LLMBatchClassifier
from household_ledger.classifiers.memory import MemoryMatcher
from household_ledger.core import settings
from household_ledger.ledger.classification import ClassificationItem
from household_ledger.logger import get_logger
from household_ledger.models import CategorizationResult

logger = get_logger(__name__)


class CategorizerService:
    def __init__(self, memory_threshold: float | None = None, data_dir: str = "."):
        # 1. Memory Matchers (highest priority), one file per household
        self.threshold = (
            memory_threshold
            if memory_threshold is not None
            else settings.get_env_float("MEMORY_THRESHOLD", settings.DEFAULT_MEMORY_THRESHOLD)
        )
        self.memory_dir = os.path.join(data_dir, "memory")
        self._memories: dict[str, MemoryMatcher] = {}
        self._memories_lock = threading.Lock()

        # 2. LLM batch classifier, only with an API key
        self.llm: LLMBatchClassifier | None = None
        self.refresh_llm()

    @property
    def llm_enabled(self) -> bool:
        return self.llm is not None

    def refresh_llm(self) -> None:
        api_key = os.getenv("OPENAI_API_KEY")
        if api_key:
            model = os.getenv("OPENAI_MODEL") or settings.DEFAULT_OPENAI_MODEL
            base_url = os.getenv("OPENAI_BASE_URL")
            self.llm = LLMBatchClassifier(api_key=api_key, model=model, base_url=base_url)
            logger.info("[CLASSIFY] LLM classifier enabled: model=%s, base_url=%s", model, base_url or "default")
        else:
            self.llm = None
            logger.warning("[CLASSIFY] OPENAI_API_KEY not found. LLM classifier disabled.")

    def memory_for(self, household_id: str) -> MemoryMatcher:
        with self._memories_lock:
            memory = self._memories.get(household_id)
            if memory is None:
                os.makedirs(self.memory_dir, exist_ok=True)
                memory = MemoryMatcher(
                    data_path=os.path.join(self.memory_dir, f"{household_id}.json"),
                    threshold=self.threshold,
                )
                self._memories[household_id] = memory
            return memory

    def set_memory_threshold(self, threshold: float) -> None:
        with self._memories_lock:
            self.threshold = threshold
            for memory in self._memories.values():
                memory.threshold = threshold

    def classify_batch(
        self, household_id: str, items: list[ClassificationItem], category_names: list[str]
    ) -> dict[str, CategorizationResult]:
        """Household memory first; whatever it cannot place goes to the LLM in one call."""
        results = self.memory_for(household_id).classify_batch(items, category_names)
        remaining = [item for item in items if item.id not in results]
        if results:
            logger.debug("[CLASSIFY] Memory placed %s of %s item(s).", len(results), len(items))
        if remaining and self.llm is not None:
            results.update(self.llm.classify_batch(remaining, category_names))
        return results

    def learn(self, household_id: str, description: str, category_name: str) -> None:
        self.memory_for(household_id).learn(description, category_name)
