# model_catalog.py
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class PerformanceClass(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"


@dataclass(frozen=True)
class ModelCatalogEntry:
    name: str
    context_window: int
    specializations: FrozenSet[str]
    performance_class: PerformanceClass


CODER_MODEL = "qwen2.5-coder:32b-instruct-q4_K_M"
GENERAL_MODEL = "qwen2.5:7b-instruct-q4_K_M"
REFACTOR_MODEL = "deepseek-v2:16b-lite-instruct-q4_K_M"
DEBUG_MODEL = "codellama:70b-instruct-q4_K_M"

CATALOG: Tuple[ModelCatalogEntry, ...] = (
    ModelCatalogEntry(CODER_MODEL, 32768, frozenset({"code", "typescript", "python", "javascript"}),
                      PerformanceClass.QUALITY),
    ModelCatalogEntry(GENERAL_MODEL, 8192, frozenset({"general", "explanation"}), PerformanceClass.FAST),
    ModelCatalogEntry(REFACTOR_MODEL, 16384, frozenset({"code", "optimization", "refactoring"}),
                      PerformanceClass.BALANCED),
    ModelCatalogEntry(DEBUG_MODEL, 4096, frozenset({"code", "debugging", "testing"}), PerformanceClass.QUALITY),
)

LARGE_FILE_CHARS = 10000
WEB_LANGUAGES = ("typescript", "javascript", "react", "nextjs")

TASK_MODELS = {
    "debug": DEBUG_MODEL,
    "test": DEBUG_MODEL,
    "optimize": REFACTOR_MODEL,
    "refactor": REFACTOR_MODEL,
    "explain": GENERAL_MODEL,
}


def get_model_info(name: str) -> Optional[ModelCatalogEntry]:
    return next((m for m in CATALOG if m.name == name), None)


def select_best_model(task: str, language: str, file_size: int) -> str:
    # Large inputs favour speed over quality
    if file_size > LARGE_FILE_CHARS:
        fast = next((m for m in CATALOG if m.performance_class is PerformanceClass.FAST), CATALOG[0])
        return fast.name

    lang = (language or "").lower()
    if lang in WEB_LANGUAGES:
        return CODER_MODEL
    if lang == "python":
        return REFACTOR_MODEL
    return TASK_MODELS.get(task, CODER_MODEL)
