# provider_config.py
import os
import threading
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from dotenv import dotenv_values, set_key
from loguru import logger

from backends import Provider

DEFAULT_LOCAL_ENDPOINT = "http://localhost:11434"
DEFAULT_PRIMARY_MODEL = "qwen2.5-coder:32b-instruct-q4_K_M"
DEFAULT_FALLBACK_MODELS = (
    "qwen2.5:7b-instruct-q4_K_M",
    "deepseek-v2:16b-lite-instruct-q4_K_M",
    "codellama:70b-instruct-q4_K_M",
)
DEFAULT_CLOUD_MODEL = "gemini-1.5-flash"
DEFAULT_SETTINGS_PATH = "~/.dattoham/settings.env"

# field name -> key in the environment and in the settings file
SETTING_KEYS: Dict[str, str] = {
    "active_provider": "DATTOHAM_PROVIDER",
    "local_endpoint": "DATTOHAM_LOCAL_ENDPOINT",
    "primary_model": "DATTOHAM_PRIMARY_MODEL",
    "fallback_models": "DATTOHAM_FALLBACK_MODELS",
    "cloud_api_key": "DATTOHAM_CLOUD_API_KEY",
    "cloud_model": "DATTOHAM_CLOUD_MODEL",
}


@dataclass(frozen=True)
class ProviderConfig:
    active_provider: Provider = Provider.LOCAL
    local_endpoint: str = DEFAULT_LOCAL_ENDPOINT
    primary_model: str = DEFAULT_PRIMARY_MODEL
    fallback_models: Tuple[str, ...] = DEFAULT_FALLBACK_MODELS
    cloud_api_key: Optional[str] = field(default=None, repr=False)
    cloud_model: str = DEFAULT_CLOUD_MODEL

    @property
    def has_credential(self) -> bool:
        return bool(self.cloud_api_key)


_FIELD_NAMES = {f.name for f in fields(ProviderConfig)}
_MODEL_DEFAULTS = {"primary_model": DEFAULT_PRIMARY_MODEL, "cloud_model": DEFAULT_CLOUD_MODEL}


def normalize_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce loosely typed values (strings from env/files, lists) into ProviderConfig field types."""
    unknown = set(changes) - _FIELD_NAMES
    if unknown:
        raise TypeError(f"Unknown ProviderConfig field(s): {', '.join(sorted(unknown))}")

    out: Dict[str, Any] = {}
    for name, value in changes.items():
        if name == "active_provider":
            value = value if isinstance(value, Provider) else Provider.parse(value)
        elif name == "fallback_models":
            if isinstance(value, str):
                value = value.split(",")
            value = tuple(str(v).strip() for v in value or () if v and str(v).strip())
        elif name == "cloud_api_key":
            value = (value or "").strip() or None
        elif name == "local_endpoint":
            value = (value or "").strip().rstrip("/") or DEFAULT_LOCAL_ENDPOINT
            if urlsplit(value).scheme not in ("http", "https"):
                raise ValueError(f"Local endpoint must be an http(s) URL, got {value!r}")
        elif name in _MODEL_DEFAULTS:
            value = str(value or "").strip() or _MODEL_DEFAULTS[name]
        out[name] = value
    return out


def _encode(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Provider):
        return value.value
    if isinstance(value, tuple):
        return ",".join(value)
    return str(value)


def config_from_settings(values: Mapping[str, Optional[str]]) -> ProviderConfig:
    """Build a config from DATTOHAM_* keys; bad values are logged and left at their defaults."""
    changes: Dict[str, Any] = {}
    for name, key in SETTING_KEYS.items():
        raw = values.get(key)
        if raw is None:
            continue
        try:
            changes.update(normalize_changes({name: raw}))
        except ValueError as e:
            logger.warning("Ignoring setting {}: {}", key, e)
    return replace(ProviderConfig(), **changes)


class MemoryConfigStore:
    """In-process ProviderConfig holder. Each update swaps in a new frozen snapshot under a lock."""

    def __init__(self, initial: Optional[ProviderConfig] = None):
        self._lock = threading.Lock()
        self._config = initial or ProviderConfig()

    def get(self) -> ProviderConfig:
        with self._lock:
            return self._config

    def update(self, **changes: Any) -> ProviderConfig:
        changes = normalize_changes(changes)
        with self._lock:
            updated = replace(self._config, **changes)
            self._persist(updated, changes)
            self._config = updated
        return updated

    def clear_credential(self, rejected: str) -> bool:
        """Clear the cloud key only if it is still the one the backend rejected."""
        with self._lock:
            if not rejected or self._config.cloud_api_key != rejected:
                return False
            updated = replace(self._config, cloud_api_key=None)
            self._persist(updated, {"cloud_api_key": None})
            self._config = updated
        return True

    def _persist(self, config: ProviderConfig, changes: Mapping[str, Any]) -> None:
        pass


class ConfigStore(MemoryConfigStore):
    """
    ProviderConfig persisted to a dotenv-format settings file.

    Load order: defaults, then the process environment, then the settings file.
    A cleared API key is written as an empty value so it also masks a key that
    only exists in the environment.
    """

    def __init__(self, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.path = Path(path or os.getenv("DATTOHAM_SETTINGS") or DEFAULT_SETTINGS_PATH).expanduser()
        environ = os.environ if environ is None else environ

        values: Dict[str, Optional[str]] = {k: environ[k] for k in SETTING_KEYS.values() if k in environ}
        if self.path.exists():
            stored = dotenv_values(self.path)
            values.update({k: v for k, v in stored.items() if k in SETTING_KEYS.values()})
            logger.debug("Loaded settings from {}", self.path)
        super().__init__(config_from_settings(values))

    def _persist(self, config: ProviderConfig, changes: Mapping[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                self.path.touch(mode=0o600)
            for name in changes:
                set_key(str(self.path), SETTING_KEYS[name], _encode(getattr(config, name)))
        except OSError as e:
            # the in-memory snapshot still changes; only durability is lost
            logger.warning("Could not persist settings to {}: {}", self.path, e)
