# backends_ollama.py
import os
from typing import Any, Dict, Iterable, List, Optional, Set

import requests
from loguru import logger
from tenacity import retry, retry_if_result, stop_after_attempt, wait_fixed

from backends import (
    AssistantError,
    BackendConnectionError,
    BackendTimeoutError,
    BaseLLMClient,
    GenerationError,
    GenerationOptions,
    GenerationResult,
    Messages,
    ModelUnavailableError,
    Provider,
    build_prompt,
)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_NUM_PREDICT = 4096
DEFAULT_TOP_P = 0.9
DEFAULT_REPEAT_PENALTY = 1.1


def _is_installed(name: str, installed: Set[str]) -> bool:
    # Ollama reports untagged models as "<name>:latest"
    return name in installed or (":" not in name and f"{name}:latest" in installed)


def select_model(installed: Set[str], primary: str, fallbacks: Iterable[str]) -> str:
    """Primary model if installed, else the first installed fallback, in configured order."""
    if primary and _is_installed(primary, installed):
        return primary
    for name in fallbacks:
        if _is_installed(name, installed):
            return name
    wanted = ", ".join([primary, *fallbacks])
    raise ModelUnavailableError(f"None of the configured models are installed ({wanted}).")


def _error_detail(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return r.text[:200]


def _json_body(r: requests.Response, what: str) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        raise GenerationError(f"Local model service sent a malformed {what} response.") from None
    if not isinstance(data, dict):
        raise GenerationError(f"Local model service sent an unexpected {what} response.")
    return data


class OllamaClient(BaseLLMClient):
    """
    Local model server client (Ollama HTTP API).

    The endpoint and model list are read from the config store on every call,
    so a settings change applies to the next request.
    """

    provider = Provider.LOCAL

    def __init__(self, store):
        self.store = store
        self.generate_timeout = float(os.getenv("DATTOHAM_LOCAL_TIMEOUT", "30"))
        self.status_timeout = float(os.getenv("DATTOHAM_STATUS_TIMEOUT", "5"))
        self.pull_timeout = float(os.getenv("DATTOHAM_PULL_TIMEOUT", "600"))
        self.auto_pull = os.getenv("DATTOHAM_AUTO_PULL", "1") == "1"
        # Polling knobs used to confirm a pulled model shows up in /api/tags
        self.confirm_attempts = int(os.getenv("DATTOHAM_PULL_CONFIRM_ATTEMPTS", "3"))
        self.confirm_wait = float(os.getenv("DATTOHAM_PULL_CONFIRM_WAIT", "1.0"))

    def _base_url(self, base_url: Optional[str]) -> str:
        return (base_url or self.store.get().local_endpoint).rstrip("/")

    def _send(self, method: str, path: str, base_url: str, timeout: float,
              payload: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{base_url}{path}"
        try:
            if method == "get":
                return requests.get(url, timeout=timeout)
            return requests.post(url, json=payload, timeout=timeout)
        except requests.exceptions.Timeout:
            raise BackendTimeoutError(
                f"Local model service at {base_url} did not answer within {timeout:g}s."
            ) from None
        except requests.exceptions.ConnectionError:
            raise BackendConnectionError(f"Local model service not running at {base_url}.") from None
        except requests.exceptions.RequestException as e:
            raise BackendConnectionError(
                f"Local model service at {base_url} could not be reached ({type(e).__name__})."
            ) from None

    def check_availability(self, base_url: Optional[str] = None) -> Set[str]:
        base = self._base_url(base_url)
        r = self._send("get", "/api/tags", base, self.status_timeout)
        if r.status_code >= 400:
            raise BackendConnectionError(
                f"Local model service at {base} is unhealthy (HTTP {r.status_code}: {_error_detail(r)})."
            )
        models = _json_body(r, "model list").get("models") or []
        return {m["name"] for m in models if isinstance(m, dict) and m.get("name")}

    def _confirm_installed(self, name: str, base: str) -> bool:
        poll = retry(
            stop=stop_after_attempt(self.confirm_attempts),
            wait=wait_fixed(self.confirm_wait),
            retry=retry_if_result(lambda present: not present),
            retry_error_callback=lambda state: False,
        )(lambda: _is_installed(name, self.check_availability(base)))
        return poll()

    def pull_model(self, name: str, base_url: Optional[str] = None) -> bool:
        """Blocking download of a model. Failures are logged and reported as False."""
        base = self._base_url(base_url)
        logger.info("Pulling model {} from {}", name, base)
        try:
            r = self._send("post", "/api/pull", base, self.pull_timeout, {"name": name, "stream": False})
            if r.status_code >= 400:
                logger.warning("Pull of {} failed: HTTP {} {}", name, r.status_code, _error_detail(r))
                return False
            present = self._confirm_installed(name, base)
        except AssistantError as e:
            logger.warning("Pull of {} failed: {}", name, e)
            return False
        if not present:
            logger.warning("Pull of {} finished but the model is not listed by {}", name, base)
        return present

    def resolve_model(self, options: GenerationOptions, base_url: Optional[str] = None) -> str:
        cfg = self.store.get()
        base = self._base_url(base_url)
        wanted: List[str] = [options.model] if options.model else [cfg.primary_model, *cfg.fallback_models]

        installed = self.check_availability(base)
        try:
            return select_model(installed, wanted[0], wanted[1:])
        except ModelUnavailableError:
            if not self.auto_pull:
                raise

        for name in wanted:
            if self.pull_model(name, base):
                return name
        raise ModelUnavailableError(f"No configured model is installed and pulling failed ({', '.join(wanted)}).")

    def complete(self, prompt: str, model: str, options: GenerationOptions,
                 base_url: Optional[str] = None) -> str:
        base = self._base_url(base_url)
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": DEFAULT_TEMPERATURE if options.temperature is None else options.temperature,
                "numPredict": options.max_tokens or DEFAULT_NUM_PREDICT,
                "topP": DEFAULT_TOP_P,
                "repeatPenalty": DEFAULT_REPEAT_PENALTY,
            },
        }
        r = self._send("post", "/api/generate", base, self.generate_timeout, payload)
        if r.status_code == 404:
            raise ModelUnavailableError(f"Model {model} is not installed on {base} ({_error_detail(r)}).")
        if r.status_code >= 400:
            raise GenerationError(f"Local model service returned HTTP {r.status_code}: {_error_detail(r)}")

        text = _json_body(r, "generate").get("response")
        if not isinstance(text, str) or not text.strip():
            raise GenerationError(f"Local model {model} returned an empty response.")
        return text

    def chat(self, messages: Messages, options: GenerationOptions) -> GenerationResult:
        base = self._base_url(None)
        model = self.resolve_model(options, base)
        logger.debug("Local generate: model={} messages={}", model, len(messages))
        text = self.complete(build_prompt(messages), model, options, base)
        return GenerationResult(text=text, provider=self.provider, model=model)
