# backends_gemini.py
import os
from typing import Any, Dict, Optional

import requests
from loguru import logger

from backends import (
    BackendConnectionError,
    BackendTimeoutError,
    BaseLLMClient,
    CredentialRequiredError,
    GenerationError,
    GenerationOptions,
    GenerationResult,
    InvalidCredentialError,
    Messages,
    Provider,
    build_prompt,
)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 4096

# Gemini answers a bad or missing key with 400 (API_KEY_INVALID) or 401
CREDENTIAL_STATUSES = (400, 401)


def _error_message(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return f"HTTP {r.status_code}"
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return f"HTTP {r.status_code}"


def extract_text(data: Any) -> str:
    """candidates[0].content.parts[0].text, or GenerationError when the structure is missing."""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        reason = None
        if isinstance(data, dict):
            feedback = data.get("promptFeedback")
            if isinstance(feedback, dict):
                reason = feedback.get("blockReason")
            candidates = data.get("candidates")
            if reason is None and isinstance(candidates, list) and candidates \
                    and isinstance(candidates[0], dict):
                reason = candidates[0].get("finishReason")
        suffix = f" (reason: {reason})" if reason else ""
        raise GenerationError(f"Cloud API response contained no candidate text{suffix}.") from None
    if not isinstance(text, str) or not text.strip():
        raise GenerationError("Cloud API returned an empty candidate.")
    return text


class GeminiClient(BaseLLMClient):
    """
    Google Gemini backend over the REST generateContent endpoint.

    A rejected key is cleared from the config store before
    InvalidCredentialError is raised, so the next call asks for a new one.
    """

    provider = Provider.CLOUD

    def __init__(self, store, base_url: Optional[str] = None):
        self.store = store
        self.base_url = (base_url or os.getenv("DATTOHAM_CLOUD_BASE_URL", GEMINI_BASE_URL)).rstrip("/")
        self.timeout = float(os.getenv("DATTOHAM_CLOUD_TIMEOUT", "30"))

    def _payload(self, prompt: str, options: GenerationOptions) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": DEFAULT_TEMPERATURE if options.temperature is None else options.temperature,
                "maxOutputTokens": options.max_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
            },
        }

    def complete(self, prompt: str, credential: Optional[str], options: GenerationOptions,
                 model: Optional[str] = None) -> str:
        if not credential:
            raise CredentialRequiredError("No API key is configured for the cloud provider.")

        model = options.model or model or self.store.get().cloud_model
        url = f"{self.base_url}/{model}:generateContent"
        # The key travels as a query parameter, so requests' own exception text
        # (which embeds the URL) is never chained or logged.
        try:
            r = requests.post(url, params={"key": credential}, json=self._payload(prompt, options),
                              timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise BackendTimeoutError(f"Cloud API did not answer within {self.timeout:g}s.") from None
        except requests.exceptions.RequestException:
            raise BackendConnectionError(
                "Could not reach the cloud API.", remedy="Check your network connection and try again."
            ) from None

        if r.status_code in CREDENTIAL_STATUSES:
            cleared = self.store.clear_credential(credential)
            logger.warning("Cloud API rejected the API key (HTTP {}); cleared={}", r.status_code, cleared)
            raise InvalidCredentialError(f"Cloud API rejected the API key: {_error_message(r)}")
        if r.status_code == 429 or r.status_code >= 500:
            raise BackendConnectionError(
                f"Cloud API is unavailable: {_error_message(r)}", remedy="Wait a moment and try again."
            )
        if r.status_code >= 400:
            raise GenerationError(f"Cloud API error: {_error_message(r)}")

        try:
            data = r.json()
        except ValueError:
            raise GenerationError("Cloud API sent a malformed response.") from None
        return extract_text(data)

    def chat(self, messages: Messages, options: GenerationOptions) -> GenerationResult:
        cfg = self.store.get()
        model = options.model or cfg.cloud_model
        logger.debug("Cloud generate: model={} messages={}", model, len(messages))
        text = self.complete(build_prompt(messages), cfg.cloud_api_key, options, model=model)
        return GenerationResult(text=text, provider=self.provider, model=model)
