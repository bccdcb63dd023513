"""Shared fixtures: in-memory config store, fake HTTP responses and scripted backends."""

from unittest.mock import Mock

import pytest

from backends import BaseLLMClient, GenerationResult, Provider
from provider_config import MemoryConfigStore, ProviderConfig

VALID_KEY = "AIzaSyTEST-0123456789abcdef"


def fake_response(status_code=200, json_data=None, text=""):
    """Stand-in for requests.Response; json() raises ValueError when no body is given."""
    r = Mock()
    r.status_code = status_code
    r.text = text
    if json_data is None:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = json_data
    return r


class ScriptedClient(BaseLLMClient):
    """Backend double: returns or raises the next scripted outcome and records every call."""

    def __init__(self, provider, *outcomes):
        self.provider = provider
        self.outcomes = list(outcomes)
        self.calls = []

    def chat(self, messages, options):
        self.calls.append((tuple(messages), options))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return GenerationResult(text=outcome, provider=self.provider, model=options.model)


@pytest.fixture
def store():
    return MemoryConfigStore(ProviderConfig(
        primary_model="m1",
        fallback_models=("m2", "m3"),
    ))


@pytest.fixture
def cloud_store():
    return MemoryConfigStore(ProviderConfig(active_provider=Provider.CLOUD, cloud_api_key=VALID_KEY))
