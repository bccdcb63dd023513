# backends_factory.py
from typing import Optional, Tuple

from dotenv import load_dotenv

from backends import BaseLLMClient, Provider
from backends_gemini import GeminiClient
from backends_ollama import OllamaClient
from gateway import ProviderGateway
from provider_config import ConfigStore


def make_client(provider: Provider, store) -> BaseLLMClient:
    match provider:
        case Provider.LOCAL:
            return OllamaClient(store)
        case Provider.CLOUD:
            return GeminiClient(store)
    raise ValueError(f"Unknown provider: {provider!r}")


def make_gateway_from_env(settings_path: Optional[str] = None) -> Tuple[ProviderGateway, ConfigStore]:
    """Load .env, open the persisted settings and wire both backends to one config store."""
    load_dotenv()
    store = ConfigStore(settings_path)
    gateway = ProviderGateway(
        store,
        local=make_client(Provider.LOCAL, store),
        cloud=make_client(Provider.CLOUD, store),
    )
    return gateway, store
