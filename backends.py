# backends.py
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

SETUP_URL = "https://ollama.ai/download"
API_KEY_URL = "https://makersuite.google.com/app/apikey"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Provider(str, Enum):
    LOCAL = "local"
    CLOUD = "cloud"

    @classmethod
    def parse(cls, value: str) -> "Provider":
        v = (value or "").strip().lower()
        # settings written by older builds used the backend names
        if v in ("local", "ollama"):
            return cls.LOCAL
        if v in ("cloud", "gemini", "google"):
            return cls.CLOUD
        raise ValueError(f"Unknown provider: {value!r} (expected 'local' or 'cloud')")


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str
    timestamp: Optional[float] = None

    @classmethod
    def now(cls, role: Role, content: str) -> "ChatMessage":
        return cls(role=role, content=content, timestamp=time.time())


Messages = Sequence[ChatMessage]


@dataclass(frozen=True)
class GenerationOptions:
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = False

    def __post_init__(self):
        if self.temperature is not None and not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"temperature must be within [0, 1], got {self.temperature}")
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.stream:
            raise ValueError("streaming responses are not supported")


# ---- Error taxonomy ----

class AssistantError(Exception):
    """Base for every failure scoped to a single generate call."""

    default_remedy = ""

    def __init__(self, message: str, remedy: Optional[str] = None):
        super().__init__(message)
        self.remedy = remedy if remedy is not None else self.default_remedy

    def user_message(self) -> str:
        msg = str(self)
        return f"{msg} {self.remedy}" if self.remedy else msg


class BackendConnectionError(AssistantError, ConnectionError):
    default_remedy = f"Make sure the service is running, or switch provider. Setup: {SETUP_URL}"


class BackendTimeoutError(BackendConnectionError, TimeoutError):
    default_remedy = "The backend did not answer in time; retry, or try a smaller model."


class ModelUnavailableError(AssistantError):
    default_remedy = "Install one of the configured models, e.g. `ollama pull <model>`."


class InvalidCredentialError(AssistantError):
    default_remedy = f"The stored API key was cleared; enter a valid key ({API_KEY_URL})."


class CredentialRequiredError(AssistantError):
    default_remedy = f"An API key is required for the cloud provider ({API_KEY_URL})."


class GenerationError(AssistantError):
    default_remedy = "The backend answered without usable text; try again or rephrase the request."


@dataclass(frozen=True)
class GenerationResult:
    text: str
    provider: Provider
    model: Optional[str] = None


class BaseLLMClient:
    provider: Provider

    def chat(self, messages: Messages, options: GenerationOptions) -> GenerationResult:
        raise NotImplementedError


ROLE_LABELS = {Role.SYSTEM: "System", Role.USER: "Human", Role.ASSISTANT: "Assistant"}


def build_prompt(messages: Messages) -> str:
    # Both wire contracts take a single flat prompt, so turns are linearized in order
    return "\n\n".join(f"{ROLE_LABELS[Role(m.role)]}: {m.content}" for m in messages)
