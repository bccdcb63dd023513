# recovery.py
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from loguru import logger

from backends import (
    SETUP_URL,
    AssistantError,
    BackendConnectionError,
    ChatMessage,
    CredentialRequiredError,
    GenerationOptions,
    InvalidCredentialError,
    Provider,
)

SETUP_INSTRUCTIONS = (
    f"Install Ollama from {SETUP_URL}, start it with `ollama serve`, "
    "then pull a model, e.g. `ollama pull qwen2.5:7b-instruct-q4_K_M`."
)


class RecoveryChoice(str, Enum):
    SWITCH_TO_CLOUD = "switch-to-cloud"
    SHOW_SETUP = "show-setup-instructions"


class InputKind(str, Enum):
    PROVIDER_CHOICE = "provider-choice"
    CREDENTIAL = "credential"


@dataclass(frozen=True)
class InputRequest:
    """What the orchestration layer has to ask the user before the call can continue."""
    kind: InputKind
    message: str
    choices: Tuple[RecoveryChoice, ...] = ()
    # provider choice only: switching to cloud also needs a key
    needs_credential: bool = False


@dataclass(frozen=True)
class RecoveryAnswer:
    choice: Optional[RecoveryChoice] = None
    credential: Optional[str] = None

    @classmethod
    def declined(cls) -> "RecoveryAnswer":
        return cls()


@dataclass(frozen=True)
class PendingRecovery:
    request: InputRequest
    messages: Tuple[ChatMessage, ...]
    options: GenerationOptions
    failed_provider: Provider
    # None when the call was suspended before any backend was contacted
    error: Optional[AssistantError] = None


@dataclass(frozen=True)
class NeedsInput:
    pending: PendingRecovery

    @property
    def request(self) -> InputRequest:
        return self.pending.request


class RecoveryPolicy:
    """
    Decision table from (provider, failure) to a recovery action.

    decide() is consulted once per gateway call; resolve() applies the user's
    answer and names the provider for the single retry, or raises the final error.
    """

    def credential_request(self, rejected: bool = False) -> InputRequest:
        msg = ("The cloud API rejected the stored API key. Enter a new key to retry."
               if rejected else "Enter your cloud API key to continue.")
        return InputRequest(kind=InputKind.CREDENTIAL, message=msg)

    def decide(self, provider: Provider, error: AssistantError, has_credential: bool) -> Optional[InputRequest]:
        if provider is Provider.LOCAL and isinstance(error, BackendConnectionError):
            return InputRequest(
                kind=InputKind.PROVIDER_CHOICE,
                message=f"{error} Switch to the cloud provider?",
                choices=(RecoveryChoice.SWITCH_TO_CLOUD, RecoveryChoice.SHOW_SETUP),
                needs_credential=not has_credential,
            )
        if provider is Provider.CLOUD and isinstance(error, InvalidCredentialError):
            return self.credential_request(rejected=True)
        # ModelUnavailableError and everything else surface unchanged
        return None

    def resolve(self, pending: PendingRecovery, answer: RecoveryAnswer, store) -> Provider:
        credential = (answer.credential or "").strip() or None

        if pending.request.kind is InputKind.CREDENTIAL:
            if not credential:
                raise CredentialRequiredError(
                    "Cloud request cancelled: no API key was supplied."
                ) from pending.error
            store.update(cloud_api_key=credential)
            logger.info("Stored a new cloud API key")
            return Provider.CLOUD

        if answer.choice is RecoveryChoice.SWITCH_TO_CLOUD:
            if not credential and not store.get().has_credential:
                raise CredentialRequiredError(
                    "Cannot switch to the cloud provider without an API key."
                ) from pending.error
            changes = {"active_provider": Provider.CLOUD}
            if credential:
                changes["cloud_api_key"] = credential
            store.update(**changes)
            logger.info("Switched active provider to cloud after local failure")
            return Provider.CLOUD

        error = pending.error
        message = str(error) if error is not None else "Local model service unavailable."
        if answer.choice is RecoveryChoice.SHOW_SETUP:
            raise BackendConnectionError(message, remedy=SETUP_INSTRUCTIONS) from error
        if error is not None:
            raise error
        raise BackendConnectionError(message)
