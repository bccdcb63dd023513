# gateway.py
from dataclasses import replace
from typing import Callable, Optional, Sequence, Union, assert_never

from loguru import logger

from backends import (
    AssistantError,
    BaseLLMClient,
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    Provider,
)
from backends_gemini import GeminiClient
from backends_ollama import OllamaClient
from recovery import (
    InputRequest,
    NeedsInput,
    PendingRecovery,
    RecoveryAnswer,
    RecoveryPolicy,
)

Responder = Callable[[InputRequest], Optional[RecoveryAnswer]]
Outcome = Union[GenerationResult, NeedsInput]


class ProviderGateway:
    """
    Single entry point for "generate a response for these chat messages".

    The active provider is read from the config store on every call. A failure
    the recovery policy knows how to handle suspends the call as NeedsInput;
    resume() runs the one permitted retry. Errors from that retry are final.
    """

    def __init__(self, store, local: Optional[BaseLLMClient] = None,
                 cloud: Optional[BaseLLMClient] = None, policy: Optional[RecoveryPolicy] = None):
        self.store = store
        self.local = local or OllamaClient(store)
        self.cloud = cloud or GeminiClient(store)
        self.policy = policy or RecoveryPolicy()

    def client_for(self, provider: Provider) -> BaseLLMClient:
        match provider:
            case Provider.LOCAL:
                return self.local
            case Provider.CLOUD:
                return self.cloud
            case _:
                assert_never(provider)

    def _dispatch(self, provider: Provider, messages: Sequence[ChatMessage],
                  options: GenerationOptions) -> GenerationResult:
        logger.debug("Dispatching {} message(s) to {} provider", len(messages), provider.value)
        return self.client_for(provider).chat(messages, options)

    def attempt(self, messages: Sequence[ChatMessage], options: Optional[GenerationOptions] = None) -> Outcome:
        messages = tuple(messages)
        if not messages:
            raise ValueError("at least one chat message is required")
        options = options or GenerationOptions()

        cfg = self.store.get()
        provider = cfg.active_provider
        if provider is Provider.CLOUD and not cfg.has_credential:
            # Ask for the key before the cloud client is ever invoked
            return NeedsInput(PendingRecovery(
                request=self.policy.credential_request(),
                messages=messages, options=options, failed_provider=provider,
            ))

        try:
            return self._dispatch(provider, messages, options)
        except AssistantError as e:
            request = self.policy.decide(provider, e, self.store.get().has_credential)
            if request is None:
                raise
            logger.warning("{} provider failed ({}); recovery needs input: {}",
                           provider.value, type(e).__name__, request.kind.value)
            return NeedsInput(PendingRecovery(
                request=request, messages=messages, options=options, failed_provider=provider, error=e,
            ))

    def resume(self, pending: PendingRecovery, answer: Optional[RecoveryAnswer]) -> GenerationResult:
        provider = self.policy.resolve(pending, answer or RecoveryAnswer.declined(), self.store)
        options = pending.options
        if provider is not pending.failed_provider:
            # model names are provider specific
            options = replace(options, model=None)
        return self._dispatch(provider, pending.messages, options)

    def run(self, messages: Sequence[ChatMessage], options: Optional[GenerationOptions] = None,
            responder: Optional[Responder] = None) -> GenerationResult:
        outcome = self.attempt(messages, options)
        if isinstance(outcome, NeedsInput):
            answer = responder(outcome.request) if responder else None
            outcome = self.resume(outcome.pending, answer)
        return outcome

    def generate(self, messages: Sequence[ChatMessage], options: Optional[GenerationOptions] = None,
                 responder: Optional[Responder] = None) -> str:
        return self.run(messages, options, responder).text
