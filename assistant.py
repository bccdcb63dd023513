# assistant.py
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from loguru import logger

from backends import ChatMessage, GenerationOptions, GenerationResult, Provider, Role
from gateway import ProviderGateway, Responder
from model_catalog import select_best_model

ASSISTANT_NAME = "Dattoham AI"
HISTORY_WINDOW = 10


class Action(str, Enum):
    GENERATE = "generate"
    EXPLAIN = "explain"
    OPTIMIZE = "optimize"
    DEBUG = "debug"
    TEST = "test"
    REVIEW = "review"


ACTION_TASKS: Dict[Action, str] = {
    Action.GENERATE: "Generate complete, production-ready code based on the user's requirements.",
    Action.OPTIMIZE: "Analyze and optimize the provided code for performance, readability, and best practices.",
    Action.EXPLAIN: ("Provide detailed explanations of the code, including logic flow, patterns used, "
                     "and potential improvements."),
    Action.DEBUG: "Identify bugs, issues, and potential problems in the code. Provide fixes and explanations.",
    Action.TEST: "Generate comprehensive unit tests with good coverage and edge case handling.",
    Action.REVIEW: "Perform a thorough code review covering style, security, performance, and maintainability.",
}

GUIDELINES = """Guidelines:
- Write clean, maintainable, and well-documented code
- Follow language-specific best practices and conventions
- Consider security implications and performance
- Provide complete, runnable solutions
- Include error handling where appropriate"""


@dataclass(frozen=True)
class ProjectContext:
    """Surrounding-project facts supplied by the host editor."""
    language: str = "unknown"
    file_name: str = ""
    framework: str = "unknown"
    dependencies: Tuple[str, ...] = ()
    structure: Dict[str, object] = field(default_factory=dict)


def system_prompt(action: Action, context: ProjectContext) -> str:
    base = (
        f"You are {ASSISTANT_NAME}, an advanced coding assistant. You provide production-ready code with "
        "best practices, security considerations, and performance optimizations.\n\n"
        f"Language: {context.language}\n"
        f"File: {context.file_name or 'untitled'}\n"
        f"Framework: {context.framework}\n"
        f"Dependencies: {', '.join(context.dependencies) or 'None detected'}\n"
        f"Project Structure: {json.dumps(context.structure, sort_keys=True)}\n\n"
        f"{GUIDELINES}"
    )
    return f"{base}\n\nTask: {ACTION_TASKS[action]}"


def user_prompt(action: Action, code: str, context: ProjectContext) -> str:
    if action is Action.GENERATE:
        return f"Please generate code for the following requirements:\n\n{code}"
    fence = context.language.lower() if context.language != "unknown" else ""
    return f"Please {action.value} the following code:\n\n```{fence}\n{code}\n```"


def build_task_messages(action: Action, code: str, context: Optional[ProjectContext] = None) -> List[ChatMessage]:
    context = context or ProjectContext()
    return [
        ChatMessage(Role.SYSTEM, system_prompt(action, context)),
        ChatMessage(Role.USER, user_prompt(action, code, context)),
    ]


class CodingAssistant:
    """Editor commands (generate, explain, ...) routed through the provider gateway."""

    def __init__(self, gateway: ProviderGateway, route_by_task: bool = False):
        self.gateway = gateway
        # Pick a catalog model per task on the local provider instead of primary/fallbacks
        self.route_by_task = route_by_task

    def options_for(self, action: Action, code: str, context: ProjectContext,
                    options: Optional[GenerationOptions]) -> GenerationOptions:
        options = options or GenerationOptions()
        if (self.route_by_task and options.model is None
                and self.gateway.store.get().active_provider is Provider.LOCAL):
            model = select_best_model(action.value, context.language, len(code))
            logger.debug("Task routing picked {} for {}", model, action.value)
            options = replace(options, model=model)
        return options

    def run(self, action: Action, code: str, context: Optional[ProjectContext] = None,
            options: Optional[GenerationOptions] = None, responder: Optional[Responder] = None) -> GenerationResult:
        if not code.strip():
            raise ValueError(f"nothing to {action.value}: input is empty")
        context = context or ProjectContext()
        messages = build_task_messages(action, code, context)
        return self.gateway.run(messages, self.options_for(action, code, context, options), responder)


class ChatSession:
    """Rolling conversation; each turn sends the system prompt plus the most recent history."""

    def __init__(self, gateway: ProviderGateway, context: Optional[ProjectContext] = None,
                 window: int = HISTORY_WINDOW):
        if window < 1:
            # the window always has to carry the current question
            raise ValueError(f"History window must be at least 1, got {window}")
        self.gateway = gateway
        self.context = context or ProjectContext()
        self.window = window
        self.history: List[ChatMessage] = []

    def system_prompt(self) -> str:
        return (
            f"You are {ASSISTANT_NAME}, an expert coding assistant. Current project context:\n"
            f"Language: {self.context.language}\n"
            f"Framework: {self.context.framework}\n"
            f"Dependencies: {', '.join(self.context.dependencies)}\n\n"
            "Provide concise, accurate coding assistance. Focus on best practices, security, and performance."
        )

    def outgoing(self) -> List[ChatMessage]:
        return [ChatMessage(Role.SYSTEM, self.system_prompt()), *self.history[-self.window:]]

    def send(self, text: str, options: Optional[GenerationOptions] = None,
             responder: Optional[Responder] = None) -> GenerationResult:
        self.history.append(ChatMessage.now(Role.USER, text))
        try:
            result = self.gateway.run(self.outgoing(), options, responder)
        except Exception:
            # a failed turn leaves no dangling question in the history
            self.history.pop()
            raise
        self.history.append(ChatMessage.now(Role.ASSISTANT, result.text))
        return result

    def clear(self) -> None:
        self.history.clear()
