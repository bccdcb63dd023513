import argparse
import getpass
import os
import sys
from pathlib import Path
from typing import Optional

from colorama import Fore, init
from dotenv import load_dotenv
from loguru import logger

from assistant import Action, ChatSession, CodingAssistant, ProjectContext
from backends import AssistantError, GenerationOptions, Provider
from backends_factory import make_gateway_from_env
from model_catalog import CATALOG
from recovery import InputKind, InputRequest, RecoveryAnswer, RecoveryChoice

MIN_KEY_LENGTH = 20

LANGUAGES_BY_SUFFIX = {
    ".py": "python", ".ts": "typescript", ".tsx": "typescript", ".js": "javascript",
    ".jsx": "javascript", ".java": "java", ".cpp": "cpp", ".c": "c", ".rs": "rust",
    ".go": "go", ".php": "php", ".rb": "ruby", ".cs": "csharp",
}


def ask_credential(prompt: str = "API key: ") -> Optional[str]:
    while True:
        key = getpass.getpass(prompt).strip()
        if not key:
            return None
        if len(key) >= MIN_KEY_LENGTH:
            return key
        print(f"{Fore.RED}That does not look like a valid API key (expected at least {MIN_KEY_LENGTH} characters).")


def prompt_user(request: InputRequest) -> RecoveryAnswer:
    """Console side of the recovery suspension point."""
    print(f"{Fore.YELLOW}{request.message}")
    if request.kind is InputKind.CREDENTIAL:
        return RecoveryAnswer(credential=ask_credential())

    for i, choice in enumerate(request.choices, 1):
        print(f"  {i}) {choice.value}")
    raw = input("Choice (blank to cancel): ").strip()
    if not raw.isdigit() or not 1 <= int(raw) <= len(request.choices):
        return RecoveryAnswer.declined()

    choice = request.choices[int(raw) - 1]
    credential = None
    if choice is RecoveryChoice.SWITCH_TO_CLOUD and request.needs_credential:
        credential = ask_credential("Cloud API key: ")
    return RecoveryAnswer(choice=choice, credential=credential)


def read_input(path: Optional[str]) -> str:
    if path:
        return Path(path).read_text(encoding="utf-8")
    return sys.stdin.read()


def context_for(path: Optional[str], language: Optional[str]) -> ProjectContext:
    suffix = Path(path).suffix.lower() if path else ""
    return ProjectContext(
        language=language or LANGUAGES_BY_SUFFIX.get(suffix, "unknown"),
        file_name=Path(path).name if path else "",
    )


def cmd_action(args, gateway, store) -> None:
    action = Action(args.command)
    code = read_input(args.file)
    assistant = CodingAssistant(gateway, route_by_task=os.getenv("DATTOHAM_TASK_ROUTING", "0") == "1")
    options = GenerationOptions(model=args.model, temperature=args.temperature, max_tokens=args.max_tokens)
    result = assistant.run(action, code, context_for(args.file, args.language), options, responder=prompt_user)
    print(f"{Fore.GREEN}[{result.provider.value}{':' + result.model if result.model else ''}]")
    print(result.text)


def cmd_chat(args, gateway, store) -> None:
    session = ChatSession(gateway, context_for(args.file, args.language))
    print(f"{Fore.WHITE}Chat with the {store.get().active_provider.value} provider. "
          "Commands: /clear, /quit")
    while True:
        try:
            text = input(f"{Fore.CYAN}you> ").strip()
        except EOFError:
            break
        if not text:
            continue
        if text in ("/quit", "/exit"):
            break
        if text == "/clear":
            session.clear()
            print(f"{Fore.WHITE}History cleared.")
            continue
        try:
            result = session.send(text, responder=prompt_user)
        except AssistantError as e:
            print(f"{Fore.RED}{e.user_message()}")
            continue
        print(f"{Fore.YELLOW}ai> {result.text}")


def cmd_provider(args, gateway, store) -> None:
    if args.name:
        cfg = store.update(active_provider=Provider.parse(args.name))
    else:
        cfg = store.get()
    print(f"Active provider: {cfg.active_provider.value}")
    print(f"Local endpoint:  {cfg.local_endpoint}")
    print(f"Models:          {cfg.primary_model} (fallbacks: {', '.join(cfg.fallback_models) or 'none'})")
    print(f"Cloud model:     {cfg.cloud_model}  key stored: {'yes' if cfg.has_credential else 'no'}")


def cmd_set_key(args, gateway, store) -> None:
    key = ask_credential("Cloud API key (blank clears it): ")
    store.update(cloud_api_key=key)
    print(f"{Fore.GREEN}API key {'saved' if key else 'cleared'}.")


def cmd_models(args, gateway, store) -> None:
    installed = gateway.local.check_availability()
    print(f"{Fore.WHITE}Installed on {store.get().local_endpoint}:")
    for name in sorted(installed) or ["(none)"]:
        print(f"  {name}")
    print(f"{Fore.WHITE}Catalog:")
    for entry in CATALOG:
        mark = f"{Fore.GREEN}*" if entry.name in installed else " "
        print(f" {mark} {entry.name}  ctx={entry.context_window}  {entry.performance_class.value}  "
              f"[{', '.join(sorted(entry.specializations))}]")


def cmd_pull(args, gateway, store) -> None:
    for name in args.models:
        print(f"Pulling {name}…")
        if gateway.local.pull_model(name):
            print(f"{Fore.GREEN}{name} is ready.")
        else:
            print(f"{Fore.RED}Failed to pull {name}.")


COMMANDS = {
    "chat": cmd_chat,
    "provider": cmd_provider,
    "set-key": cmd_set_key,
    "models": cmd_models,
    "pull": cmd_pull,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dattoham", description="Coding assistant backed by a local or cloud model.")
    parser.add_argument("--settings", help="settings file (default: $DATTOHAM_SETTINGS or ~/.dattoham/settings.env)")
    sub = parser.add_subparsers(dest="command", required=True)

    for action in Action:
        p = sub.add_parser(action.value, help=f"{action.value} code (reads stdin without FILE)")
        p.add_argument("file", nargs="?")
        p.add_argument("--language")
        p.add_argument("--model")
        p.add_argument("--temperature", type=float)
        p.add_argument("--max-tokens", type=int)

    p = sub.add_parser("chat", help="interactive chat")
    p.add_argument("--file")
    p.add_argument("--language")

    p = sub.add_parser("provider", help="show or switch the active provider")
    p.add_argument("name", nargs="?", choices=[v.value for v in Provider])

    sub.add_parser("set-key", help="store or clear the cloud API key")
    sub.add_parser("models", help="list installed and catalog models")

    p = sub.add_parser("pull", help="download models to the local service")
    p.add_argument("models", nargs="+")
    return parser


def main(argv=None) -> int:
    load_dotenv()
    init(autoreset=True)
    logger.remove()
    logger.add(sys.stderr, level=os.getenv("DATTOHAM_LOG_LEVEL", "WARNING"))

    args = build_parser().parse_args(argv)
    gateway, store = make_gateway_from_env(args.settings)
    handler = COMMANDS.get(args.command, cmd_action)
    try:
        handler(args, gateway, store)
    except AssistantError as e:
        print(f"{Fore.RED}{e.user_message()}")
        return 1
    except (ValueError, OSError) as e:
        print(f"{Fore.RED}{e}")
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
