"""Interactive CLI for RuleArena"""

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from typing import Optional

from rulearena.client import ModelClient
from rulearena.core import ArenaMode, OrchestratorResult
from rulearena.learning import LearningEngine, LearningError
from rulearena.models import MODEL_CATALOG
from rulearena.orchestrator import InvalidRequestError, Orchestrator
from rulearena.rule_cache import RulePromptCache
from rulearena.storage import InMemoryChatHistory, InMemoryLearningStore, JSONLearningStore

COMMANDS = {
    "mode": "Show or switch the arena mode (mode <name>)",
    "chat": "Send a message (or just type it)",
    "correct": "Correct the last answer",
    "feedback": "Rate the last answer (feedback up|down)",
    "proposed": "List proposed rules",
    "approve": "Approve a proposed rule (approve <index or id>)",
    "reject": "Reject a proposed rule (reject <index or id>)",
    "active": "List active rules",
    "deactivate": "Deactivate an active rule (deactivate <index or id>)",
    "stats": "Show learning statistics",
    "rules": "Show the rules prompt sent to every model",
    "help": "Show commands",
    "quit": "Exit",
}

ALIASES = {
    "m": "mode",
    "c": "correct",
    "f": "feedback",
    "p": "proposed",
    "a": "active",
    "s": "stats",
    "r": "rules",
    "h": "help",
    "q": "quit",
    "exit": "quit",
}


@dataclass
class Session:
    orchestrator: Orchestrator
    engine: LearningEngine
    history: InMemoryChatHistory
    user_id: str = "cli-user"
    chat_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    mode: ArenaMode = ArenaMode.AUTO_SELECT
    last_result: Optional[OrchestratorResult] = None


def _input(prompt: str, default: str = "") -> str:
    """Prompt for input with optional default."""
    if default:
        val = input(f"{prompt} [{default}]: ").strip()
        return val or default
    return input(f"{prompt}: ").strip()


def build_session(
    client=None,
    storage_path: Optional[str] = None,
    user_id: str = "cli-user",
) -> Session:
    """Wire store, cache, engine and orchestrator for one interactive user."""
    store = JSONLearningStore(storage_path) if storage_path else InMemoryLearningStore()
    cache = RulePromptCache(store)
    history = InMemoryChatHistory()
    engine = LearningEngine(store, rule_cache=cache)
    orchestrator = Orchestrator(
        client or ModelClient(),
        history,
        available_models=lambda _user: list(MODEL_CATALOG),
        rule_cache=cache,
    )
    return Session(orchestrator=orchestrator, engine=engine, history=history, user_id=user_id)


def _setup() -> Session:
    """Ask for the key and storage location."""
    print("\nRuleArena Interactive CLI\n")

    api_key = os.environ.get("OPENROUTER_API_KEY")
    if not api_key:
        api_key = _input("OpenRouter API key")

    storage_path = input("Storage directory (blank for in-memory): ").strip() or None
    session = build_session(ModelClient(api_key=api_key), storage_path)

    print(f"\n✓ Ready: {len(MODEL_CATALOG)} models, mode {session.mode.value}")
    if storage_path:
        print(f"  Storage: {storage_path}")
    return session


# --- Helpers ---


def _pick(items, target: str):
    """Resolve a 1-based index or an id (prefix) against a list of rules."""
    try:
        idx = int(target) - 1
        if 0 <= idx < len(items):
            return items[idx]
    except ValueError:
        pass
    for item in items:
        if item.id == target or item.id.startswith(target):
            return item
    return None


def _require_answer(session: Session) -> bool:
    if session.last_result is None or session.last_result.is_error:
        print("No answer to act on yet. Send a message first.")
        return False
    return True


# --- Command handlers ---


def _cmd_mode(session: Session, args: list[str]):
    """Show or switch the arena mode."""
    if not args:
        print(f"\nCurrent mode: {session.mode.value}")
        print(f"  Available: {', '.join(m.value for m in ArenaMode)}")
        return
    try:
        session.mode = ArenaMode(args[0].upper())
    except ValueError:
        print(f"Unknown mode: {args[0]}")
        return
    print(f"✓ Mode: {session.mode.value}")


def _cmd_chat(session: Session, content: str):
    """Send a message through the orchestrator."""
    if not content:
        content = _input("Message")
    try:
        result = asyncio.run(
            session.orchestrator.process_message(
                session.user_id, session.chat_id, content, session.mode
            )
        )
    except InvalidRequestError as e:
        print(f"✗ {e}")
        return

    session.history.append(session.chat_id, "user", content)
    session.history.append(session.chat_id, "assistant", result.response)
    session.last_result = result

    print(f"\n{result.response}\n")
    print(
        f"  [{result.model_id}] tokens {result.tokens.input}/{result.tokens.output}, "
        f"cost ${result.cost:.6f}, {result.metadata.get('processing_time', 0):.2f}s"
    )
    if result.is_error:
        print("  ⚠️ All model calls failed")


def _cmd_correct(session: Session):
    """Record a correction of the last answer."""
    if not _require_answer(session):
        return
    print("\n--- Correct last answer ---")
    corrected = _input("Corrected answer")
    feedback_text = input("Feedback (optional): ").strip() or None
    before = len(session.engine.get_pending_rules())
    session.engine.record_correction(
        session.user_id,
        session.last_result.model_ids[0],
        session.last_result.response,
        corrected,
        feedback_text,
        chat_id=session.chat_id,
    )
    print("✓ Correction recorded")
    new_rules = len(session.engine.get_pending_rules()) - before
    if new_rules > 0:
        print(f"💡 {new_rules} new rule(s) proposed. Type 'proposed' to review.")


def _cmd_feedback(session: Session, args: list[str]):
    """Rate the last answer."""
    if not _require_answer(session):
        return
    rating = args[0].lower() if args else _input("Rating (up/down)", "down")
    is_positive = rating in ("up", "+", "good", "y")
    reason = None if is_positive else (input("Reason (optional): ").strip() or None)
    session.engine.record_feedback(
        session.user_id,
        session.last_result.model_ids[0],
        is_positive,
        reason=reason,
        excerpt=session.last_result.response,
        chat_id=session.chat_id,
    )
    print(f"✓ Feedback recorded ({'👍' if is_positive else '👎'})")


def _cmd_proposed(session: Session):
    """List pending rule proposals."""
    rules = session.engine.get_pending_rules()
    if not rules:
        print("\nNo proposed rules.")
        return
    print("\n--- Proposed rules ---\n")
    for i, rule in enumerate(rules, 1):
        print(f"  {i}. [{rule.id[:8]}] {rule.title}")
        print(f"     {rule.description}")
        print(
            f"     Category: {rule.category.value}, Severity: {rule.severity.value}, "
            f"Confidence: {rule.confidence:.2f}"
        )


def _cmd_approve(session: Session, args: list[str]):
    if not args:
        print("Usage: approve <index or id>")
        return
    rule = _pick(session.engine.get_pending_rules(), args[0])
    if rule is None:
        print(f"Rule '{args[0]}' not found.")
        return
    active = session.engine.approve_rule(rule.id, session.user_id)
    print(f"✓ Approved: {active.title}")


def _cmd_reject(session: Session, args: list[str]):
    if not args:
        print("Usage: reject <index or id>")
        return
    rule = _pick(session.engine.get_pending_rules(), args[0])
    if rule is None:
        print(f"Rule '{args[0]}' not found.")
        return
    reason = _input("Reason")
    session.engine.reject_rule(rule.id, reason, rejected_by=session.user_id)
    print(f"✓ Rejected: {rule.title}")


def _cmd_active(session: Session):
    rules = session.engine.get_active_rules()
    if not rules:
        print("\nNo active rules.")
        return
    print("\n--- Active rules ---\n")
    for i, rule in enumerate(rules, 1):
        print(f"  {i}. [{rule.id[:8]}] [{rule.severity.value}] {rule.title}")
        print(f"     {rule.instruction}")


def _cmd_deactivate(session: Session, args: list[str]):
    if not args:
        print("Usage: deactivate <index or id>")
        return
    rule = _pick(session.engine.get_active_rules(), args[0])
    if rule is None:
        print(f"Rule '{args[0]}' not found.")
        return
    session.engine.deactivate_rule(rule.id)
    print(f"✓ Deactivated: {rule.title}")


def _cmd_stats(session: Session):
    """Show learning statistics."""
    stats = session.engine.get_statistics()

    print("\n--- Events ---")
    print(f"  Total: {stats.total_events}")
    for event_type, count in stats.events_by_type.items():
        print(f"  {event_type:<13} {count}")

    print("\n--- Patterns (occurrences) ---")
    for category, count in stats.patterns_by_category.items():
        if count:
            print(f"  {category:<13} {count}")

    print("\n--- Rules ---")
    print(f"  Proposed: {stats.proposed_rules}")
    print(f"  Active:   {stats.active_rules}")
    print(f"  Rejected: {stats.rejected_rules}")


def _cmd_rules(session: Session):
    prompt = session.engine.get_rules_prompt()
    print(f"\n{prompt}" if prompt else "\nNo active rules; models get the default instruction only.")


def _cmd_help():
    """Print available commands."""
    print("\nCommands:")
    for cmd, desc in COMMANDS.items():
        print(f"  {cmd:<12} {desc}")
    print("\nAnything else is sent to the arena as a chat message.")


# --- Main loop ---


def main():
    """Main CLI entry point."""
    try:
        session = _setup()
    except (KeyboardInterrupt, EOFError):
        print("\nBye!")
        return

    _cmd_help()

    while True:
        try:
            line = input(f"\n[{session.mode.value}] > ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nBye!")
            break

        if not line:
            continue

        parts = line.split()
        cmd = ALIASES.get(parts[0].lower(), parts[0].lower())
        args = parts[1:]

        try:
            if cmd == "mode":
                _cmd_mode(session, args)
            elif cmd == "chat":
                _cmd_chat(session, " ".join(args))
            elif cmd == "correct":
                _cmd_correct(session)
            elif cmd == "feedback":
                _cmd_feedback(session, args)
            elif cmd == "proposed":
                _cmd_proposed(session)
            elif cmd == "approve":
                _cmd_approve(session, args)
            elif cmd == "reject":
                _cmd_reject(session, args)
            elif cmd == "active":
                _cmd_active(session)
            elif cmd == "deactivate":
                _cmd_deactivate(session, args)
            elif cmd == "stats":
                _cmd_stats(session)
            elif cmd == "rules":
                _cmd_rules(session)
            elif cmd == "help":
                _cmd_help()
            elif cmd == "quit":
                print("Bye!")
                break
            else:
                _cmd_chat(session, line)
        except KeyboardInterrupt:
            print("\n(interrupted)")
        except LearningError as e:
            print(f"✗ {e}")
        except Exception as e:
            print(f"Error: {e}")


if __name__ == "__main__":
    main()
