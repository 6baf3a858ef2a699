"""Arena orchestrator: turns one user turn into provider calls and one result.

Five strategies (see ArenaMode). Every provider call is caught on its own,
so a failing model degrades the answer instead of failing the turn. The
orchestrator keeps no state between turns; history and rules are fetched
again on every call.
"""

import asyncio
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Union

from rulearena.client import build_messages
from rulearena.core import ArenaMode, ChatTurn, OrchestratorResult, TokenUsage
from rulearena.models import MODEL_CATALOG, ModelSpec, calculate_cost, default_model, get_model
from rulearena.prompts import (
    EXECUTOR_TEMPLATE,
    PLANNER_TEMPLATE,
    REVIEWER_TEMPLATE,
    SECTION_SEPARATOR,
    build_subtasks,
    build_system_prompt,
    error_text,
    model_section,
    step_section,
)
from rulearena.rule_cache import RulePromptCache

logger = logging.getLogger(__name__)

MAX_PARALLEL_MODELS = 3
CAPABILITY_MATCH_SCORE = 10.0
TESTER_MULTI_AGREEMENT = 0.7
TESTER_CONSENSUS_THRESHOLD = 0.8

# Checked in order; the first match decides the task type
TASK_PATTERNS = [
    (
        "coding",
        re.compile(
            r"\b(code|coding|function|bug|debug\w*|python|javascript|typescript|java|"
            r"sql|api|script|compile\w*|refactor\w*|regex)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "analysis",
        re.compile(
            r"\b(analy[sz]e|analysis|compare|comparison|evaluate|assess\w*|"
            r"pros and cons|trade-?offs?|explain why|summari[sz]e)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "creative",
        re.compile(
            r"\b(story|poem|poetry|lyrics|creative|fiction|imagine|slogan|brainstorm)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "math",
        re.compile(
            r"\b(calculate|compute|solve|equation|integral|derivative|probability|"
            r"math\w*)\b|\d+\s*[-+*/^]\s*\d+",
            re.IGNORECASE,
        ),
    ),
]


class InvalidRequestError(ValueError):
    """Precondition violation detected before any provider call."""


class ChatHistory(Protocol):
    def get_recent_turns(self, chat_id: str, limit: int) -> List[ChatTurn]: ...


class CompletionClient(Protocol):
    async def complete(self, model_id, messages, max_tokens=None, temperature=None): ...


@dataclass
class CallResult:
    """Outcome of one provider call, successful or synthetic"""

    model_id: str
    text: str
    tokens: TokenUsage
    cost: float = 0.0
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return {
            "model_id": self.model_id,
            "tokens": self.tokens.to_dict(),
            "cost": self.cost,
            "error": self.failed,
            "error_message": self.error,
        }


# ============================================================================
# PURE HELPERS
# ============================================================================


def classify_task(content: str) -> str:
    """coding | analysis | creative | math | general"""
    for task_type, pattern in TASK_PATTERNS:
        if pattern.search(content):
            return task_type
    return "general"


def score_model(spec: ModelSpec, task_type: str) -> float:
    if task_type == "general":
        return -spec.unit_cost
    return CAPABILITY_MATCH_SCORE if task_type in spec.capabilities else 0.0


def select_model(
    models: Sequence[str], task_type: str, catalog: Optional[Dict[str, ModelSpec]] = None
) -> str:
    """Highest score wins; ties keep the earliest model in `models`."""
    best_id = models[0]
    best_score = score_model(get_model(best_id, catalog), task_type)
    for model_id in models[1:]:
        score = score_model(get_model(model_id, catalog), task_type)
        if score > best_score:
            best_id, best_score = model_id, score
    return best_id


def resolve_models(
    available: Sequence[str],
    selected: Optional[Sequence[str]] = None,
    catalog: Optional[Dict[str, ModelSpec]] = None,
) -> List[str]:
    """Intersect the selection with what the user may call.

    No selection means every available model. An empty intersection falls
    back to the single default model.
    """
    if not selected:
        return list(dict.fromkeys(available))
    allowed = set(available)
    models = [m for m in dict.fromkeys(selected) if m in allowed]
    if not models:
        return [default_model(available, catalog)]
    return models


# ============================================================================
# ORCHESTRATOR
# ============================================================================


class Orchestrator:
    """Mode-dispatch engine for the arena"""

    def __init__(
        self,
        client: CompletionClient,
        history: ChatHistory,
        available_models: Callable[[str], Sequence[str]],
        rule_cache: Optional[RulePromptCache] = None,
        catalog: Optional[Dict[str, ModelSpec]] = None,
        history_limit: int = 20,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        """
        Args:
            client: Model-invocation client with an async complete() method.
            history: Chat history provider (chat_id -> turns, oldest first).
            available_models: Resolves the model ids a user may call. Tier
                gating happens there, not here.
            rule_cache: Source of the learned-rules prompt. No cache means
                no rules.
            catalog: Model catalog for names, capabilities and rates.
            history_limit: Number of prior turns sent with each call.
            max_tokens: max_tokens passed on every provider call.
            temperature: temperature passed on every provider call.
        """
        self.client = client
        self.history = history
        self.available_models = available_models
        self.rule_cache = rule_cache
        self.catalog = MODEL_CATALOG if catalog is None else catalog
        self.history_limit = history_limit
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def process_message(
        self,
        user_id: str,
        chat_id: Optional[str],
        content: str,
        mode: Union[ArenaMode, str],
        selected_models: Optional[Sequence[str]] = None,
    ) -> OrchestratorResult:
        """Run one user turn through the chosen arena mode.

        Raises:
            InvalidRequestError: blank content, unknown mode or no models.
        """
        if not content or not content.strip():
            raise InvalidRequestError("Message content must not be empty")
        mode = self._parse_mode(mode)

        available = list(self.available_models(user_id) or [])
        if not available:
            raise InvalidRequestError(f"No models available for user {user_id}")

        models = resolve_models(available, selected_models, self.catalog)
        history = (
            self.history.get_recent_turns(chat_id, self.history_limit) if chat_id else []
        )
        rules_prompt = self.rule_cache.get_prompt() if self.rule_cache else ""
        system_prompt = build_system_prompt(rules_prompt)

        logger.info(
            "Arena %s for chat %s with %d model(s)", mode.value, chat_id, len(models)
        )
        start = time.perf_counter()

        handlers = {
            ArenaMode.AUTO_SELECT: self._run_auto_select,
            ArenaMode.COLLABORATIVE: self._run_collaborative,
            ArenaMode.DIVIDE_CONQUER: self._run_divide_conquer,
            ArenaMode.PROJECT: self._run_project,
            ArenaMode.TESTER: self._run_tester,
        }
        result = await handlers[mode](content, models, history, system_prompt)

        result.metadata["processing_time"] = time.perf_counter() - start
        result.metadata["rules_applied"] = bool(rules_prompt)
        return result

    @staticmethod
    def _parse_mode(mode: Union[ArenaMode, str]) -> ArenaMode:
        if isinstance(mode, ArenaMode):
            return mode
        try:
            return ArenaMode(str(mode).upper())
        except ValueError:
            raise InvalidRequestError(f"Unknown arena mode: {mode!r}") from None

    def _model_name(self, model_id: str) -> str:
        return get_model(model_id, self.catalog).name

    # ========================================
    # Provider calls
    # ========================================

    async def _call_model(
        self,
        model_id: str,
        system_prompt: str,
        history: Sequence[ChatTurn],
        prompt: str,
    ) -> CallResult:
        """One provider call. Never raises; failures become synthetic results."""
        messages = build_messages(system_prompt, history, prompt)
        try:
            completion = await self.client.complete(
                model_id,
                messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.warning("Model %s failed: %s", model_id, e)
            return CallResult(
                model_id=model_id,
                text=error_text(model_id, e),
                tokens=TokenUsage(),
                cost=0.0,
                error=str(e) or e.__class__.__name__,
            )

        tokens = TokenUsage(completion.input_tokens, completion.output_tokens)
        return CallResult(
            model_id=model_id,
            text=completion.text,
            tokens=tokens,
            cost=calculate_cost(model_id, tokens.input, tokens.output, self.catalog),
        )

    async def _fan_out(
        self,
        model_ids: Sequence[str],
        prompts: Sequence[str],
        system_prompt: str,
        history: Sequence[ChatTurn],
    ) -> List[CallResult]:
        """Dispatch all calls concurrently and wait for every one to settle."""
        return list(
            await asyncio.gather(
                *(
                    self._call_model(model_id, system_prompt, history, prompt)
                    for model_id, prompt in zip(model_ids, prompts)
                )
            )
        )

    def _aggregate(
        self,
        mode: ArenaMode,
        calls: Sequence[CallResult],
        response: str,
        **extra,
    ) -> OrchestratorResult:
        tokens = TokenUsage()
        cost = 0.0
        for call in calls:
            tokens = tokens + call.tokens
            cost += call.cost

        metadata = {
            "mode": mode.value,
            "calls": [c.to_dict() for c in calls],
            "error": all(c.failed for c in calls),
            "failed_calls": sum(1 for c in calls if c.failed),
        }
        metadata.update(extra)
        return OrchestratorResult(
            response=response,
            model_ids=list(dict.fromkeys(c.model_id for c in calls)),
            tokens=tokens,
            cost=cost,
            metadata=metadata,
        )

    def _concatenate(self, calls: Sequence[CallResult]) -> str:
        return SECTION_SEPARATOR.join(
            model_section(self._model_name(c.model_id), c.text) for c in calls
        )

    # ========================================
    # Modes
    # ========================================

    async def _run_auto_select(self, content, models, history, system_prompt):
        task_type = classify_task(content)
        model_id = select_model(models, task_type, self.catalog)
        logger.info("Task classified as %s, selected %s", task_type, model_id)

        call = await self._call_model(model_id, system_prompt, history, content)
        return self._aggregate(ArenaMode.AUTO_SELECT, [call], call.text, task_type=task_type)

    async def _run_collaborative(self, content, models, history, system_prompt):
        chosen = models[:MAX_PARALLEL_MODELS]
        calls = await self._fan_out(chosen, [content] * len(chosen), system_prompt, history)
        return self._aggregate(ArenaMode.COLLABORATIVE, calls, self._concatenate(calls))

    async def _run_divide_conquer(self, content, models, history, system_prompt):
        subtasks = build_subtasks(content)
        assigned = [models[i % len(models)] for i in range(len(subtasks))]
        calls = await self._fan_out(
            assigned, [prompt for _, prompt in subtasks], system_prompt, history
        )

        sections = [
            step_section(i, title, self._model_name(call.model_id), call.text)
            for i, ((title, _), call) in enumerate(zip(subtasks, calls), start=1)
        ]
        return self._aggregate(
            ArenaMode.DIVIDE_CONQUER,
            calls,
            SECTION_SEPARATOR.join(sections),
            subtasks=[title for title, _ in subtasks],
        )

    async def _run_project(self, content, models, history, system_prompt):
        planner = models[0]
        executor = models[1] if len(models) > 1 else planner
        reviewer = models[2] if len(models) > 2 else executor

        # Each phase embeds the previous phase's output, so they run in order
        plan = await self._call_model(
            planner, system_prompt, history, PLANNER_TEMPLATE.format(content=content)
        )
        execution = await self._call_model(
            executor,
            system_prompt,
            history,
            EXECUTOR_TEMPLATE.format(content=content, plan=plan.text),
        )
        review = await self._call_model(
            reviewer,
            system_prompt,
            history,
            REVIEWER_TEMPLATE.format(content=content, execution=execution.text),
        )

        response = f"{execution.text}{SECTION_SEPARATOR}## Review\n\n{review.text}"
        return self._aggregate(
            ArenaMode.PROJECT,
            [plan, execution, review],
            response,
            plan=plan.text,
            phases={"planner": planner, "executor": executor, "reviewer": reviewer},
        )

    async def _run_tester(self, content, models, history, system_prompt):
        chosen = models[:MAX_PARALLEL_MODELS]
        calls = await self._fan_out(chosen, [content] * len(chosen), system_prompt, history)

        # TODO: replace the fixed agreement score with a comparison of the
        # responses once product defines how agreement should be measured
        responded = [c for c in calls if not c.failed]
        agreement = TESTER_MULTI_AGREEMENT if len(responded) > 1 else 1.0
        consensus = agreement > TESTER_CONSENSUS_THRESHOLD

        if consensus:
            response = (responded[0] if responded else calls[0]).text
        else:
            response = self._concatenate(calls)

        return self._aggregate(
            ArenaMode.TESTER,
            calls,
            response,
            agreement=agreement,
            consensus=consensus,
        )
