"""Tests for rulearena.orchestrator — mode dispatch, aggregation, failure policy."""

import asyncio

import pytest
from conftest import FakeModelClient

from rulearena.core import ActiveRule, ArenaMode, ErrorCategory, Severity
from rulearena.orchestrator import (
    InvalidRequestError,
    classify_task,
    resolve_models,
    select_model,
)
from rulearena.prompts import DEFAULT_INSTRUCTION, SECTION_SEPARATOR
from rulearena.rule_cache import RULES_HEADER

GENERAL = "acme/general"
CODER = "acme/coder"
ANALYST = "acme/analyst"

# Per-call cost with the fake's 10 input / 20 output tokens
COST = {GENERAL: 0.05, CODER: 0.10, ANALYST: 0.25}


def _run(orchestrator, content, mode, selected=None, chat_id="chat-1"):
    return asyncio.run(
        orchestrator.process_message("user-1", chat_id, content, mode, selected)
    )


def _user_prompt(call):
    return call["messages"][-1]["content"]


# =========================================================================
# Pure helpers
# =========================================================================


class TestClassifyTask:
    def test_coding(self):
        assert classify_task("Why does my Python function crash?") == "coding"

    def test_analysis(self):
        assert classify_task("Compare these two proposals") == "analysis"

    def test_creative(self):
        assert classify_task("Write a poem about autumn") == "creative"

    def test_math(self):
        assert classify_task("Calculate the integral of x") == "math"
        assert classify_task("what is 12 * 7") == "math"

    def test_general(self):
        assert classify_task("Hello there, how are you?") == "general"

    def test_first_match_wins(self):
        # coding is checked before analysis
        assert classify_task("Analyze this code") == "coding"


class TestSelectModel:
    def test_capability_match(self, catalog):
        assert select_model([GENERAL, CODER, ANALYST], "coding", catalog) == CODER
        assert select_model([GENERAL, CODER, ANALYST], "math", catalog) == ANALYST

    def test_general_prefers_cheapest(self, catalog):
        assert select_model([ANALYST, CODER, GENERAL], "general", catalog) == GENERAL

    def test_tie_keeps_first(self, catalog):
        assert select_model([ANALYST, GENERAL], "coding", catalog) == ANALYST
        assert select_model([GENERAL, ANALYST], "coding", catalog) == GENERAL

    def test_deterministic(self, catalog):
        models = [GENERAL, CODER, ANALYST]
        picks = {select_model(models, "creative", catalog) for _ in range(5)}
        assert picks == {GENERAL}


class TestResolveModels:
    def test_no_selection_uses_all(self):
        assert resolve_models([GENERAL, CODER]) == [GENERAL, CODER]

    def test_intersection_in_selected_order(self, catalog):
        result = resolve_models([GENERAL, CODER, ANALYST], [ANALYST, "x/unknown", GENERAL], catalog)
        assert result == [ANALYST, GENERAL]

    def test_empty_intersection_falls_back_to_default(self, catalog):
        result = resolve_models([ANALYST, GENERAL, CODER], ["x/unknown"], catalog)
        assert result == [GENERAL]

    def test_duplicates_dropped(self, catalog):
        assert resolve_models([GENERAL, CODER], [CODER, CODER], catalog) == [CODER]


# =========================================================================
# Validation
# =========================================================================


class TestValidation:
    def test_blank_content_rejected_before_dispatch(self, make_orchestrator):
        client = FakeModelClient()
        orch = make_orchestrator(client)
        with pytest.raises(InvalidRequestError):
            _run(orch, "   ", ArenaMode.AUTO_SELECT)
        assert client.calls == []

    def test_unknown_mode(self, make_orchestrator):
        client = FakeModelClient()
        with pytest.raises(InvalidRequestError):
            _run(make_orchestrator(client), "hi", "BATTLE")
        assert client.calls == []

    def test_mode_string_accepted(self, make_orchestrator):
        result = _run(make_orchestrator(FakeModelClient()), "hi", "collaborative")
        assert result.metadata["mode"] == "COLLABORATIVE"

    def test_no_models_available(self, make_orchestrator):
        client = FakeModelClient()
        with pytest.raises(InvalidRequestError):
            _run(make_orchestrator(client, available=[]), "hi", ArenaMode.TESTER)
        assert client.calls == []


# =========================================================================
# Prompt assembly
# =========================================================================


class TestPromptAssembly:
    def test_default_instruction_without_rules(self, make_orchestrator):
        client = FakeModelClient()
        _run(make_orchestrator(client), "Hello", ArenaMode.AUTO_SELECT)
        assert client.calls[0]["messages"][0] == {"role": "system", "content": DEFAULT_INSTRUCTION}

    def test_active_rules_prefix_system_prompt(self, make_orchestrator, store):
        store.save_active_rule(
            ActiveRule(
                id="ar-1",
                proposed_rule_id="pr-1",
                title="Facts",
                instruction="Double-check capitals.",
                category=ErrorCategory.FACTUAL,
                severity=Severity.HIGH,
                approved_by="admin",
            )
        )
        client = FakeModelClient()
        _run(make_orchestrator(client), "Hello", ArenaMode.AUTO_SELECT)

        system = client.calls[0]["messages"][0]["content"]
        assert system.startswith(RULES_HEADER)
        assert "Double-check capitals." in system
        assert system.endswith("\n\n" + DEFAULT_INSTRUCTION)

    def test_history_limited_to_recent_turns(self, make_orchestrator, history):
        for i in range(25):
            history.append("chat-1", "user" if i % 2 == 0 else "assistant", f"turn {i}")
        client = FakeModelClient()
        _run(make_orchestrator(client), "Hello", ArenaMode.AUTO_SELECT)

        messages = client.calls[0]["messages"]
        assert len(messages) == 1 + 20 + 1
        assert messages[1]["content"] == "turn 5"
        assert messages[-2]["content"] == "turn 24"
        assert messages[-1] == {"role": "user", "content": "Hello"}

    def test_generation_settings_passed(self, make_orchestrator):
        client = FakeModelClient()
        _run(make_orchestrator(client), "Hello", ArenaMode.AUTO_SELECT)
        assert client.calls[0]["max_tokens"] == 4096
        assert client.calls[0]["temperature"] == 0.7


# =========================================================================
# Modes
# =========================================================================


class TestAutoSelect:
    def test_single_call_to_best_model(self, make_orchestrator):
        client = FakeModelClient()
        result = _run(make_orchestrator(client), "Fix this python function", ArenaMode.AUTO_SELECT)

        assert client.called_models == [CODER]
        assert result.model_ids == [CODER]
        assert result.response == f"{CODER} answer"
        assert result.tokens.input == 10
        assert result.tokens.output == 20
        assert result.cost == pytest.approx(COST[CODER])
        assert result.metadata["task_type"] == "coding"
        assert result.metadata["processing_time"] >= 0

    def test_selection_respects_chosen_subset(self, make_orchestrator):
        client = FakeModelClient()
        _run(make_orchestrator(client), "Fix this bug", ArenaMode.AUTO_SELECT, [ANALYST, GENERAL])
        assert client.called_models == [ANALYST]

    def test_failure_degrades(self, make_orchestrator):
        client = FakeModelClient(failures=[GENERAL])
        result = _run(make_orchestrator(client), "Hello", ArenaMode.AUTO_SELECT)

        assert result.is_error
        assert result.response.startswith(f"⚠️ {GENERAL} failed to respond")
        assert result.cost == 0.0
        assert result.tokens.total == 0


class TestCollaborative:
    def test_all_models_concatenated(self, make_orchestrator):
        client = FakeModelClient()
        result = _run(make_orchestrator(client), "Hello", ArenaMode.COLLABORATIVE)

        assert client.called_models == [GENERAL, CODER, ANALYST]
        sections = result.response.split(SECTION_SEPARATOR)
        assert sections == [
            f"### Acme General\n\n{GENERAL} answer",
            f"### Acme Coder\n\n{CODER} answer",
            f"### Acme Analyst\n\n{ANALYST} answer",
        ]
        assert result.model_id == f"{GENERAL}+{CODER}+{ANALYST}"
        assert result.tokens.input == 30
        assert result.tokens.output == 60
        assert result.cost == pytest.approx(sum(COST.values()))
        assert result.metadata["error"] is False

    def test_at_most_three_models(self, make_orchestrator, model_ids):
        client = FakeModelClient()
        orch = make_orchestrator(client, available=model_ids + ["other/model"])
        _run(orch, "Hello", ArenaMode.COLLABORATIVE)
        assert len(client.calls) == 3
        assert "other/model" not in client.called_models

    def test_one_failure_keeps_others(self, make_orchestrator):
        client = FakeModelClient(failures=[CODER])
        result = _run(make_orchestrator(client), "Hello", ArenaMode.COLLABORATIVE)

        assert f"⚠️ {CODER} failed to respond" in result.response
        assert f"{GENERAL} answer" in result.response
        assert f"{ANALYST} answer" in result.response
        assert result.cost == pytest.approx(COST[GENERAL] + COST[ANALYST])
        assert result.tokens.input == 20
        assert result.metadata["error"] is False
        assert [c["error"] for c in result.metadata["calls"]] == [False, True, False]

    def test_failure_logged_once(self, make_orchestrator, caplog):
        client = FakeModelClient(failures=[CODER])
        with caplog.at_level("WARNING", logger="rulearena"):
            _run(make_orchestrator(client), "Hello", ArenaMode.COLLABORATIVE)

        failures = [r for r in caplog.records if CODER in r.getMessage()]
        assert len(failures) == 1
        assert failures[0].name == "rulearena.orchestrator"

    def test_all_failures_flag_error(self, make_orchestrator):
        client = FakeModelClient(failures=[GENERAL, CODER, ANALYST])
        result = _run(make_orchestrator(client), "Hello", ArenaMode.COLLABORATIVE)
        assert result.is_error
        assert result.cost == 0.0

    def test_calls_run_concurrently(self, make_orchestrator):
        client = FakeModelClient(delay=0.05)
        _run(make_orchestrator(client), "Hello", ArenaMode.COLLABORATIVE)
        assert client.max_in_flight == 3


class TestDivideConquer:
    def test_subtasks_round_robin(self, make_orchestrator):
        client = FakeModelClient()
        result = _run(
            make_orchestrator(client), "a todo app", ArenaMode.DIVIDE_CONQUER, [GENERAL, CODER]
        )

        dispatched = sorted((c["model_id"], _user_prompt(c)) for c in client.calls)
        assert dispatched == sorted(
            [
                (GENERAL, "Analyze: a todo app"),
                (CODER, "Build a solution for: a todo app"),
                (GENERAL, "Optimize: a todo app"),
            ]
        )
        assert result.response.startswith("### Step 1: Analysis (Acme General)")
        assert "### Step 2: Solution (Acme Coder)" in result.response
        assert "### Step 3: Optimization (Acme General)" in result.response
        assert result.model_ids == [GENERAL, CODER]
        assert result.tokens.input == 30
        assert result.cost == pytest.approx(2 * COST[GENERAL] + COST[CODER])

    def test_single_model_takes_all_subtasks(self, make_orchestrator):
        client = FakeModelClient()
        _run(make_orchestrator(client), "x", ArenaMode.DIVIDE_CONQUER, [ANALYST])
        assert client.called_models == [ANALYST] * 3

    def test_calls_run_concurrently(self, make_orchestrator):
        client = FakeModelClient(delay=0.05)
        _run(make_orchestrator(client), "a todo app", ArenaMode.DIVIDE_CONQUER)
        assert client.max_in_flight == 3


class TestProject:
    def test_phases_run_in_order_and_feed_forward(self, make_orchestrator):
        client = FakeModelClient(
            replies={GENERAL: "PLAN-TEXT", CODER: "EXECUTION-TEXT", ANALYST: "REVIEW-TEXT"}
        )
        result = _run(make_orchestrator(client), "Build a CLI", ArenaMode.PROJECT)

        assert client.called_models == [GENERAL, CODER, ANALYST]
        assert "PLAN-TEXT" in _user_prompt(client.calls[1])
        assert "EXECUTION-TEXT" in _user_prompt(client.calls[2])
        assert result.response == f"EXECUTION-TEXT{SECTION_SEPARATOR}## Review\n\nREVIEW-TEXT"
        assert result.metadata["plan"] == "PLAN-TEXT"
        assert result.cost == pytest.approx(sum(COST.values()))

    def test_single_model_fills_every_role(self, make_orchestrator):
        client = FakeModelClient()
        result = _run(make_orchestrator(client), "Build a CLI", ArenaMode.PROJECT, [CODER])
        assert client.called_models == [CODER, CODER, CODER]
        assert result.model_ids == [CODER]
        assert result.tokens.input == 30

    def test_two_models_reuse_executor_for_review(self, make_orchestrator):
        client = FakeModelClient()
        _run(make_orchestrator(client), "Build a CLI", ArenaMode.PROJECT, [ANALYST, GENERAL])
        assert client.called_models == [ANALYST, GENERAL, GENERAL]

    def test_phases_never_overlap(self, make_orchestrator):
        client = FakeModelClient(delay=0.02)
        _run(make_orchestrator(client), "Build a CLI", ArenaMode.PROJECT)
        assert client.max_in_flight == 1

    def test_failed_plan_still_completes(self, make_orchestrator):
        client = FakeModelClient(failures=[GENERAL])
        result = _run(make_orchestrator(client), "Build a CLI", ArenaMode.PROJECT)
        assert len(client.calls) == 3
        assert f"⚠️ {GENERAL} failed to respond" in _user_prompt(client.calls[1])
        assert result.metadata["error"] is False


class TestTester:
    def test_multiple_responses_no_consensus(self, make_orchestrator):
        client = FakeModelClient()
        result = _run(make_orchestrator(client), "Hello", ArenaMode.TESTER)

        assert result.metadata["agreement"] == 0.7
        assert result.metadata["consensus"] is False
        assert result.response.count(SECTION_SEPARATOR) == 2
        assert result.cost == pytest.approx(sum(COST.values()))

    def test_single_model_consensus(self, make_orchestrator):
        client = FakeModelClient()
        result = _run(make_orchestrator(client), "Hello", ArenaMode.TESTER, [CODER])

        assert result.metadata["agreement"] == 1.0
        assert result.metadata["consensus"] is True
        assert result.response == f"{CODER} answer"

    def test_only_one_success_returns_its_text(self, make_orchestrator):
        client = FakeModelClient(failures=[GENERAL, CODER])
        result = _run(make_orchestrator(client), "Hello", ArenaMode.TESTER)

        assert result.metadata["consensus"] is True
        assert result.response == f"{ANALYST} answer"
        assert result.cost == pytest.approx(COST[ANALYST])
        assert result.model_ids == [GENERAL, CODER, ANALYST]

    def test_calls_run_concurrently(self, make_orchestrator):
        client = FakeModelClient(delay=0.05)
        _run(make_orchestrator(client), "Hello", ArenaMode.TESTER)
        assert client.max_in_flight == 3
