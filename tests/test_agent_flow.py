"""End-to-end tests of one agent turn.

These tests verify:
1. Default routing between the model and tool nodes
2. jump / terminate / retry issued from hooks
3. Context validation before any inference call
4. Provider and tool executor failures
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import tool
from langgraph.errors import GraphRecursionError

from agents_with_middleware import (
    ConfigurationError,
    ContextValidationError,
    ControlTerminationError,
    ExternalCallError,
    FieldSpec,
    RetryExhaustedError,
    create_agent,
    define_middleware,
)
from agents_with_middleware.standard import model_retry

from conftest import ScriptedProvider, ai, tool_call


COUNT = [FieldSpec("count", int, default=0)]


@tool
def echo(text: str) -> str:
    """Echo the text back."""
    return text


@tool
def shout(text: str) -> str:
    """Echo the text back in capitals."""
    return text.upper()


# =============================================================================
# Default routing
# =============================================================================

class TestDefaultLoop:
    """Tests for the loop without control actions."""

    def test_single_model_call_ends_turn(self, provider, executor):
        provider.queue(ai("Hello!"))
        agent = create_agent(provider=provider, tool_executor=executor)

        state = agent.invoke("Hi")

        assert [type(m) for m in state["messages"]] == [HumanMessage, AIMessage]
        assert state["messages"][-1].content == "Hello!"
        assert provider.call_count == 1
        assert executor.calls == []

    def test_tool_calls_run_before_next_model_call(self, provider, executor):
        provider.queue(
            ai("", tool_calls=[tool_call("add", "c1", a=2, b=3)]),
            ai("The answer is 5"),
        )
        agent = create_agent(provider=provider, tool_executor=executor)

        state = agent.invoke("What is 2 + 3?")

        messages = state["messages"]
        assert [type(m) for m in messages] == [HumanMessage, AIMessage, ToolMessage, AIMessage]
        assert messages[2].content == "5"
        assert messages[2].tool_call_id == "c1"
        assert [c.name for c in executor.calls] == ["add"]
        assert isinstance(provider.calls[1].messages[-1], ToolMessage)

    def test_tool_errors_become_error_tool_messages(self, provider, executor):
        provider.queue(ai("", tool_calls=[tool_call("missing", "c1")]), ai("Sorry"))
        seen = []
        observer = define_middleware(
            "Observer",
            before_model=lambda state, runtime, controls: seen.append(list(runtime.tool_errors)),
        )
        agent = create_agent(middlewares=[observer], provider=provider, tool_executor=executor)

        state = agent.invoke("Use a tool")

        tool_message = state["messages"][2]
        assert tool_message.status == "error"
        assert "not found" in tool_message.content
        assert seen[0] == []
        assert [r.id for r in seen[1]] == ["c1"]

    def test_runtime_iteration_counts_model_entries(self, provider, executor):
        provider.queue(
            ai("", tool_calls=[tool_call("echo", "c1", text="a")]),
            ai("", tool_calls=[tool_call("echo", "c2", text="b")]),
            ai("done"),
        )
        iterations = []
        observer = define_middleware(
            "Observer",
            before_model=lambda state, runtime, controls: iterations.append(runtime.current_iteration),
        )
        agent = create_agent(middlewares=[observer], provider=provider, tool_executor=executor)

        agent.invoke("Echo twice")

        assert iterations == [1, 2, 3]

    def test_run_returns_last_ai_content(self, provider, executor):
        provider.queue(ai("Final words"))
        agent = create_agent(provider=provider, tool_executor=executor)

        assert agent.run("Hi") == "Final words"

    def test_stream_yields_each_ai_message(self, provider, executor):
        provider.queue(
            ai("Let me check", tool_calls=[tool_call("echo", "c1", text="x")]),
            ai("Checked"),
        )
        agent = create_agent(provider=provider, tool_executor=executor)

        assert list(agent.stream("Check")) == ["Let me check", "Checked"]

    def test_turns_are_independent(self, provider, executor):
        counter = define_middleware(
            "Counter",
            state_schema=COUNT,
            before_model=lambda state, runtime, controls: {"count": state["count"] + 1},
        )
        agent = create_agent(middlewares=[counter], provider=provider, tool_executor=executor)

        assert agent.invoke("one")["count"] == 1
        assert agent.invoke("two")["count"] == 1
        assert agent.default_state() == {"messages": [], "count": 0}


# =============================================================================
# Prepared call
# =============================================================================

class TestPreparedCall:
    """Tests for what reaches the inference provider."""

    def test_defaults_fill_unset_fields(self, provider):
        agent = create_agent(model="default-model", tools=[echo, shout], provider=provider)

        agent.invoke("Hi")

        call = provider.calls[0]
        assert call.model == "default-model"
        assert [t.name for t in call.tools] == ["echo", "shout"]
        assert call.system_message is None

    def test_tool_names_are_resolved_from_registry(self, provider):
        selector = define_middleware(
            "Selector",
            prepare_call=lambda call, state, runtime: {"tools": ["shout", "unknown"], "tool_choice": "any"},
        )
        agent = create_agent(middlewares=[selector], tools=[echo, shout], provider=provider)

        agent.invoke("Hi")

        assert provider.calls[0].tools == [shout]
        assert provider.calls[0].tool_choice == "any"

    def test_before_model_message_patches_are_sent(self, provider, executor):
        reminder = define_middleware(
            "Reminder",
            before_model=lambda state, runtime, controls: {
                "messages": [*state["messages"], SystemMessage(content="Be nice")]
            },
        )
        agent = create_agent(middlewares=[reminder], provider=provider, tool_executor=executor)

        agent.invoke("Hi")

        assert [m.content for m in provider.calls[0].messages] == ["Hi", "Be nice"]

    def test_prepared_messages_are_sent_without_changing_state(self, provider, executor):
        shaper = define_middleware(
            "Shaper",
            prepare_call=lambda call, state, runtime: {"messages": [HumanMessage(content="rewritten")]},
        )
        agent = create_agent(middlewares=[shaper], provider=provider, tool_executor=executor)

        state = agent.invoke("original")

        assert [m.content for m in provider.calls[0].messages] == ["rewritten"]
        assert state["messages"][0].content == "original"

    def test_prepare_call_sees_context(self, provider, executor):
        prompt = define_middleware(
            "Prompt",
            context_schema=[FieldSpec("user_name", str)],
            prepare_call=lambda call, state, runtime: {
                "system_message": f"You are talking to {runtime.context['user_name']}."
            },
        )
        agent = create_agent(middlewares=[prompt], provider=provider, tool_executor=executor)

        agent.invoke("Hi", {"user_name": "Sam"})

        assert provider.calls[0].system_message == "You are talking to Sam."


# =============================================================================
# Control actions
# =============================================================================

class TestControlActions:
    """Tests for jump, terminate and retry issued from hooks."""

    def test_terminate_result_supersedes_earlier_patches(self, provider, executor):
        m1 = define_middleware(
            "M1",
            state_schema=COUNT,
            before_model=lambda state, runtime, controls: {"count": state["count"] + 1},
        )
        m2 = define_middleware(
            "M2",
            before_model=lambda state, runtime, controls: controls.terminate({"count": 99}),
        )
        agent = create_agent(middlewares=[m1, m2], provider=provider, tool_executor=executor)

        state = agent.invoke("Hi")

        assert state["count"] == 99
        assert provider.call_count == 0
        assert [m.content for m in state["messages"]] == ["Hi"]

    def test_terminate_error_skips_later_hooks_and_provider(self, provider, executor):
        calls = []

        def record(name):
            return lambda state, runtime, controls: calls.append(name)

        guard = define_middleware(
            "Guard",
            before_model=lambda state, runtime, controls: controls.terminate(error=PermissionError("blocked")),
        )
        agent = create_agent(
            middlewares=[
                define_middleware("First", before_model=record("First")),
                guard,
                define_middleware("Last", before_model=record("Last"), after_model=record("LastAfter")),
            ],
            provider=provider,
            tool_executor=executor,
        )

        with pytest.raises(ControlTerminationError) as exc:
            agent.invoke("Hi")

        assert calls == ["First"]
        assert provider.call_count == 0
        assert exc.value.middleware == "Guard"
        assert isinstance(exc.value.error, PermissionError)

    def test_terminate_with_exception_as_result_fails_the_turn(self, provider, executor):
        stopper = define_middleware(
            "B",
            after_model=lambda state, runtime, controls: controls.terminate(
                RuntimeError("middleware B terminated")
            ),
        )
        agent = create_agent(middlewares=[stopper], provider=provider, tool_executor=executor)

        with pytest.raises(ControlTerminationError, match="middleware B terminated") as exc:
            agent.invoke("Hi")

        assert exc.value.middleware == "B"
        assert isinstance(exc.value.error, RuntimeError)
        assert provider.call_count == 1

    def test_jump_to_tools_from_after_model(self, provider, executor):
        provider.queue(ai("", tool_calls=[tool_call("add", "c1", a=1, b=1)]), ai("2"))
        prepared = []

        def after_model(state, runtime, controls):
            if runtime.tool_calls:
                return controls.jump_to("tools", {"route": "jumped"})
            return None

        def prepare_call(call, state, runtime):
            prepared.append((state["route"], [r.result for r in runtime.tool_results], len(executor.calls)))

        router = define_middleware(
            "Router",
            state_schema=[FieldSpec("route", str, default="")],
            prepare_call=prepare_call,
            after_model=after_model,
        )
        agent = create_agent(middlewares=[router], provider=provider, tool_executor=executor)

        state = agent.invoke("1 + 1?")

        assert prepared == [("", [], 0), ("jumped", [2], 1)]
        assert state["route"] == "jumped"

    def test_jump_to_model_reenters_with_new_iteration(self, provider, executor):
        iterations = []

        def before_model(state, runtime, controls):
            iterations.append(runtime.current_iteration)
            if state["count"] < 2:
                return controls.jump_to("model", {"count": state["count"] + 1})
            return None

        looper = define_middleware("Looper", state_schema=COUNT, before_model=before_model)
        agent = create_agent(middlewares=[looper], provider=provider, tool_executor=executor)

        state = agent.invoke("Hi")

        assert iterations == [1, 2, 3]
        assert state["count"] == 2
        assert provider.call_count == 1

    def test_retry_patch_is_visible_on_reentry(self, provider, executor):
        provider.queue(ai("first"), ai("second"))
        seen = []

        def after_model(state, runtime, controls):
            seen.append((state["attempt"], runtime.current_iteration))
            if state["attempt"] == 0:
                return controls.retry({"attempt": 1}, reason="try again")
            return None

        retrier = define_middleware(
            "Retrier",
            state_schema=[FieldSpec("attempt", int, default=0)],
            after_model=after_model,
        )
        agent = create_agent(middlewares=[retrier], provider=provider, tool_executor=executor)

        state = agent.invoke("Hi")

        assert seen == [(0, 1), (1, 1)]
        assert state["attempt"] == 1
        # Messages appended before the retry stay in state
        assert [m.content for m in state["messages"]] == ["Hi", "first", "second"]

    def test_fourth_retry_raises_retry_exhausted(self, provider, executor):
        always = define_middleware(
            "Always",
            after_model=lambda state, runtime, controls: controls.retry(reason="never good", max_attempts=3),
        )
        agent = create_agent(middlewares=[always], provider=provider, tool_executor=executor)

        with pytest.raises(RetryExhaustedError) as exc:
            agent.invoke("Hi")

        assert exc.value.attempts == 4
        assert exc.value.reason == "never good"
        assert provider.call_count == 4

    def test_retry_exhausted_carries_reasons_from_every_attempt(self, provider, executor):
        def after_model(state, runtime, controls):
            return controls.retry(
                {"attempt": state["attempt"] + 1},
                reason=f"attempt {state['attempt']} rejected",
                max_attempts=2,
            )

        picky = define_middleware(
            "Picky",
            state_schema=[FieldSpec("attempt", int, default=0)],
            after_model=after_model,
        )
        agent = create_agent(middlewares=[picky], provider=provider, tool_executor=executor)

        with pytest.raises(RetryExhaustedError) as exc:
            agent.invoke("Hi")

        assert exc.value.reasons == ["attempt 0 rejected", "attempt 1 rejected", "attempt 2 rejected"]
        assert exc.value.reason == "attempt 2 rejected"

    def test_endless_jumps_hit_recursion_limit(self, provider, executor):
        spinner = define_middleware(
            "Spinner",
            before_model=lambda state, runtime, controls: controls.jump_to("model"),
        )
        agent = create_agent(
            middlewares=[spinner], provider=provider, tool_executor=executor, recursion_limit=5
        )

        with pytest.raises(GraphRecursionError):
            agent.invoke("Hi")


# =============================================================================
# Validation and failures
# =============================================================================

class TestFailures:
    """Tests for configuration, context and external call failures."""

    def test_missing_context_field_aborts_before_inference(self, provider, executor):
        agent = create_agent(
            context_schema=[FieldSpec("userId", str)], provider=provider, tool_executor=executor
        )

        with pytest.raises(ContextValidationError) as exc:
            agent.invoke("Hi", {})

        assert "userId" in exc.value.fields
        assert provider.call_count == 0

    def test_duplicate_middleware_names_are_rejected(self, provider):
        with pytest.raises(ConfigurationError):
            create_agent(middlewares=[define_middleware("Same"), define_middleware("Same")], provider=provider)

    def test_non_middleware_items_are_rejected(self, provider):
        with pytest.raises(ConfigurationError):
            create_agent(middlewares=[lambda state: None], provider=provider)

    def test_provider_failure_raises_external_call_error(self, provider, executor):
        provider.queue(RuntimeError("service unavailable"))
        agent = create_agent(provider=provider, tool_executor=executor)

        with pytest.raises(ExternalCallError) as exc:
            agent.invoke("Hi")

        assert exc.value.source == "model"
        assert isinstance(exc.value.__cause__, RuntimeError)

    def test_after_hooks_see_provider_failure(self, provider, executor):
        provider.queue(RuntimeError("timeout"), ai("recovered"))
        agent = create_agent(middlewares=[model_retry()], provider=provider, tool_executor=executor)

        assert agent.run("Hi") == "recovered"
        assert provider.call_count == 2

    def test_model_retry_gives_up_after_max_retries(self, executor):
        provider = ScriptedProvider(*[RuntimeError("down")] * 5)
        agent = create_agent(middlewares=[model_retry()], provider=provider, tool_executor=executor)

        with pytest.raises(RetryExhaustedError):
            agent.invoke("Hi", {"max_model_retries": 2})

        assert provider.call_count == 3

    def test_tool_executor_failure_raises_external_call_error(self, provider):
        class BrokenExecutor:
            def execute(self, call):
                raise OSError("sandbox gone")

        provider.queue(ai("", tool_calls=[tool_call("echo", "c1", text="x")]))
        agent = create_agent(provider=provider, tool_executor=BrokenExecutor())

        with pytest.raises(ExternalCallError) as exc:
            agent.invoke("Hi")

        assert exc.value.source == "tools"

    def test_hook_exceptions_propagate(self, provider, executor):
        def broken(state, runtime, controls):
            raise KeyError("oops")

        agent = create_agent(
            middlewares=[define_middleware("Broken", before_model=broken)],
            provider=provider,
            tool_executor=executor,
        )

        with pytest.raises(KeyError):
            agent.invoke("Hi")
        assert provider.call_count == 0

    def test_default_provider_without_model_fails_at_construction(self, executor):
        with pytest.raises(ConfigurationError, match="model"):
            create_agent(tool_executor=executor)

    def test_unknown_model_name_is_an_external_call_error(self, executor):
        llm = MagicMock()
        llm.invoke.return_value = AIMessage(content="from default")
        picker = define_middleware(
            "Picker",
            prepare_call=lambda call, state, runtime: {"model": "fast"} if runtime.context["pick"] else None,
            context_schema=[FieldSpec("pick", bool, default=True)],
        )
        agent = create_agent(middlewares=[picker], model=llm, tool_executor=executor)

        with pytest.raises(ExternalCallError, match="Unknown model 'fast'") as exc:
            agent.invoke("Hi")

        assert exc.value.source == "model"
        assert isinstance(exc.value.__cause__, LookupError)
        assert agent.run("Hi", {"pick": False}) == "from default"

    def test_unknown_model_name_reaches_after_hooks(self, executor):
        picker = define_middleware(
            "Picker",
            prepare_call=lambda call, state, runtime: {"model": "fast"},
        )
        agent = create_agent(middlewares=[picker, model_retry()], model=MagicMock(), tool_executor=executor)

        with pytest.raises(RetryExhaustedError) as exc:
            agent.invoke("Hi", {"max_model_retries": 2})

        assert exc.value.attempts == 3

    def test_recursion_limit_from_environment(self, provider, monkeypatch):
        monkeypatch.setenv("AGENTS_WITH_MIDDLEWARE_RECURSION_LIMIT", "7")
        assert create_agent(provider=provider).recursion_limit == 7

        monkeypatch.setenv("AGENTS_WITH_MIDDLEWARE_RECURSION_LIMIT", "lots")
        with pytest.raises(ConfigurationError):
            create_agent(provider=provider)
