"""Main Agent class for agents-with-middleware library."""
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence
import logging
import os

from langchain_core.messages import AIMessage

from agents_with_middleware.errors import ConfigurationError
from agents_with_middleware.graph.builder import create_agent_graph
from agents_with_middleware.graph.nodes import initial_loop_state, user_message
from agents_with_middleware.graph.state import LoopState, MODEL_NODE
from agents_with_middleware.middleware.base import Middleware
from agents_with_middleware.middleware.pipeline import HookPipeline
from agents_with_middleware.middleware.runtime import Runtime
from agents_with_middleware.providers import (
    ChatModelProvider,
    InferenceProvider,
    RegistryToolExecutor,
    ToolExecutor,
    build_tool_registry,
)
from agents_with_middleware.schema.composer import MergedSchemas, compose
from agents_with_middleware.schema.fields import SchemaLike


logger = logging.getLogger(__name__)


DEFAULT_RECURSION_LIMIT = 100


def _default_recursion_limit() -> int:
    """Maximum node visits per invocation.

    Default is 100. Override with AGENTS_WITH_MIDDLEWARE_RECURSION_LIMIT.
    """
    raw = os.environ.get("AGENTS_WITH_MIDDLEWARE_RECURSION_LIMIT")
    if not raw:
        return DEFAULT_RECURSION_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"AGENTS_WITH_MIDDLEWARE_RECURSION_LIMIT must be an integer, got {raw!r}"
        ) from None
    if limit < 1:
        raise ConfigurationError("AGENTS_WITH_MIDDLEWARE_RECURSION_LIMIT must be positive")
    return limit


class Agent:
    """Conversational agent whose single turn is driven by a middleware chain.

    The agent owns an immutable configuration: middlewares (in hook order),
    merged state/context schemas, a default model and tools. Each call to
    `invoke` runs one independent turn; nothing is kept between calls.

    Example:
        ```python
        from langchain_openai import ChatOpenAI
        from agents_with_middleware import create_agent
        from agents_with_middleware.standard import model_request_limit, usage_tracking

        agent = create_agent(
            model=ChatOpenAI(model="gpt-4o", temperature=0),
            middlewares=[model_request_limit(), usage_tracking()],
            tools=[search],
        )

        state = agent.invoke("Search for AI safety news", {"max_model_requests": 5})
        print(state["messages"][-1].content)
        print(state["usage"])
        ```
    """

    def __init__(
        self,
        middlewares: Sequence[Middleware] = (),
        context_schema: SchemaLike = None,
        state_schema: SchemaLike = None,
        model: Any = None,
        tools: Sequence[Any] = (),
        provider: Optional[InferenceProvider] = None,
        tool_executor: Optional[ToolExecutor] = None,
        recursion_limit: Optional[int] = None,
    ):
        """Initialize agent and validate its configuration.

        Args:
            middlewares: Middlewares in hook-execution order
            context_schema: Agent-level context fields (pydantic model or FieldSpec list)
            state_schema: Agent-level state fields (pydantic model or FieldSpec list)
            model: Default model selector, usually a LangChain chat model
                   Examples:
                   - ChatOpenAI(model="gpt-4o")
                   - ChatAnthropic(model="claude-3-5-sonnet-20241022")
            tools: Default tools offered to the model and run by the executor
            provider: Inference provider (default: ChatModelProvider)
            tool_executor: Tool executor (default: RegistryToolExecutor over ``tools``)
            recursion_limit: Maximum node visits per invocation

        Raises:
            DuplicateContextFieldError: If context field names collide
            ConfigurationError: For duplicate middleware or tool names, or no
                model when the default provider is used
        """
        self.middlewares = tuple(middlewares)

        seen = set()
        for mw in self.middlewares:
            if not isinstance(mw, Middleware):
                raise ConfigurationError(f"Expected a Middleware, got {type(mw).__name__}")
            if mw.name in seen:
                raise ConfigurationError(f"Duplicate middleware name: {mw.name}")
            seen.add(mw.name)

        self.schemas: MergedSchemas = compose(context_schema, self.middlewares, state_schema=state_schema)

        self.model = model
        self.tools = build_tool_registry(tools)
        if provider is None and model is None:
            raise ConfigurationError("A model is required when no inference provider is given")
        self.provider = provider or ChatModelProvider()
        self.tool_executor = tool_executor or RegistryToolExecutor(self.tools.values())
        self.recursion_limit = recursion_limit or _default_recursion_limit()

        self.pipeline = HookPipeline(self.middlewares, self.schemas)

        # Create LangGraph state machine
        self.graph = create_agent_graph(
            self.pipeline,
            self.schemas,
            self.provider,
            self.tool_executor,
            default_model=model,
            default_tools=list(self.tools.values()),
            tool_registry=self.tools,
        )

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Agent configured: middlewares=%s state_fields=%s context_fields=%s tools=%s",
                [mw.name for mw in self.middlewares],
                self.schemas.state_field_names,
                self.schemas.context_field_names,
                sorted(self.tools),
            )

    def _config(self) -> Dict:
        return {"recursion_limit": self.recursion_limit}

    def _prepare_input(self, message: str, context: Optional[Mapping[str, Any]]) -> LoopState:
        # Context is validated before any node runs
        parsed_context = self.schemas.parse_context(context)
        values = self.schemas.merge(
            self.schemas.default_state(),
            {"messages": [user_message(message)]},
        )
        return initial_loop_state(values, Runtime.initial(parsed_context))

    def default_state(self) -> Dict[str, Any]:
        """Fresh state built from every state field's default."""
        return self.schemas.default_state()

    def invoke(self, message: str, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Run one turn and return the final state.

        Args:
            message: The user's message
            context: Invocation context, validated against the merged context schema

        Returns:
            Final state: ``messages`` plus every declared state field

        Raises:
            ContextValidationError: Before any node runs, for invalid context
            ControlTerminationError: A middleware terminated with an error
            RetryExhaustedError: A middleware retried a node too often
            ExternalCallError: Unhandled provider or tool executor failure
        """
        input_state = self._prepare_input(message, context)
        result = self.graph.invoke(input_state, config=self._config())
        return result["values"]

    def run(self, message: str, context: Optional[Mapping[str, Any]] = None) -> str:
        """Run one turn and return the final assistant response as a string."""
        messages = self.invoke(message, context).get("messages", [])
        if messages:
            last_message = messages[-1]
            if isinstance(last_message, AIMessage):
                return last_message.content

        return ""

    def stream(self, message: str, context: Optional[Mapping[str, Any]] = None) -> Iterator[Any]:
        """Yield assistant message contents as each model call completes.

        Args:
            message: The user's message
            context: Invocation context

        Yields:
            Content of each new AI message
        """
        # LangGraph streams node updates keyed by node name, e.g.
        # {"model": {"values": {...}, "runtime": ..., ...}}.
        input_state = self._prepare_input(message, context)
        last_seen = None

        for update in self.graph.stream(input_state, config=self._config(), stream_mode="updates"):
            if not isinstance(update, dict):
                continue

            chunk = update.get(MODEL_NODE)
            if not isinstance(chunk, dict):
                continue

            messages = (chunk.get("values") or {}).get("messages") or []
            if not messages:
                continue

            last_message = messages[-1]
            if isinstance(last_message, AIMessage) and last_message is not last_seen:
                last_seen = last_message
                yield last_message.content

    def interactive(self, context: Optional[Mapping[str, Any]] = None):
        """Start an interactive console session.

        Each line is an independent turn with the same context.
        Type 'exit', 'quit', or press Ctrl+C to stop.
        Type 'state' to show the state fields of the last turn.
        """
        print("Agent Interactive Mode")
        print("=" * 60)
        print("Commands: 'state', 'exit'")
        print("=" * 60)
        print()

        last_state: Dict[str, Any] = {}

        while True:
            try:
                user_input = input("You: ").strip()

                if not user_input:
                    continue

                if user_input.lower() in ["exit", "quit"]:
                    print("\nGoodbye!")
                    break

                if user_input.lower() == "state":
                    fields: List[str] = [k for k in last_state if k != "messages"]
                    if fields:
                        print()
                        for name in fields:
                            print(f"  {name}: {last_state[name]!r}")
                    else:
                        print("\nNo state yet")
                    print()
                    continue

                print("\nAgent: ", end="", flush=True)
                last_state = self.invoke(user_input, context)
                messages = last_state.get("messages", [])
                last_message = messages[-1] if messages else None
                print(getattr(last_message, "content", ""))
                print()

            except EOFError:
                print("\n\nGoodbye!")
                break
            except KeyboardInterrupt:
                print("\n\nInterrupted. Goodbye!")
                break
            except Exception as e:
                print(f"\nError: {e}")
                if os.environ.get("DEBUG"):
                    import traceback
                    traceback.print_exc()
                print()


def create_agent(
    *,
    middlewares: Sequence[Middleware] = (),
    context_schema: SchemaLike = None,
    state_schema: SchemaLike = None,
    model: Any = None,
    tools: Sequence[Any] = (),
    provider: Optional[InferenceProvider] = None,
    tool_executor: Optional[ToolExecutor] = None,
    recursion_limit: Optional[int] = None,
) -> Agent:
    """Build an agent, failing fast on configuration errors.

    See `Agent` for the arguments.
    """
    return Agent(
        middlewares=middlewares,
        context_schema=context_schema,
        state_schema=state_schema,
        model=model,
        tools=tools,
        provider=provider,
        tool_executor=tool_executor,
        recursion_limit=recursion_limit,
    )
