"""
Stream Executor.

Executes LLM streaming using PydanticAI agents.
Single Responsibility: Only produces text fragments, not persistence or notification.
"""
import logging
from typing import AsyncIterator, Callable, Iterable, Optional, Union

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from streamrelay.config import settings
from streamrelay.errors import ProviderConfigError
from streamrelay.models import MessageRole, Provider

from .types import ConversationTurn, StreamRequest

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str, str], Union[Model, str]]


def default_model_factory(provider: str, model: str) -> str:
    """Resolve a provider/model pair to a pydantic-ai model string."""
    try:
        Provider(provider)
    except ValueError:
        raise ProviderConfigError(f"Unsupported provider: {provider}")
    if not model:
        raise ProviderConfigError("Model must be specified")
    return settings.get_llm_model(provider, model)


def build_message_history(turns: Iterable[ConversationTurn]) -> list[ModelMessage]:
    """Convert stored conversation turns into pydantic-ai message history."""
    history: list[ModelMessage] = []
    for turn in turns:
        if turn.role is MessageRole.ASSISTANT:
            history.append(ModelResponse(parts=[TextPart(content=turn.content)]))
        elif turn.role is MessageRole.SYSTEM:
            history.append(ModelRequest(parts=[SystemPromptPart(content=turn.content)]))
        else:
            history.append(ModelRequest(parts=[UserPromptPart(content=turn.content)]))
    return history


async def streaming_dedent(fragments: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Strip the indentation of the first contentful line from every line.

    Models sometimes indent a whole answer; this re-chunks the stream on
    line boundaries so the common indent can be removed while streaming.
    """
    min_indent: Optional[int] = None
    buffer = ""

    def dedent(line: str) -> str:
        if not min_indent:
            return line
        leading = len(line) - len(line.lstrip())
        return line[min(min_indent, leading) :]

    async for value in fragments:
        buffer += value
        *lines, buffer = buffer.split("\n")
        for line in lines:
            if min_indent is None and line.strip():
                min_indent = len(line) - len(line.lstrip())
            yield dedent(line) + "\n"

    if buffer:
        yield dedent(buffer)


class StreamExecutor:
    """
    Executes LLM streaming operations.

    Uses PydanticAI's run_stream() for real-time token streaming and
    yields plain text fragments in arrival order. The sequence is lazy,
    finite and not restartable; provider errors propagate to the caller.
    """

    def __init__(
        self,
        model_factory: Optional[ModelFactory] = None,
        dedent: bool = False,
    ):
        self._model_factory = model_factory or default_model_factory
        self._dedent = dedent
        self._agents: dict[str, Agent] = {}

    def resolve_model(self, provider: str, model: str) -> Union[Model, str]:
        return self._model_factory(provider, model)

    def _get_agent(self, provider: str, model: str) -> Agent:
        key = f"{provider}:{model}"
        agent = self._agents.get(key)
        if agent is None:
            agent = Agent(model=self.resolve_model(provider, model))
            self._agents[key] = agent
            logger.info("Created streaming agent for %s", key)
        return agent

    async def execute(self, request: StreamRequest) -> AsyncIterator[str]:
        """
        Execute streaming LLM call.

        Args:
            request: Stream request with prompt and prior turns

        Yields:
            Text fragments as they arrive from the provider
        """
        fragments = self._stream(request)
        if self._dedent:
            fragments = streaming_dedent(fragments)

        async for fragment in fragments:
            yield fragment

    async def _stream(self, request: StreamRequest) -> AsyncIterator[str]:
        agent = self._get_agent(request.provider, request.model)
        history = build_message_history(request.history)

        logger.info(
            "Starting stream for message %s with %s:%s (%d prior turns)",
            request.message_id,
            request.provider,
            request.model,
            len(history),
        )

        async with agent.run_stream(request.prompt, message_history=history or None) as stream:
            async for fragment in stream.stream_text(delta=True):
                if fragment:
                    yield fragment

        logger.info("Provider stream finished for message %s", request.message_id)
