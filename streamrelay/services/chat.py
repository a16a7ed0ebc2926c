"""
Chat Service.

Message-creation entry point and the read-side of threads.

Creating a message stores the user turn and an empty assistant message in
``streaming`` status, then hands the assistant message to a producer and
returns without waiting for generation.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from streamrelay.errors import (
    AccessDeniedError,
    ProviderConfigError,
    StreamRelayError,
)
from streamrelay.models import Message, MessageRole, MessageStatus, Provider, Thread
from streamrelay.services.store import MessageStore, make_title
from streamrelay.services.streaming import (
    ConversationTurn,
    StreamingOrchestrator,
    StreamRequest,
)

logger = logging.getLogger(__name__)

CredentialLookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class CreatedMessage:
    """Identifiers returned to the caller right after creation."""

    thread_id: str
    message_id: str
    user_message_id: str


@dataclass
class ThreadWithMessages:
    thread: Thread
    messages: list[Message]


class ChatService:
    """
    Service for creating assistant messages and reading threads.

    Every read and write is scoped to the viewer that owns the thread.
    """

    def __init__(
        self,
        store: MessageStore,
        orchestrator: StreamingOrchestrator,
        credentials: CredentialLookup,
    ):
        self._store = store
        self._orchestrator = orchestrator
        self._credentials = credentials

    async def create_message(
        self,
        user_id: str,
        prompt: str,
        provider: str,
        model: str,
        thread_id: Optional[str] = None,
    ) -> CreatedMessage:
        """
        Start generating an answer to ``prompt``.

        Args:
            user_id: Viewer creating the message
            prompt: User's message text
            provider: LLM provider name
            model: Provider model name
            thread_id: Existing thread to continue, or None for a new one

        Returns:
            CreatedMessage with thread, assistant message and user message ids

        Raises:
            ProviderConfigError: provider unsupported or without credentials
            ThreadNotFoundError / AccessDeniedError: bad ``thread_id``
            ProducerConflictError: a producer already owns the message
        """
        self._check_provider(provider, model)

        if thread_id:
            thread = await self.get_thread(user_id, thread_id)
        else:
            thread = await self._store.create_thread(user_id, make_title(prompt))
            logger.info("Created thread %s for user %s", thread.id, user_id)

        history = await self._load_history(thread.id)

        user_message = await self._store.create_message(
            thread.id,
            MessageRole.USER,
            content=prompt,
            status=MessageStatus.COMPLETE,
        )
        assistant_message = await self._store.create_message(
            thread.id,
            MessageRole.ASSISTANT,
            status=MessageStatus.STREAMING,
            model=model,
            provider=provider,
        )

        request = StreamRequest(
            message_id=assistant_message.id,
            thread_id=thread.id,
            user_id=user_id,
            provider=provider,
            model=model,
            prompt=prompt,
            history=history,
        )

        try:
            await self._orchestrator.start_stream(request)
        except StreamRelayError as e:
            await self._abandon(assistant_message.id, e.message)
            raise

        logger.info(
            "Message %s created in thread %s (%s:%s)",
            assistant_message.id,
            thread.id,
            provider,
            model,
        )
        return CreatedMessage(
            thread_id=thread.id,
            message_id=assistant_message.id,
            user_message_id=user_message.id,
        )

    async def get_message(self, user_id: str, message_id: str) -> Message:
        """Current stored state of a message owned by the viewer."""
        message = await self._store.read_message(message_id)
        await self.get_thread(user_id, message.thread_id)
        return message

    async def get_thread(self, user_id: str, thread_id: str) -> Thread:
        thread = await self._store.get_thread(thread_id)
        if thread.user_id != user_id:
            raise AccessDeniedError("You are not allowed to access this thread")
        return thread

    async def get_thread_with_messages(self, user_id: str, thread_id: str) -> ThreadWithMessages:
        thread = await self.get_thread(user_id, thread_id)
        messages = await self._store.list_messages(thread_id)
        return ThreadWithMessages(thread=thread, messages=messages)

    async def list_threads(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Thread]:
        return await self._store.list_threads(user_id, limit=limit, offset=offset)

    async def delete_thread(self, user_id: str, thread_id: str) -> None:
        """Delete a thread and its messages."""
        await self.get_thread(user_id, thread_id)
        await self._store.delete_thread(thread_id)
        logger.info("Deleted thread %s for user %s", thread_id, user_id)

    def _check_provider(self, provider: str, model: str) -> None:
        try:
            Provider(provider)
        except ValueError:
            raise ProviderConfigError(f"Unsupported provider: {provider}")
        if not model:
            raise ProviderConfigError("Model must be specified")
        if not self._credentials(provider):
            raise ProviderConfigError(f"No API key configured for provider: {provider}")

    async def _load_history(self, thread_id: str) -> tuple[ConversationTurn, ...]:
        """Prior turns of the thread, skipping failed and unfinished answers."""
        messages = await self._store.list_messages(thread_id)
        return tuple(
            ConversationTurn(role=m.role, content=m.content)
            for m in messages
            if m.status is MessageStatus.COMPLETE and m.content
        )

    async def _abandon(self, message_id: str, error: str) -> None:
        """Give a message whose producer never started a terminal state."""
        try:
            await self._store.write_message_terminal(
                message_id,
                MessageStatus.ERROR,
                content="",
                error=error,
            )
        except Exception as e:
            logger.error("Failed to mark message %s as failed: %s", message_id, e)
