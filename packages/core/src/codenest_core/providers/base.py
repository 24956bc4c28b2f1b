"""Base chat provider implementing the Template Method pattern.

All providers share the same request algorithm:
    complete() → _call_with_retry() → _call_api()   ← only this differs per provider

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

Prompt construction lives in codenest_core.prompts and response parsing in
codenest_core.extractor, so a provider is nothing more than a transport.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from codenest_core.errors import ProviderError

if TYPE_CHECKING:
    from codenest_core.interfaces import Message

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override as class attributes if needed.
_MAX_RETRIES = 3
_MAX_TOKENS = 4096


class BaseChatProvider(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    MODEL: str = ""
    TEMPERATURE: float = 0.2
    # Prompt style from codenest_core.prompts best suited to this provider.
    PROMPT_STYLE: str = "standard"

    def __init__(self, model: str | None = None, temperature: float | None = None, max_tokens: int | None = None):
        self.model = model or self.MODEL
        self.temperature = self.TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or self.MAX_TOKENS

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def complete(self, messages: list[Message], params: dict[str, Any] | None = None) -> str:
        """Send one chat-completion request and return the raw text reply.

        ``params`` may override ``model``, ``temperature`` and ``max_tokens``
        for this call. Raises ProviderError once every retry has failed.
        """
        request = {"model": self.model, "temperature": self.temperature, "max_tokens": self.max_tokens}
        if params:
            request.update({k: v for k, v in params.items() if v is not None})
        return await self._call_with_retry(messages, request)

    async def close(self) -> None:
        """Release the SDK client's connection pool, if it has one."""
        client = getattr(self, "client", None)
        close = getattr(client, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _call_api(self, messages: list[Message], request: dict[str, Any]) -> str:
        """Make a single API call and return the raw text response.

        This is the only method subclasses must implement. It should raise
        on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    async def _call_with_retry(self, messages: list[Message], request: dict[str, Any]) -> str:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return await self._call_api(messages, request)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    raise ProviderError(f"{self.__class__.__name__} request failed: {e}") from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
        raise ProviderError(f"{self.__class__.__name__} made no attempts")

    @staticmethod
    def _split_system(messages: list[Message]) -> tuple[str, list[Message]]:
        """Separate system messages from the conversation turns."""
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        turns = [m for m in messages if m["role"] != "system"]
        return system, turns
