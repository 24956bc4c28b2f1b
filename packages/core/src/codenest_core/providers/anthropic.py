from __future__ import annotations

from typing import TYPE_CHECKING, Any

from codenest_core.providers.base import BaseChatProvider

if TYPE_CHECKING:
    from codenest_core.interfaces import Message


class AnthropicChatProvider(BaseChatProvider):
    MODEL = "claude-sonnet-4-20250514"
    # Slightly higher than OpenAI's 0.2; the JSON contract is enforced by the
    # extractor rather than by sampling.
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, **kwargs):
        super().__init__(**kwargs)
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. " "Install it with: pip install anthropic"
            )
        self.client = AsyncAnthropic(api_key=api_key)

    async def _call_api(self, messages: list[Message], request: dict[str, Any]) -> str:
        # __init__ already validated the package is installed.
        from anthropic.types import TextBlock

        system, turns = self._split_system(messages)
        kwargs = {"system": system} if system else {}
        response = await self.client.messages.create(
            model=request["model"],
            messages=turns,
            temperature=request["temperature"],
            max_tokens=request["max_tokens"],
            **kwargs,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
