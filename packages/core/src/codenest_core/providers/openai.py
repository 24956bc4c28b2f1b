from __future__ import annotations

from typing import TYPE_CHECKING, Any

try:
    from openai import AsyncOpenAI as _AsyncOpenAI
except ImportError:
    _AsyncOpenAI = None  # type: ignore[assignment,misc]

from codenest_core.providers.base import BaseChatProvider

if TYPE_CHECKING:
    from codenest_core.interfaces import Message


class OpenAIChatProvider(BaseChatProvider):
    MODEL = "gpt-4o"
    # Lower than Anthropic's 0.3 to lean toward deterministic JSON output.
    TEMPERATURE = 0.2

    def __init__(self, api_key: str | None, base_url: str | None = None, **kwargs):
        super().__init__(**kwargs)
        if _AsyncOpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install openai"
            )
        self.client = _AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def _call_api(self, messages: list[Message], request: dict[str, Any]) -> str:
        response = await self.client.chat.completions.create(
            model=request["model"],
            messages=messages,
            temperature=request["temperature"],
            max_tokens=request["max_tokens"],
        )
        return response.choices[0].message.content or ""
