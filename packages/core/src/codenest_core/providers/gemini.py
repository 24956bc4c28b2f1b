from __future__ import annotations

from typing import TYPE_CHECKING, Any

from codenest_core.providers.base import BaseChatProvider

if TYPE_CHECKING:
    from codenest_core.interfaces import Message

# Gemini names the assistant turn "model".
_ROLES = {"user": "user", "assistant": "model"}


class GeminiChatProvider(BaseChatProvider):
    MODEL = "gemini-2.5-pro"
    TEMPERATURE = 0.2

    def __init__(self, api_key: str | None, **kwargs):
        super().__init__(**kwargs)
        try:
            from google import genai
        except ImportError:
            raise ImportError(
                "The 'google-genai' package is required for this provider. "
                "Install it with: pip install google-genai"
            )
        self.client = genai.Client(api_key=api_key)

    async def _call_api(self, messages: list[Message], request: dict[str, Any]) -> str:
        system, turns = self._split_system(messages)
        contents = [{"role": _ROLES.get(m["role"], "user"), "parts": [{"text": m["content"]}]} for m in turns]
        config: dict[str, Any] = {
            "temperature": request["temperature"],
            "max_output_tokens": request["max_tokens"],
        }
        if system:
            config["system_instruction"] = system
        response = await self.client.aio.models.generate_content(
            model=request["model"],
            contents=contents,
            config=config,
        )
        return (response.text or "").strip()

    async def close(self) -> None:
        # The async transport lives on client.aio; Client.close() is synchronous.
        aclose = getattr(getattr(self.client, "aio", None), "aclose", None)
        if aclose is not None:
            await aclose()
