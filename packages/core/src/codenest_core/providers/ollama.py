"""Ollama provider over its OpenAI-compatible endpoint."""

from __future__ import annotations

from codenest_core.providers.openai import OpenAIChatProvider

DEFAULT_OLLAMA_HOST = "http://localhost:11434"


class OllamaChatProvider(OpenAIChatProvider):
    MODEL = "gemma3:12b"
    TEMPERATURE = 0.1
    PROMPT_STYLE = "ollama"

    def __init__(self, host: str | None = None, **kwargs):
        host = (host or DEFAULT_OLLAMA_HOST).rstrip("/")
        # Ollama ignores the key but the OpenAI client requires one.
        super().__init__(api_key="ollama", base_url=f"{host}/v1", **kwargs)
        self.host = host
