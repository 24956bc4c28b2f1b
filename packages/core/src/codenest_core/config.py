import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "provider": "anthropic",  # anthropic | openai | gemini | ollama
    "model": None,  # None = provider default
    "temperature": None,  # None = provider default
    "max_tokens": 4096,
    "prompt_style": None,  # None = provider default; standard | ollama | single_turn
    "ollama_host": "http://localhost:11434",
    "embedding_model": "text-embedding-3-small",
    "embedding_batch_size": 20,
    "similar_chunks": 5,
    "min_similarity": 0.2,
    "max_concurrent_reviews": 4,
    "max_chars_per_file": 20000,
    "chunk_max_lines": 80,
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
}

PROVIDERS = ("anthropic", "openai", "gemini", "ollama")


def load_config(config_path: str = ".codenest.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .codenest.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    apply_overrides(config, cli_overrides)

    # Resolve credentials from environment variables
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    config["gemini_api_key"] = os.environ.get("GEMINI_API_KEY")
    if os.environ.get("OLLAMA_HOST"):
        config["ollama_host"] = os.environ["OLLAMA_HOST"]

    return config


def apply_overrides(config: dict, overrides: Optional[dict]) -> dict:
    """Overwrite ``config`` in place with the non-None ``overrides``; returns ``config``."""
    for key, value in (overrides or {}).items():
        if value is not None:
            config[key] = value
    return config


@dataclass(frozen=True)
class ReviewSettings:
    """Immutable settings threaded through the pipeline at construction time."""

    provider: str = DEFAULT_CONFIG["provider"]
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: int = DEFAULT_CONFIG["max_tokens"]
    prompt_style: Optional[str] = None
    ollama_host: str = DEFAULT_CONFIG["ollama_host"]
    anthropic_api_key: Optional[str] = field(default=None, repr=False)
    openai_api_key: Optional[str] = field(default=None, repr=False)
    gemini_api_key: Optional[str] = field(default=None, repr=False)
    embedding_model: str = DEFAULT_CONFIG["embedding_model"]
    embedding_batch_size: int = DEFAULT_CONFIG["embedding_batch_size"]
    similar_chunks: int = DEFAULT_CONFIG["similar_chunks"]
    min_similarity: float = DEFAULT_CONFIG["min_similarity"]
    max_concurrent_reviews: int = DEFAULT_CONFIG["max_concurrent_reviews"]
    max_chars_per_file: int = DEFAULT_CONFIG["max_chars_per_file"]
    chunk_max_lines: int = DEFAULT_CONFIG["chunk_max_lines"]
    exclude: tuple = ()

    @classmethod
    def from_config(cls, config: dict) -> "ReviewSettings":
        provider = config.get("provider") or DEFAULT_CONFIG["provider"]
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown provider: {provider!r}. Choose one of {', '.join(PROVIDERS)}.")
        return cls(
            provider=provider,
            model=config.get("model"),
            temperature=config.get("temperature"),
            max_tokens=int(config.get("max_tokens") or DEFAULT_CONFIG["max_tokens"]),
            prompt_style=config.get("prompt_style"),
            ollama_host=config.get("ollama_host") or DEFAULT_CONFIG["ollama_host"],
            anthropic_api_key=config.get("anthropic_api_key"),
            openai_api_key=config.get("openai_api_key"),
            gemini_api_key=config.get("gemini_api_key"),
            embedding_model=config.get("embedding_model") or DEFAULT_CONFIG["embedding_model"],
            embedding_batch_size=int(config.get("embedding_batch_size") or 0),
            similar_chunks=int(config.get("similar_chunks", DEFAULT_CONFIG["similar_chunks"])),
            min_similarity=float(config.get("min_similarity", DEFAULT_CONFIG["min_similarity"])),
            max_concurrent_reviews=max(int(config.get("max_concurrent_reviews") or 1), 1),
            max_chars_per_file=int(config.get("max_chars_per_file") or DEFAULT_CONFIG["max_chars_per_file"]),
            chunk_max_lines=int(config.get("chunk_max_lines") or DEFAULT_CONFIG["chunk_max_lines"]),
            exclude=tuple(config.get("exclude") or ()),
        )
