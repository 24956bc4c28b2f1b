"""Prompt construction for per-file reviews.

Every provider receives the same file context; they differ in how the
instruction is delivered. Hosted chat models take a separate system message,
small local models do better with a short instruction, and single-turn
models get the instruction folded into the user message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from codenest_core.interfaces import Message
    from codenest_core.models import Chunk

STYLE_STANDARD = "standard"
STYLE_OLLAMA = "ollama"
STYLE_SINGLE_TURN = "single_turn"
PROMPT_STYLES = (STYLE_STANDARD, STYLE_OLLAMA, STYLE_SINGLE_TURN)

_SCHEMA = """{
  "summary": "Brief findings overview",
  "issues": [
    {
      "type": "bug|security|performance|design|style|complexity|best_practice",
      "severity": "critical|high|medium|low",
      "title": "Issue title",
      "description": "Issue explanation",
      "line_start": 10,
      "line_end": 15,
      "suggestion": "Fix suggestion",
      "affected_code": "EXACT problematic code from the file",
      "code_snippet": "Complete corrected implementation of the affected section"
    }
  ],
  "overall_assessment": "Quality assessment"
}"""

_NO_ISSUES = '{"summary": "No issues found", "issues": [], "overall_assessment": "Code is well-written"}'

_SYSTEM_TEMPLATE = """You are a senior code reviewer analyzing {language} code.
Your primary goal is a VALID JSON response. You may write other text first, but
your final statement MUST be one complete, parseable JSON object following this
schema exactly, with no additional fields or arrays:

{schema}

Rules:
- Include all three top-level fields even when empty.
- Look for bugs, security problems (injection, hardcoded credentials, unsafe
  deserialization), performance, design, style, complexity and best practices.
- "affected_code" MUST be copied verbatim from the file; do not paraphrase.
- "code_snippet" MUST be the complete corrected implementation of that section.
- Give accurate line numbers and pick severities by real impact.

If there are no issues, answer exactly: {no_issues}"""

_OLLAMA_TEMPLATE = """You are reviewing {language} code. Find bugs, security issues and improvement opportunities.

Respond with a JSON object in this EXACT format:
{schema}

RULES:
1. Keep the JSON structure exactly as shown; no extra fields.
2. Use exact line numbers.
3. Copy the exact problematic code into "affected_code".
4. Put a complete working fix into "code_snippet".
5. If there are no issues: {no_issues}"""

_TRUNCATION_MARKER = "\n... [file truncated]"


def normalize_language(language: str) -> str:
    """Capitalize a language name ("python" -> "Python"); empty becomes "Code"."""
    language = (language or "").strip()
    if not language:
        return "Code"
    return language[:1].upper() + language[1:].lower()


def system_instruction(language: str, style: str = STYLE_STANDARD) -> str:
    template = _OLLAMA_TEMPLATE if style == STYLE_OLLAMA else _SYSTEM_TEMPLATE
    return template.format(language=normalize_language(language), schema=_SCHEMA, no_issues=_NO_ISSUES)


def file_context(
    path: str,
    language: str,
    content: str,
    similar: Sequence[Chunk] = (),
    diff_info: str = "",
    max_chars: int | None = None,
) -> str:
    """Render the file under review followed by related code from the workspace."""
    if max_chars and len(content) > max_chars:
        content = content[:max_chars] + _TRUNCATION_MARKER

    details = normalize_language(language)
    if diff_info:
        details = f"{details}, {diff_info}"

    parts = ["## Code to Review:", f"File: {path} ({details})", "", content]
    if similar:
        parts += ["", "## Related Code:"]
        for chunk in similar:
            parts += [f"### {chunk.name} ({chunk.chunk_type.value})", chunk.content, ""]
    return "\n".join(parts).rstrip() + "\n"


def build_messages(
    path: str,
    language: str,
    content: str,
    similar: Sequence[Chunk] = (),
    diff_info: str = "",
    style: str = STYLE_STANDARD,
    max_chars: int | None = None,
) -> list[Message]:
    if style not in PROMPT_STYLES:
        raise ValueError(f"Unknown prompt style: {style!r}. Choose one of {', '.join(PROMPT_STYLES)}.")

    instruction = system_instruction(language, style)
    context = file_context(path, language, content, similar, diff_info, max_chars)

    if style == STYLE_SINGLE_TURN:
        return [{"role": "user", "content": f"{instruction}\n\n{context}"}]
    if style == STYLE_OLLAMA:
        return [
            {"role": "system", "content": instruction},
            {"role": "user", "content": f"Review this code:\n\n{context}"},
        ]
    return [
        {"role": "system", "content": instruction},
        {"role": "user", "content": f"Please review the following code:\n\n{context}"},
    ]
