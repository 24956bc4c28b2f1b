"""Recover a structured review from free-form model output.

Models are asked to answer with a single JSON object but regularly wrap it in
prose, markdown fences or reasoning tags, emit trailing commas, or put raw
source code with unescaped quotes into string values. extract_review_output()
locates the most plausible JSON object, repairs the common defects, parses it
permissively and, when structural parsing still fails, falls back to a
field-by-field regex pass. The only hard failure is text with no structured
content at all.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from codenest_core.errors import ExtractionError

logger = logging.getLogger(__name__)

DEFAULT_ISSUE_TYPE = "bug"
DEFAULT_SEVERITY = "medium"
DEFAULT_TITLE = "Unspecified issue"
DEFAULT_SUMMARY = "No summary provided."
DEFAULT_ASSESSMENT = "Code needs review."

# Free-text fields that carry source code and are most likely to break JSON.
CODE_FIELDS = ("affected_code", "code_snippet")

_FENCE_RE = re.compile(r"```(?:json)?([\s\S]*?)```")
_FULL_OBJECT_RE = re.compile(r'\{.*"summary".*"issues".*"overall_assessment".*\}', re.S)
_TITLE_OBJECT_RE = re.compile(r'\{[^{]*"title"[^}]*\}', re.S)
_ISSUES_OBJECT_RE = re.compile(r'\{[^{]*"issues"\s*:\s*\[.*\].*\}', re.S)

_ISSUES_NULL_RE = re.compile(r'"issues"\s*:\s*null')
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_SIMPLE_ESCAPE_RE = re.compile(r'\\([ntr"\\/])')
_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "/": "/"}
_INTEGER_RE = re.compile(r"-?\d+")
# Larger line numbers are treated as missing.
MAX_LINE_NUMBER = 2**31 - 1

_ISSUE_TEXT_FIELDS = ("type", "severity", "title", "description", "suggestion") + CODE_FIELDS


@dataclass
class IssueDraft:
    """One issue as reported by the model, before it is tied to a review."""

    type: str = DEFAULT_ISSUE_TYPE
    severity: str = DEFAULT_SEVERITY
    title: str = DEFAULT_TITLE
    description: str = ""
    line_start: int = 0
    line_end: int = 0
    suggestion: str = ""
    affected_code: str = ""
    code_snippet: str = ""


@dataclass
class ReviewOutput:
    summary: str = DEFAULT_SUMMARY
    issues: list[IssueDraft] = field(default_factory=list)
    overall_assessment: str = DEFAULT_ASSESSMENT

    def to_dict(self) -> dict:
        """Canonical serialization; extracting its JSON yields an equal ReviewOutput."""
        return {
            "summary": self.summary,
            "issues": [asdict(issue) for issue in self.issues],
            "overall_assessment": self.overall_assessment,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


# --------------------------------------------------------------------------- #
# Permissive intermediate schema                                              #
# --------------------------------------------------------------------------- #


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _clamp_line(value: int) -> int:
    return value if 0 <= value <= MAX_LINE_NUMBER else 0


def _parse_int(digits: str) -> int:
    # Checked before int() so oversized literals never reach the conversion limit.
    if len(digits.lstrip("-")) > len(str(MAX_LINE_NUMBER)):
        return 0
    return _clamp_line(int(digits))


def _line_number(value: Any) -> int:
    """Accept ints, floats and numeric strings.

    Negatives clamp to 0; infinities, NaN, values past MAX_LINE_NUMBER and
    anything else become 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return _clamp_line(value)
    if isinstance(value, float):
        return _clamp_line(int(value)) if math.isfinite(value) else 0
    if isinstance(value, str) and _INTEGER_RE.fullmatch(value.strip()):
        return _parse_int(value.strip())
    return 0


class _RawIssue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    severity: str = ""
    title: str = ""
    description: str = ""
    line_start: int = 0
    line_end: int = 0
    suggestion: str = ""
    affected_code: str = ""
    code_snippet: str = ""

    @field_validator(*_ISSUE_TEXT_FIELDS, mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("line_start", "line_end", mode="before")
    @classmethod
    def _line(cls, value: Any) -> int:
        return _line_number(value)


class _RawOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = ""
    issues: list[_RawIssue] = []
    overall_assessment: str = ""

    @field_validator("summary", "overall_assessment", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("issues", mode="before")
    @classmethod
    def _issue_list(cls, value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        return []


# --------------------------------------------------------------------------- #
# Public entry point                                                          #
# --------------------------------------------------------------------------- #


def extract_review_output(text: str) -> ReviewOutput:
    """Return the structured review contained in ``text``.

    Raises ExtractionError only when no candidate JSON object can be located.
    Any located candidate yields a result, possibly with zero issues.
    """
    candidate = find_json_candidate(text)
    if candidate is None:
        raise ExtractionError("no structured content found")

    placeholders: dict[str, str] = {}
    sanitized = _apply_basic_fixes(_replace_code_fields(candidate, placeholders))

    try:
        data = json.loads(sanitized, strict=False)
        raw = _RawOutput.model_validate(_normalize_shape(data))
    except Exception as e:
        logger.debug("Structural parse failed (%s); falling back to field extraction", e)
        return _manual_extraction(candidate)

    output = ReviewOutput(
        summary=raw.summary or DEFAULT_SUMMARY,
        issues=[_draft_from_raw(issue, placeholders) for issue in raw.issues],
        overall_assessment=raw.overall_assessment or DEFAULT_ASSESSMENT,
    )
    logger.debug("Extracted %d issue(s) from model output", len(output.issues))
    return output


# --------------------------------------------------------------------------- #
# Candidate location                                                          #
# --------------------------------------------------------------------------- #


def find_json_candidate(text: str) -> str | None:
    """Locate the most plausible JSON object in ``text``; strategies run in order."""
    for match in _FENCE_RE.finditer(text):
        potential = match.group(1).strip()
        if potential.startswith("{") and potential.endswith("}"):
            return potential

    for pattern in (_FULL_OBJECT_RE, _TITLE_OBJECT_RE, _ISSUES_OBJECT_RE):
        match = pattern.search(text)
        if match:
            return match.group(0)

    start = text.rfind("{")
    if start >= 0:
        end = _balanced_end(text, start)
        if end >= 0:
            return text[start : end + 1]
    return None


def _balanced_end(text: str, start: int) -> int:
    """Index of the bracket closing the one at ``start``, or -1 if it never closes.

    Brackets inside double-quoted strings are ignored.
    """
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return i
    return -1


# --------------------------------------------------------------------------- #
# Sanitization                                                                #
# --------------------------------------------------------------------------- #


def _replace_code_fields(candidate: str, placeholders: dict[str, str]) -> str:
    """Swap code-bearing string values for opaque tokens so they cannot break parsing."""
    result = candidate
    for name in CODE_FIELDS:
        pattern = re.compile(r'"%s"\s*:\s*"((?:\\.|[^"\\])*)"' % name)

        def _swap(match: re.Match, name: str = name) -> str:
            token = f"{name.upper()}_PLACEHOLDER_{len(placeholders)}"
            placeholders[token] = match.group(1)
            return f'"{name}":"{token}"'

        result = pattern.sub(_swap, result)
    return result


def _restore(value: str, placeholders: dict[str, str]) -> str:
    if value in placeholders:
        return _unescape(placeholders[value])
    return value


def _unescape(raw: str) -> str:
    """Decode JSON string escapes; tolerate malformed ones with a literal pass."""
    try:
        return json.loads(f'"{raw}"', strict=False)
    except ValueError:
        return _SIMPLE_ESCAPE_RE.sub(lambda m: _SIMPLE_ESCAPES[m.group(1)], raw)


def _apply_basic_fixes(candidate: str) -> str:
    result = _ISSUES_NULL_RE.sub('"issues": []', candidate)
    return _TRAILING_COMMA_RE.sub(r"\1", result)


def _normalize_shape(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    if "issues" in data:
        return data
    if "title" in data:
        # A lone issue object instead of a full review.
        return {"issues": [data]}
    return {**data, "issues": []}


def _draft_from_raw(raw: _RawIssue, placeholders: dict[str, str]) -> IssueDraft:
    return IssueDraft(
        type=raw.type or DEFAULT_ISSUE_TYPE,
        severity=raw.severity or DEFAULT_SEVERITY,
        title=raw.title or DEFAULT_TITLE,
        description=raw.description,
        line_start=raw.line_start,
        line_end=raw.line_end,
        suggestion=raw.suggestion,
        affected_code=_restore(raw.affected_code, placeholders),
        code_snippet=_restore(raw.code_snippet, placeholders),
    )


# --------------------------------------------------------------------------- #
# Field-by-field fallback                                                     #
# --------------------------------------------------------------------------- #


def _string_field(name: str, text: str) -> str | None:
    """Value of ``name: "..."`` with the field name quoted or bare."""
    match = re.search(r'(?<![\w])"?%s"?\s*:\s*"((?:\\.|[^"\\])*)"' % name, text)
    if match is None:
        return None
    return _unescape(match.group(1))


def _int_field(name: str, text: str) -> int:
    match = re.search(r'(?<![\w])"?%s"?\s*:\s*"?(\d+)' % name, text)
    return _parse_int(match.group(1)) if match else 0


def _manual_issue(text: str) -> IssueDraft:
    values = {name: _string_field(name, text) for name in _ISSUE_TEXT_FIELDS}
    return IssueDraft(
        type=values["type"] or DEFAULT_ISSUE_TYPE,
        severity=values["severity"] or DEFAULT_SEVERITY,
        title=values["title"] or DEFAULT_TITLE,
        description=values["description"] or "",
        line_start=_int_field("line_start", text),
        line_end=_int_field("line_end", text),
        suggestion=values["suggestion"] or "",
        affected_code=values["affected_code"] or "",
        code_snippet=values["code_snippet"] or "",
    )


def _issue_objects(text: str) -> list[str]:
    """Top-level ``{...}`` spans inside the issues array, if one is present."""
    match = re.search(r'(?<![\w])"?issues"?\s*:\s*\[', text)
    if match is None:
        return []
    array_start = match.end() - 1
    array_end = _balanced_end(text, array_start)
    body = text[array_start + 1 : array_end if array_end >= 0 else len(text)]

    objects = []
    pos = body.find("{")
    while pos >= 0:
        end = _balanced_end(body, pos)
        if end < 0:
            objects.append(body[pos:])
            break
        objects.append(body[pos : end + 1])
        pos = body.find("{", end + 1)
    return objects


def _manual_extraction(candidate: str) -> ReviewOutput:
    issues = [_manual_issue(obj) for obj in _issue_objects(candidate)]
    if not issues and _string_field("title", candidate) is not None:
        issues = [_manual_issue(candidate)]
    output = ReviewOutput(
        summary=_string_field("summary", candidate) or DEFAULT_SUMMARY,
        issues=issues,
        overall_assessment=_string_field("overall_assessment", candidate) or DEFAULT_ASSESSMENT,
    )
    logger.debug("Field extraction recovered %d issue(s)", len(output.issues))
    return output
