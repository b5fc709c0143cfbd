"""Turns raw provider text into a structured blueprint.

Models often wrap JSON in Markdown fences or surround it with prose, so the
text is sanitized first: trim, unwrap the first fenced block, then cut out the
first balanced JSON object. Output that is still not valid JSON (trailing
commas, unquoted keys, a truncated tail) gets one repair pass with json-repair
before it is rejected.
"""

import json
import re
from typing import Any, Literal, Optional

import json_repair
import structlog
from pydantic import BaseModel, Field, ValidationError

from consum.services.exceptions import BlueprintParseError
from consum.services.generation.prompts import SCHEMA_DECLINED_SENTINEL

logger = structlog.get_logger(__name__)

SectionType = Literal[
    "daily_habits",
    "sequential_steps",
    "troubleshooting",
    "decision_checklist",
    "resources",
]

LEGACY_ARRAYS = (
    "sequential_steps",
    "daily_habits",
    "trigger_actions",
    "decision_checklist",
    "resources",
)

_CODE_FENCE = re.compile(r"```(?:json|javascript|typescript|ts)?\s*([\s\S]*?)```", re.IGNORECASE)


class BlueprintOverview(BaseModel):
    summary: str = Field(min_length=1)
    mistakes: list[str] = Field(default_factory=list)
    guidance: list[str] = Field(default_factory=list)


class BlueprintSection(BaseModel):
    title: str
    description: str = ""
    type: SectionType
    items: list[dict[str, Any]] = Field(default_factory=list)


class StructuredBlueprint(BaseModel):
    """Parsed blueprint: overview plus titled sections and/or legacy flat arrays."""

    overview: BlueprintOverview
    sections: Optional[list[BlueprintSection]] = None
    sequential_steps: Optional[list[dict[str, Any]]] = None
    daily_habits: Optional[list[dict[str, Any]]] = None
    trigger_actions: Optional[list[dict[str, Any]]] = None
    decision_checklist: Optional[list[dict[str, Any]]] = None
    resources: Optional[list[dict[str, Any]]] = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict for the blueprint's ai_output column."""
        return self.model_dump(mode="json", exclude_none=True)


def strip_code_fence(text: str) -> str:
    match = _CODE_FENCE.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return text


def extract_json_object(text: str) -> str | None:
    """Return the first balanced {...} object in text.

    Braces inside string literals (including escaped quotes) are ignored. If
    the object is never closed, the remainder from the opening brace is
    returned so the JSON decoder can report the error.
    """
    start = -1
    depth = 0
    in_string = False
    escape = False

    for i, char in enumerate(text):
        if start == -1:
            if char == "{":
                start = i
                depth = 1
            continue

        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return text[start:] if start != -1 else None


def sanitize_response(raw_text: str) -> str:
    without_fence = strip_code_fence(raw_text.strip())
    extracted = extract_json_object(without_fence)
    if extracted:
        return extracted.strip()
    return without_fence


def repair_json_text(text: str) -> Any:
    """Best-effort repair of near-JSON model output.

    Returns:
        The repaired object or array, or None when nothing JSON-like is recoverable
    """
    repaired = json_repair.loads(text)
    if isinstance(repaired, (dict, list)):
        return repaired
    return None


def parse_blueprint_response(raw_text: str) -> StructuredBlueprint:
    """Parse provider output into a StructuredBlueprint.

    Args:
        raw_text: Text returned by the provider

    Returns:
        Validated blueprint

    Raises:
        BlueprintParseError: Schema declination sentinel, invalid JSON, missing
            overview summary, or a section that fails validation
    """
    if SCHEMA_DECLINED_SENTINEL in raw_text:
        raise BlueprintParseError(
            "AI declined to follow the response schema",
            raw_text,
            schema_declined=True,
        )

    sanitized = sanitize_response(raw_text)

    try:
        parsed = json.loads(sanitized)
    except ValueError:
        parsed = repair_json_text(sanitized)
        if parsed is None:
            raise BlueprintParseError("AI response is not valid JSON", raw_text, sanitized)
        logger.warning("blueprint.response_repaired", sanitized_length=len(sanitized))

    if not isinstance(parsed, dict):
        raise BlueprintParseError("AI response is not a JSON object", raw_text, sanitized)

    overview = parsed.get("overview")
    if not isinstance(overview, dict) or not overview.get("summary"):
        raise BlueprintParseError(
            "AI response missing required overview section", raw_text, sanitized
        )

    data: dict[str, Any] = {
        "overview": {
            "summary": overview["summary"],
            "mistakes": overview.get("mistakes") or [],
            "guidance": overview.get("guidance") or [],
        }
    }

    sections = parsed.get("sections")
    if isinstance(sections, list) and sections:
        data["sections"] = sections

    for key in LEGACY_ARRAYS:
        value = parsed.get(key)
        if isinstance(value, list) and value:
            data[key] = value

    habits = parsed.get("habits")
    if "daily_habits" not in data and isinstance(habits, list) and habits:
        data["daily_habits"] = [_legacy_habit(habit, index) for index, habit in enumerate(habits)]

    try:
        return StructuredBlueprint.model_validate(data)
    except ValidationError as e:
        raise BlueprintParseError(
            f"AI response failed validation: {e.error_count()} error(s)", raw_text, sanitized
        ) from e


def _legacy_habit(habit: Any, index: int) -> dict[str, Any]:
    habit = habit if isinstance(habit, dict) else {}
    return {
        "id": habit.get("id", index + 1),
        "title": habit.get("title", f"Step {index + 1}"),
        "description": habit.get("description", ""),
        "timeframe": habit.get("timeframe", ""),
    }
