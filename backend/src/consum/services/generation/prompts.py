"""Prompt construction for blueprint generation.

Providers receive either a single prompt (chat style) or a system/user split
(structured-response style). Both are built here and stored on the request so
retries regenerate from exactly the same input.
"""

from typing import Any

from consum.models.generation_request import GenerationRequest, PromptSegments

SCHEMA_DECLINED_SENTINEL = "ERROR_JSON_SCHEMA"

SECTION_TYPES = (
    "daily_habits",
    "sequential_steps",
    "troubleshooting",
    "decision_checklist",
    "resources",
)

_ITEM_PROPERTIES: dict[str, dict[str, str]] = {
    "id": {"type": "number"},
    "title": {"type": "string"},
    "description": {"type": "string"},
    "timeframe": {"type": "string"},
    "step_number": {"type": "number"},
    "deliverable": {"type": "string"},
    "estimated_time": {"type": "string"},
    "problem": {"type": "string"},
    "solution": {"type": "string"},
    "question": {"type": "string"},
    "weight": {"type": "string"},
    "name": {"type": "string"},
    "type": {"type": "string"},
}

BLUEPRINT_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "overview": {
            "type": "object",
            "properties": {
                "summary": {"type": "string"},
                "mistakes": {"type": "array", "items": {"type": "string"}},
                "guidance": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["summary", "mistakes", "guidance"],
            "additionalProperties": False,
        },
        "sections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "type": {"type": "string", "enum": list(SECTION_TYPES)},
                    "items": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": _ITEM_PROPERTIES,
                            "required": list(_ITEM_PROPERTIES),
                            "additionalProperties": False,
                        },
                    },
                },
                "required": ["title", "description", "type", "items"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["overview", "sections"],
    "additionalProperties": False,
}

_SECTION_TYPE_UNION = " | ".join(f'"{t}"' for t in SECTION_TYPES)

SYSTEM_ROLE = (
    "You are a habit formation expert. Analyze this content and create a personalized, "
    "structured habit blueprint."
)

INSTRUCTIONS = f"""Return **only** a single JSON object with the following structure.
You must analyze the content to identify logical "threads" or "phases" (e.g., "Morning Routine", \
"Evening Wind-down", "Core Actions", "Emergency Protocols") and group items into titled sections.

Structure:
{{
  "overview": {{ "summary": string, "mistakes": string[], "guidance": string[] }},
  "sections": [
    {{
      "title": string,
      "description": string,
      "type": {_SECTION_TYPE_UNION},
      "items": [ ...items matching the specific type schema below... ]
    }}
  ]
}}

Item Schemas by Type:
- "daily_habits": {{ "id": number, "title": string, "description": string, "timeframe": string }}
- "sequential_steps": {{ "step_number": number, "title": string, "description": string, \
"deliverable": string, "estimated_time": string }}
- "troubleshooting": {{ "problem": string, "solution": string, "description": string }}
- "decision_checklist": {{ "question": string, "weight": string, "description": string }}
- "resources": {{ "name": string, "type": string, "description": string }}

Rules:
1. Output MUST be valid JSON.
2. "sections" is an array; multiple sections of the same type are allowed with different titles.
3. Extract specific, actionable items.
4. FLESH OUT every "description" with 1-2 sentences of actionable context.
5. Field guardrails:
   - Use only the properties defined in each type schema.
   - Do not output placeholder text ("placeholder", "NA", "tbd").
   - For "decision_checklist", keep "weight" to a short 1-3 word label.
6. If you cannot follow the schema, respond with "{SCHEMA_DECLINED_SENTINEL}"."""

CONSTRAINTS = (
    "Make sections distinct and titled meaningfully. Avoid generic titles like 'Habits' "
    "when a specific one (e.g. 'Morning Protocol') fits."
)

OUTPUT_FORMAT = "Return only valid JSON."


def build_blueprint_prompt(goal: str | None, content: str) -> str:
    """Build the single-prompt form used by chat-style providers.

    Args:
        goal: Optional user focus
        content: Transcript or pasted text

    Returns:
        Complete prompt text
    """
    sections = [SYSTEM_ROLE]

    focus = (goal or "").strip()
    if focus:
        sections.extend(["", f"User Focus: {focus}"])

    sections.extend(["", f"Content: {content}", "", INSTRUCTIONS, "", CONSTRAINTS, OUTPUT_FORMAT])
    return "\n".join(sections)


def build_prompt_segments(goal: str | None, content: str) -> PromptSegments:
    """Build the system/user split used by structured-response providers."""
    user_lines = [
        "The following user message contains the user focus (optional) and the full "
        "transcript you must analyze."
    ]

    focus = (goal or "").strip()
    if focus:
        user_lines.extend(["", f"User Focus: {focus}"])

    user_lines.extend(["", "Transcript:", content])

    return PromptSegments(
        system="\n".join([SYSTEM_ROLE, "", INSTRUCTIONS, "", CONSTRAINTS]),
        user="\n".join(user_lines),
    )


def build_generation_request(
    goal: str | None,
    content: str,
    provider: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> GenerationRequest:
    """Build the stored payload for a generation cycle."""
    return GenerationRequest(
        prompt=build_blueprint_prompt(goal, content),
        prompt_segments=build_prompt_segments(goal, content),
        provider=provider,
        metadata=metadata or {},
    )
