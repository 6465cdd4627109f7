"""
Prompt contracts for image analysis.

The vision prompt pins the exact JSON shape, the 1-8 task range, the medium
priority default and the [0, 1] confidence scale. Optional project context is
appended verbatim.
"""

from __future__ import annotations

import json
from typing import Any

VISION_SYSTEM_PROMPT = (
    "You convert images of workspaces, whiteboards, or screenshots into structured task plans."
)

_VISION_PROMPT = """You are an expert product manager and technical lead helping break down work from visual inputs.
Analyze the provided image and extract actionable engineering or product tasks.

Return ONLY valid JSON matching this shape:
{
  "summary": string,
  "totalEstimatedHours"?: number,
  "confidence"?: number,  // 0-1 scale
  "tasks": [
    {
      "id": string,
      "title": string,
      "description"?: string,
      "notes"?: string,
      "priority"?: "low" | "medium" | "high",
      "estimatedHours"?: number
    }
  ]
}

Guidelines:
- Include 1-%(max_tasks)d tasks max.
- Use concise, specific titles.
- Provide best-guess hours if possible (use decimals for partial hours).
- Default priority to "medium" if unsure.
- Confidence reflects your overall certainty (0.0-1.0).
- Never include additional commentary outside the JSON."""


def get_vision_extraction_prompt(context: str | None = None, max_tasks: int = 8) -> str:
    prompt = _VISION_PROMPT % {"max_tasks": max_tasks}
    if context:
        prompt += f"\n\nProject context: {context}"
    return prompt


AGENT_INSTRUCTIONS = (
    "You help product teams turn visual plans into actionable tasks. "
    "Always use the inspectImage tool to inspect any provided image data. "
    "After analyzing, summarize the findings and return a structured JSON response "
    "that matches the requested schema. If the user explicitly asks to create or share "
    "tasks, use the createTask tool to add them and the shareTask tool to share with "
    "collaborators. Do not invent details that the tools do not provide."
)

AGENT_ORCHESTRATION_SYSTEM = (
    "You orchestrate image analysis for task planning. You must call the inspectImage "
    "tool exactly once to inspect the uploaded image before responding. Your final "
    "reply must be a single JSON object with keys summary, totalEstimatedHours, "
    "confidence and tasks, and nothing else."
)


def get_agent_messages(tool_args: dict[str, Any]) -> list[dict[str, str]]:
    """Opening messages for one extraction turn on a thread."""
    return [
        {"role": "system", "content": f"{AGENT_INSTRUCTIONS}\n\n{AGENT_ORCHESTRATION_SYSTEM}"},
        {
            "role": "user",
            "content": (
                "Call the inspectImage tool with the following arguments and wait for its "
                "response before replying. Always return JSON that conforms to the requested "
                f"schema.\nTool arguments: {json.dumps(tool_args)}"
            ),
        },
    ]


def get_thread_request_message(storage_id: str, context: str | None = None) -> str:
    """User-visible request recorded on the thread before the agent runs."""
    suffix = f" with context: {context}" if context else ""
    return (
        f"Please analyze the uploaded image referenced by storageId “{storage_id}”{suffix}. "
        "Always call the inspectImage tool using that storageId."
    )
