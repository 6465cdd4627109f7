"""
Dispatch loop state.

The loop moves through AWAITING_MODEL_TURN -> TOOL_CALL_REQUESTED ->
TOOL_EXECUTING -> TOOL_RESULT_FOLDED and back, until it reaches one of the
terminal states FINAL_ANSWER, STEP_BUDGET_EXHAUSTED or FAILED.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tasklens.extraction.schemas import AnalysisResult
from tasklens.llm.providers import ToolCallRequest


class AgentStatus(str, Enum):
    AWAITING_MODEL_TURN = "awaiting_model_turn"
    TOOL_CALL_REQUESTED = "tool_call_requested"
    TOOL_EXECUTING = "tool_executing"
    TOOL_RESULT_FOLDED = "tool_result_folded"
    FINAL_ANSWER = "final_answer"
    STEP_BUDGET_EXHAUSTED = "step_budget_exhausted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {AgentStatus.FINAL_ANSWER, AgentStatus.STEP_BUDGET_EXHAUSTED, AgentStatus.FAILED}
)

AUTH_FAILURE_STATUSES = frozenset({401, 403})


class ToolResult(BaseModel):
    """Outcome of one tool execution, folded back into the conversation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tool: str
    call_id: str
    ok: bool
    output: Any = None
    analysis: AnalysisResult | None = None
    error_code: str | None = None
    error_message: str | None = None
    error_status: int | None = None

    @property
    def is_auth_failure(self) -> bool:
        """Unauthenticated or forbidden, whichever layer raised it."""
        return self.error_status in AUTH_FAILURE_STATUSES

    def to_model_content(self) -> str:
        if self.ok:
            return json.dumps(self.output, ensure_ascii=False)
        return json.dumps({"error": {"code": self.error_code, "message": self.error_message}})


class AgentState(BaseModel):
    """State flowing through the dispatch graph."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    thread_id: str
    owner_id: str
    max_steps: int = 3

    # Conversation sent to the model (system/user/assistant/tool dicts)
    messages: list[dict[str, Any]] = Field(default_factory=list)

    status: AgentStatus = AgentStatus.AWAITING_MODEL_TURN
    steps: int = 0
    pending_call: ToolCallRequest | None = None
    final_text: str = ""

    # Folded results
    tool_results: list[ToolResult] = Field(default_factory=list)
    last_analysis: AnalysisResult | None = None
    grounded: bool = False

    # Final structured answer (set by finalize on success)
    analysis: AnalysisResult | None = None

    error_code: str | None = None
    error_message: str | None = None
    error_status: int | None = None


class ExtractionOutcome(BaseModel):
    """What `run_extraction` hands back to callers.

    Only `FINAL_ANSWER` carries a confirmed analysis. On `STEP_BUDGET_EXHAUSTED`
    `analysis` is the last folded (unconfirmed) analysis, if any.
    """

    model_config = ConfigDict(frozen=True)

    thread_id: str
    status: AgentStatus
    analysis: AnalysisResult | None = None
    steps: int = 0
    tools_called: list[str] = Field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None
    error_status: int | None = None

    @property
    def is_final_answer(self) -> bool:
        return self.status == AgentStatus.FINAL_ANSWER

    @property
    def is_retriable(self) -> bool:
        return self.status == AgentStatus.STEP_BUDGET_EXHAUSTED

    def to_public_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "threadId": self.thread_id,
            "status": self.status.value,
            "steps": self.steps,
            "toolsCalled": list(self.tools_called),
        }
        if self.analysis is not None:
            payload["analysis"] = self.analysis.to_wire()
        if self.error_code:
            payload["error"] = {"code": self.error_code, "message": self.error_message}
        return payload

    @classmethod
    def from_state(cls, state: AgentState) -> ExtractionOutcome:
        analysis = state.analysis
        if state.status == AgentStatus.STEP_BUDGET_EXHAUSTED:
            analysis = state.last_analysis
        return cls(
            thread_id=state.thread_id,
            status=state.status,
            analysis=analysis,
            steps=state.steps,
            tools_called=[r.tool for r in state.tool_results],
            error_code=state.error_code,
            error_message=state.error_message,
            error_status=state.error_status,
        )
