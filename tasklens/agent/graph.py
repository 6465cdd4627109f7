"""
Tool Dispatch Loop

A LangGraph state machine bounded by a fixed number of model turns:

    model_turn -> execute_tool -> model_turn -> ... -> finalize

Each model turn either requests one tool or produces a final answer. Tool
results are folded into the conversation and the thread log. Assistant output
is streamed into the thread while the turn is produced.
"""

from __future__ import annotations

import json
import time
from typing import Any, Literal

import structlog
from langgraph.graph import END, StateGraph

from tasklens.extraction.normalizer import normalize
from tasklens.extraction.schemas import validate_analysis
from tasklens.kernel.errors import ExtractionCallFailedError, TaskLensError
from tasklens.llm.providers import AgentModel
from tasklens.llm.vision import parse_model_json
from tasklens.threads.models import MessageRole, NewMessage
from tasklens.threads.store import ThreadStore

from .state import AgentState, AgentStatus, ExtractionOutcome
from .tools import INSPECT_IMAGE, ToolContext, execute_tool, tool_definitions

logger = structlog.get_logger()


class DispatchLoop:
    """Drives one extraction turn on a thread."""

    def __init__(self, model: AgentModel, threads: ThreadStore, tools: ToolContext):
        self.model = model
        self.threads = threads
        self.tools = tools
        self._graph = self._build().compile()

    # =========================================================================
    # Nodes
    # =========================================================================

    async def model_turn(self, state: AgentState) -> dict:
        """Ask the model for its next move, streaming text into the thread."""
        stream = await self.threads.begin_stream(state.thread_id, state.owner_id, MessageRole.ASSISTANT)

        async def on_delta(text: str) -> None:
            await self.threads.append_delta(stream.stream_id, text)

        try:
            turn = await self.model.next_turn(state.messages, tool_definitions(), on_delta=on_delta)
        except TaskLensError as exc:
            await self.threads.abort_stream(stream.stream_id)
            return self._failed(state, exc, steps=state.steps + 1)
        except Exception as exc:
            await self.threads.abort_stream(stream.stream_id)
            logger.warning("Agent model turn failed", thread_id=state.thread_id, error=str(exc))
            return self._failed(
                state,
                ExtractionCallFailedError(message="Agent model call failed", meta={"error": str(exc)}),
                steps=state.steps + 1,
            )

        steps = state.steps + 1
        if turn.is_final:
            await self.threads.finish_stream(
                stream.stream_id,
                state.owner_id,
                NewMessage(role=MessageRole.ASSISTANT, content=turn.text),
            )
            return {
                "steps": steps,
                "status": AgentStatus.FINAL_ANSWER,
                "final_text": turn.text,
                "pending_call": None,
                "messages": [*state.messages, {"role": "assistant", "content": turn.text}],
            }

        call = turn.tool_call
        await self.threads.finish_stream(
            stream.stream_id,
            state.owner_id,
            NewMessage(
                role=MessageRole.ASSISTANT,
                content=turn.text,
                tool_name=call.name,
                tool_call_id=call.call_id,
                tool_arguments=_loggable_arguments(call.arguments),
            ),
        )
        logger.info("Tool call requested", thread_id=state.thread_id, tool=call.name, step=steps)
        return {
            "steps": steps,
            "status": AgentStatus.TOOL_CALL_REQUESTED,
            "pending_call": call,
            "messages": [
                *state.messages,
                {
                    "role": "assistant",
                    "content": turn.text or None,
                    "tool_calls": [
                        {
                            "id": call.call_id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                    ],
                },
            ],
        }

    async def execute_tool(self, state: AgentState) -> dict:
        """Run the pending tool call and fold its result back."""
        call = state.pending_call
        logger.debug(
            "Executing tool",
            thread_id=state.thread_id,
            tool=call.name,
            status=AgentStatus.TOOL_EXECUTING.value,
        )
        result = await execute_tool(call, self.tools)

        await self.threads.append_message(
            state.thread_id,
            state.owner_id,
            NewMessage(
                role=MessageRole.TOOL,
                content="" if result.ok else (result.error_message or ""),
                tool_name=result.tool,
                tool_call_id=result.call_id,
                tool_output=result.output if result.ok else {"code": result.error_code},
                is_error=not result.ok,
            ),
        )

        update: dict[str, Any] = {
            "pending_call": None,
            "status": AgentStatus.TOOL_RESULT_FOLDED,
            "tool_results": [*state.tool_results, result],
            "messages": [
                *state.messages,
                {"role": "tool", "tool_call_id": result.call_id, "content": result.to_model_content()},
            ],
        }
        if result.ok and result.tool == INSPECT_IMAGE and result.analysis is not None:
            update["last_analysis"] = result.analysis
            update["grounded"] = True

        if result.is_auth_failure:
            # Authorization failures end the run and reach the caller as-is.
            update.update(
                status=AgentStatus.FAILED,
                error_code=result.error_code,
                error_message=result.error_message,
                error_status=result.error_status,
            )
        elif state.steps >= state.max_steps:
            update["status"] = AgentStatus.STEP_BUDGET_EXHAUSTED
        return update

    async def finalize(self, state: AgentState) -> dict:
        """Validate the final answer; the answer must rest on an inspected image."""
        if state.status != AgentStatus.FINAL_ANSWER:
            return {}

        if not state.grounded:
            logger.warning("Final answer without image inspection", thread_id=state.thread_id)
            return {
                "status": AgentStatus.FAILED,
                "error_code": "extraction.ungrounded_answer",
                "error_message": "Model answered without inspecting the image",
                "error_status": 502,
            }

        try:
            analysis = normalize(validate_analysis(parse_model_json(state.final_text)))
        except TaskLensError as exc:
            return self._failed(state, exc)

        return {"analysis": analysis}

    # =========================================================================
    # Routing
    # =========================================================================

    @staticmethod
    def after_model_turn(state: AgentState) -> Literal["execute_tool", "finalize"]:
        if state.status == AgentStatus.TOOL_CALL_REQUESTED:
            return "execute_tool"
        return "finalize"

    @staticmethod
    def after_tool(state: AgentState) -> Literal["model_turn", "finalize"]:
        if state.status.is_terminal:
            return "finalize"
        return "model_turn"

    # =========================================================================
    # Graph
    # =========================================================================

    def _build(self) -> StateGraph:
        workflow = StateGraph(AgentState)

        workflow.add_node("model_turn", self.model_turn)
        workflow.add_node("execute_tool", self.execute_tool)
        workflow.add_node("finalize", self.finalize)

        workflow.set_entry_point("model_turn")
        workflow.add_conditional_edges(
            "model_turn",
            self.after_model_turn,
            {"execute_tool": "execute_tool", "finalize": "finalize"},
        )
        workflow.add_conditional_edges(
            "execute_tool",
            self.after_tool,
            {"model_turn": "model_turn", "finalize": "finalize"},
        )
        workflow.add_edge("finalize", END)
        return workflow

    async def run(
        self,
        *,
        thread_id: str,
        owner_id: str,
        messages: list[dict[str, Any]],
        max_steps: int = 3,
    ) -> ExtractionOutcome:
        start_time = time.time()
        initial = AgentState(thread_id=thread_id, owner_id=owner_id, messages=messages, max_steps=max_steps)

        # Each step visits at most two nodes, plus finalize.
        result = await self._graph.ainvoke(initial, config={"recursion_limit": 2 * max_steps + 5})
        final_state = result if isinstance(result, AgentState) else AgentState(**result)
        outcome = ExtractionOutcome.from_state(final_state)

        logger.info(
            "Dispatch loop finished",
            thread_id=thread_id,
            status=outcome.status.value,
            steps=outcome.steps,
            tools_called=outcome.tools_called,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return outcome

    @staticmethod
    def _failed(state: AgentState, exc: TaskLensError, **extra: Any) -> dict:
        logger.warning("Dispatch loop failed", thread_id=state.thread_id, code=exc.code)
        return {
            "status": AgentStatus.FAILED,
            "error_code": exc.code,
            "error_message": exc.message,
            "error_status": exc.status_code,
            **extra,
        }


def _loggable_arguments(raw: str) -> dict[str, Any] | None:
    """Tool arguments as recorded on the thread; inline image data is elided."""
    try:
        args = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return None
    if not isinstance(args, dict):
        return None
    if "imageDataUrl" in args:
        args = {**args, "imageDataUrl": "<inline image>"}
    return args
