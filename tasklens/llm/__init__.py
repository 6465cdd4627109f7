"""Model access: prompts, providers and the vision extraction call."""

from .providers import (
    AgentModel,
    LiteLLMAgentModel,
    LiteLLMVisionClient,
    ModelTurn,
    ToolCallRequest,
    VisionModelClient,
)
from .vision import VisionExtractor, parse_model_json

__all__ = [
    "AgentModel",
    "LiteLLMAgentModel",
    "LiteLLMVisionClient",
    "ModelTurn",
    "ToolCallRequest",
    "VisionModelClient",
    "VisionExtractor",
    "parse_model_json",
]
