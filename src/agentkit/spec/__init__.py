"""Agent manifest model and validation."""

from agentkit.spec.models import (
    INTERNAL_TOOL_NAMES,
    AgentManifest,
    HttpTool,
    InternalTool,
    McpTool,
    PromptBlock,
    State,
    ToolDefinition,
    Transition,
    TransitionCondition,
    is_internal_tool,
)
from agentkit.spec.validation import load_manifest, parse_manifest, validate_manifest_integrity

__all__ = [
    "INTERNAL_TOOL_NAMES",
    "AgentManifest",
    "HttpTool",
    "InternalTool",
    "McpTool",
    "PromptBlock",
    "State",
    "ToolDefinition",
    "Transition",
    "TransitionCondition",
    "is_internal_tool",
    "load_manifest",
    "parse_manifest",
    "validate_manifest_integrity",
]
